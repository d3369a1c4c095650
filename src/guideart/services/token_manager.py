"""
Upstream session token management.

Keeps one Schedules Direct token for the whole process, refreshes it shortly
before it expires, persists it so restarts do not cost a login, and stops
logging in altogether once upstream reports too many logins for the day.

Reads go through a small state lock. Refreshes are serialized by an
``asyncio.Lock`` and re-check the cached token after acquiring it, so a burst
of requests that all notice an expired token causes a single login.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from guideart.exceptions import UpstreamLoginError, UpstreamThrottledError
from guideart.models.images import Token
from guideart.services.backoff_gate import (
    MIDNIGHT_GRACE_MINUTES,
    BackoffGate,
    next_utc_midnight_plus,
    retry_after_seconds,
)
from guideart.utils.clock import Clock, utc_now
from guideart.utils.files import atomic_write_bytes

logger = logging.getLogger(__name__)

# Schedules Direct response code for "too many logins today"
TOO_MANY_LOGINS = 4009

DEFAULT_SAFETY_MARGIN = timedelta(minutes=10)
DEFAULT_REFRESH_COOLDOWN = timedelta(minutes=5)

LoginFunc = Callable[[], Awaitable[Token]]


class TokenManager:
    """
    Process-wide cached upstream token.

    Parameters
    ----------
    login : LoginFunc
        Coroutine function performing one login exchange; raises
        :class:`UpstreamLoginError` on rejection.
    token_file : Path
        JSON file holding ``{token, token_expiry_utc}``.
    gate : BackoffGate
        Global pause consulted before and engaged after logins.
    clock : Clock | None, optional
        Source of "now" (default: aware UTC wall clock).
    safety_margin : timedelta, optional
        Refresh this long before the hard expiry (default: 10 minutes).
    refresh_cooldown : timedelta, optional
        Minimum spacing between forced refreshes via
        :meth:`force_refresh_limited` (default: 5 minutes).
    """

    def __init__(
        self,
        login: LoginFunc,
        token_file: Path,
        gate: BackoffGate,
        clock: Optional[Clock] = None,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        refresh_cooldown: timedelta = DEFAULT_REFRESH_COOLDOWN,
    ) -> None:
        self._login = login
        self.token_file = Path(token_file)
        self._gate = gate
        self._clock = clock or utc_now
        self.safety_margin = safety_margin
        self.refresh_cooldown = refresh_cooldown

        self._state_lock = threading.Lock()
        self._refresh_lock = asyncio.Lock()
        self._token: Optional[Token] = self._load()
        self._last_forced_refresh: Optional[datetime] = None
        self.login_count = 0

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Optional[Token]:
        try:
            raw = json.loads(self.token_file.read_text(encoding="utf-8"))
            token = Token.model_validate(raw)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable token file %s: %s", self.token_file, e)
            return None

        if token.is_expired(self._clock()):
            logger.info("Persisted token expired at %s; a new login will be needed", token.expiry)
            return None
        logger.debug("Loaded persisted token valid until %s", token.expiry.isoformat())
        return token

    def _save(self, token: Token) -> None:
        payload = token.model_dump(mode="json", by_alias=True)
        try:
            atomic_write_bytes(self.token_file, json.dumps(payload, indent=2).encode("utf-8"))
        except OSError as e:
            logger.warning("Failed to persist token to %s: %s", self.token_file, e)

    def _remove_file(self) -> None:
        try:
            self.token_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove token file %s: %s", self.token_file, e)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def current(self) -> Optional[Token]:
        """Cached token, usable or not."""
        with self._state_lock:
            return self._token

    def _usable(self) -> Optional[Token]:
        with self._state_lock:
            token = self._token
        if token is not None and token.is_usable(self._clock(), self.safety_margin):
            return token
        return None

    def invalidate(self) -> None:
        """Forget the token in memory and on disk."""
        with self._state_lock:
            self._token = None
        self._remove_file()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def _throttled(self, message: str) -> UpstreamThrottledError:
        _, remaining = self._gate.should_block()
        return UpstreamThrottledError(
            message,
            retry_after=retry_after_seconds(remaining),
            paused_until=self._gate.paused_until,
        )

    async def _do_login(self) -> Token:
        """Single login exchange. Caller holds the refresh lock."""
        blocked, _ = self._gate.should_block()
        if blocked:
            raise self._throttled("Upstream paused; not attempting login")

        try:
            self.login_count += 1
            token = await self._login()
        except UpstreamLoginError as e:
            if e.code == TOO_MANY_LOGINS:
                reference = e.server_time or self._clock()
                until = next_utc_midnight_plus(reference, MIDNIGHT_GRACE_MINUTES)
                self._gate.set_pause_until(until, "too many logins")
                logger.error("Schedules Direct refused login (code %d): %s", e.code, e.message)
                raise self._throttled("Too many logins; paused until upstream reset") from e
            raise

        with self._state_lock:
            self._token = token
        self._save(token)
        logger.info("Obtained new upstream token valid until %s", token.expiry.isoformat())
        return token

    async def get_token(self) -> str:
        """
        Return a token that is valid for at least the safety margin.

        Returns
        -------
        str
            Token value.

        Raises
        ------
        UpstreamThrottledError
            If the global pause is active or upstream refused the login for
            too many attempts.
        UpstreamLoginError
            For any other login rejection.
        """
        token = self._usable()
        if token is not None:
            return token.value

        async with self._refresh_lock:
            token = self._usable()
            if token is not None:
                return token.value
            return (await self._do_login()).value

    async def force_refresh(self) -> str:
        """Drop the current token and log in immediately."""
        async with self._refresh_lock:
            self.invalidate()
            token = await self._do_login()
            self._last_forced_refresh = self._clock()
            return token.value

    async def force_refresh_limited(self) -> str:
        """
        Like :meth:`force_refresh`, at most once per cooldown window.

        Inside the window the current token is returned as long as it has
        not hit its hard expiry; typically it is the one the previous forced
        refresh just obtained.
        """
        async with self._refresh_lock:
            now = self._clock()
            last = self._last_forced_refresh
            if last is not None and now - last < self.refresh_cooldown:
                with self._state_lock:
                    token = self._token
                if token is not None and not token.is_expired(now):
                    logger.debug("Forced refresh suppressed by cooldown; reusing current token")
                    return token.value

            self.invalidate()
            token = await self._do_login()
            self._last_forced_refresh = self._clock()
            return token.value
