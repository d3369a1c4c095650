"""
Schedules Direct JSON API client.

Only the calls the poster proxy needs are implemented: token login,
single-program artwork metadata and raw image download. Every request sends
the versioned User-Agent Schedules Direct asks clients to identify with.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from guideart.exceptions import (
    ImageFetchError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamLoginError,
    UpstreamThrottledError,
)
from guideart.models.images import ProgramMetadata, Token
from guideart.services.backoff_gate import parse_retry_after
from guideart.utils.image_urls import DEFAULT_SD_BASE_URL, user_agent

logger = logging.getLogger(__name__)

# Schedules Direct response codes
CODE_OK = 0
CODE_TOKEN_EXPIRED = 4006
CODE_TOO_MANY_LOGINS = 4009
CODE_MAX_IMAGE_DOWNLOADS = 5002
CODE_MAX_IMAGE_DOWNLOADS_TRIAL = 5003

_DEFAULT_TOKEN_LIFETIME = timedelta(hours=24)

QUOTA_CODES = frozenset({CODE_MAX_IMAGE_DOWNLOADS, CODE_MAX_IMAGE_DOWNLOADS_TRIAL})
_QUOTA_MARKERS = (
    "max_image_downloads",
    "maximum number of image downloads",
    "image download limit",
    "quota",
    "too many requests",
)


def response_code(value: Any) -> Optional[int]:
    """Numeric Schedules Direct ``code`` value, or None if it is not a number."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def json_code(body: bytes) -> Optional[int]:
    """Upstream ``code`` field of a JSON error body, if there is one."""
    try:
        payload = json.loads(body[:65536])
    except (ValueError, UnicodeDecodeError):
        return None
    if isinstance(payload, dict):
        return response_code(payload.get("code"))
    return None


def is_quota_payload(body: bytes) -> bool:
    """True if an error body reports an exhausted download quota."""
    if json_code(body) in QUOTA_CODES:
        return True
    text = body[:4096].decode("utf-8", errors="replace").lower()
    return any(marker in text for marker in _QUOTA_MARKERS)


def hash_password(password: str) -> str:
    """SHA-1 hex digest, the form the token endpoint expects."""
    return hashlib.sha1(password.encode("utf-8")).hexdigest()


def parse_server_time(value: Any) -> Optional[datetime]:
    """Parse the ``datetime`` field of an upstream response."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SchedulesDirectClient:
    """
    Async client for the Schedules Direct ``20141201`` API.

    Parameters
    ----------
    base_url : str
        API base URL ending in ``/``.
    username : str
        Account user name.
    password : str
        Plain-text password; hashed before sending.
    timeout : float, optional
        Per-request timeout in seconds (default: 20).
    transport : httpx.AsyncBaseTransport | None, optional
        Custom transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SD_BASE_URL,
        username: str = "",
        password: str = "",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.username = username
        self._password_hash = hash_password(password) if password else ""
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                headers={"User-Agent": user_agent()},
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Token
    # ------------------------------------------------------------------

    async def login(self) -> Token:
        """
        Exchange credentials for a session token.

        Returns
        -------
        Token
            Token value and absolute expiry.

        Raises
        ------
        UpstreamLoginError
            On a non-zero response code (``code``, ``message`` and the
            server's reported time are carried on the exception), a
            transport failure or an unparsable body.
        """
        payload = {"username": self.username, "password": self._password_hash}
        try:
            response = await self._http().post(self.base_url + "token", json=payload)
        except httpx.HTTPError as e:
            raise UpstreamLoginError(f"Token request failed: {type(e).__name__}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamLoginError(
                f"Token response was not JSON (HTTP {response.status_code})"
            ) from e
        if not isinstance(body, dict):
            raise UpstreamLoginError("Token response had unexpected shape")

        server_time = parse_server_time(body.get("datetime"))
        code = response_code(body.get("code") or CODE_OK)
        if code is None:
            raise UpstreamLoginError(
                f"Token response had a non-numeric code {body.get('code')!r}",
                server_time=server_time,
            )
        message = str(body.get("message") or "")
        token_value = str(body.get("token") or "")
        if code != CODE_OK or not token_value:
            raise UpstreamLoginError(
                message or f"Login rejected (HTTP {response.status_code})",
                code=code,
                server_time=server_time,
            )

        expires_unix = body.get("tokenExpires")
        if expires_unix:
            try:
                expiry = datetime.fromtimestamp(int(expires_unix), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError, OSError) as e:
                raise UpstreamLoginError(
                    f"Token response had an invalid tokenExpires {expires_unix!r}",
                    server_time=server_time,
                ) from e
        else:
            expiry = (server_time or datetime.now(timezone.utc)) + _DEFAULT_TOKEN_LIFETIME
        logger.debug("Schedules Direct login succeeded; token expires %s", expiry.isoformat())
        return Token(value=token_value, expiry=expiry)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def fetch_metadata(self, program_id: str, token: str) -> Optional[ProgramMetadata]:
        """
        Fetch artwork metadata for one program.

        Parameters
        ----------
        program_id : str
            Program identifier.
        token : str
            Current session token.

        Returns
        -------
        ProgramMetadata | None
            Metadata for the program, or None if upstream has no entry.
            Per-program error entries are skipped.

        Raises
        ------
        UpstreamAuthError
            If the token was rejected.
        UpstreamThrottledError
            On HTTP 429 (``retry_after`` from the header) or an exhausted
            download quota (``code`` 5002/5003).
        UpstreamError
            For transport failures and unexpected HTTP statuses.
        """
        try:
            response = await self._http().post(
                self.base_url + "metadata/programs/",
                json=[program_id],
                headers={"token": token},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Metadata request failed: {type(e).__name__}") from e

        if response.status_code in (401, 403):
            raise UpstreamAuthError(f"Metadata request rejected (HTTP {response.status_code})")
        if response.status_code == 429:
            retry_after = parse_retry_after(
                response.headers.get("retry-after"), datetime.now(timezone.utc)
            )
            raise UpstreamThrottledError(
                "Metadata request rate limited (HTTP 429)", retry_after=retry_after or 0
            )
        try:
            body = response.json()
        except ValueError as e:
            if is_quota_payload(response.content):
                raise UpstreamThrottledError(
                    "Metadata request refused: download quota reached",
                    code=CODE_MAX_IMAGE_DOWNLOADS,
                ) from e
            raise UpstreamError(
                f"Metadata response was not JSON (HTTP {response.status_code})"
            ) from e

        if isinstance(body, dict):
            code = response_code(body.get("code")) or CODE_OK
            if code == CODE_TOKEN_EXPIRED:
                raise UpstreamAuthError(str(body.get("message") or "Token expired"), code=code)
            if code in QUOTA_CODES:
                raise UpstreamThrottledError(
                    f"Metadata request refused: {body.get('message') or 'download quota reached'}",
                    code=code,
                )
            raise UpstreamError(
                f"Metadata request failed: {body.get('message') or response.status_code}"
            )
        if response.status_code != 200 or not isinstance(body, list):
            raise UpstreamError(f"Metadata request failed (HTTP {response.status_code})")

        for item in body:
            if not isinstance(item, dict) or item.get("programID") != program_id:
                continue
            data = item.get("data")
            if not isinstance(data, list):
                # Error entries carry {"code": ..., "message": ...} in "data"
                logger.warning("Schedules Direct returned no artwork for %s: %s", program_id, data)
                continue
            try:
                return ProgramMetadata(program_id=program_id, candidates=data)
            except ValueError as e:
                logger.warning("Malformed metadata for %s: %s", program_id, e)
        return None

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def fetch_image(self, url: str) -> httpx.Response:
        """
        Download ``url`` and return the raw response for the caller to judge.

        Raises
        ------
        ImageFetchError
            On transport failures (timeouts, connection errors).
        """
        try:
            return await self._http().get(url)
        except httpx.TimeoutException as e:
            raise ImageFetchError("Timeout fetching image") from e
        except httpx.HTTPError as e:
            raise ImageFetchError(f"HTTP error fetching image: {type(e).__name__}") from e
