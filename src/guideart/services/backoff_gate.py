"""
Global pause for upstream image fetches.

Set by anyone who sees a quota, rate-limit or login-lockout signal from
Schedules Direct. The pause can only be extended by new signals, never
shortened; it ends on its own or through an explicit :meth:`BackoffGate.clear`.
The state is in memory only and resets on restart.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from guideart.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

# Upstream daily counters reset at UTC midnight; wait a little past it.
MIDNIGHT_GRACE_MINUTES = 5


def next_utc_midnight_plus(ref: datetime, minutes: int = MIDNIGHT_GRACE_MINUTES) -> datetime:
    """
    Return the UTC midnight following ``ref`` plus ``minutes``.

    Parameters
    ----------
    ref : datetime
        Reference instant; naive values are taken as UTC.
    minutes : int, optional
        Offset after midnight (default: 5).

    Returns
    -------
    datetime
        Aware UTC datetime.

    Examples
    --------
    >>> next_utc_midnight_plus(datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc))
    datetime.datetime(2024, 3, 2, 0, 5, tzinfo=datetime.timezone.utc)
    """
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    ref = ref.astimezone(timezone.utc)
    midnight = datetime(ref.year, ref.month, ref.day, tzinfo=timezone.utc) + timedelta(days=1)
    return midnight + timedelta(minutes=minutes)


def retry_after_seconds(remaining: timedelta) -> int:
    """Whole seconds for a ``Retry-After`` header, never less than 1."""
    return max(1, math.ceil(remaining.total_seconds()))


def parse_retry_after(value: Optional[str], now: datetime) -> Optional[int]:
    """
    Seconds to wait from an upstream ``Retry-After`` header.

    Parameters
    ----------
    value : str | None
        Header value: delay seconds or an HTTP date.
    now : datetime
        Aware reference instant for HTTP dates.

    Returns
    -------
    int | None
        Positive seconds, or None when the header is absent, unparsable or
        already in the past.
    """
    value = (value or "").strip()
    if not value:
        return None
    if value.isdigit():
        return int(value) or None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    seconds = int((when - now).total_seconds())
    return seconds if seconds > 0 else None


class BackoffGate:
    """Process-wide, monotonic pause on upstream image fetches."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utc_now
        self._lock = threading.Lock()
        self._until: Optional[datetime] = None
        self._reason: Optional[str] = None

    @property
    def paused_until(self) -> Optional[datetime]:
        """End of the current pause, or None when the gate is open."""
        with self._lock:
            if self._until is not None and self._clock() < self._until:
                return self._until
            return None

    @property
    def reason(self) -> Optional[str]:
        """Reason given for the active pause."""
        with self._lock:
            if self._until is not None and self._clock() < self._until:
                return self._reason
            return None

    def should_block(self) -> tuple[bool, timedelta]:
        """
        Report whether upstream fetches are paused.

        Returns
        -------
        tuple[bool, timedelta]
            ``(True, remaining)`` while paused, ``(False, timedelta(0))``
            otherwise.
        """
        with self._lock:
            until = self._until
        if until is None:
            return False, timedelta(0)
        remaining = until - self._clock()
        if remaining > timedelta(0):
            return True, remaining
        return False, timedelta(0)

    def set_pause_until(self, until: Optional[datetime], reason: str) -> bool:
        """
        Pause upstream fetches until ``until``.

        Parameters
        ----------
        until : datetime | None
            End of the pause (aware; naive values are taken as UTC). None is
            ignored.
        reason : str
            Short description for logs and the admin endpoint.

        Returns
        -------
        bool
            True if the pause was extended, False if an equal or later pause
            was already in place.
        """
        if until is None:
            return False
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        until = until.astimezone(timezone.utc)
        with self._lock:
            if self._until is not None and until <= self._until:
                return False
            self._until = until
            self._reason = reason
        logger.warning("Upstream image fetches paused until %s (%s)", until.isoformat(), reason)
        return True

    def pause_for(self, seconds: float, reason: str) -> bool:
        """Convenience wrapper: pause for ``seconds`` from now."""
        return self.set_pause_until(self._clock() + timedelta(seconds=seconds), reason)

    def clear(self) -> None:
        """Drop any pause immediately."""
        with self._lock:
            self._until = None
            self._reason = None
        logger.info("Upstream image fetch pause cleared")
