"""
Per-image download de-duplication.

The first request for an image becomes the owner and downloads it; any
request for the same image that arrives meanwhile waits on the owner's
completion event and then re-checks the disk.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class DownloadCoordinator:
    """Registry of in-flight image downloads keyed by image id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: dict[str, asyncio.Event] = {}

    def acquire(self, image_id: str) -> tuple[Optional[asyncio.Event], bool]:
        """
        Claim the download of ``image_id``.

        Parameters
        ----------
        image_id : str
            Image about to be downloaded.

        Returns
        -------
        tuple[asyncio.Event | None, bool]
            ``(event, True)`` when the caller owns the download and must call
            :meth:`release`; ``(event, False)`` when another task owns it and
            the caller should :meth:`wait`. A blank id is never guarded and
            returns ``(None, True)``.
        """
        if not image_id:
            return None, True
        with self._lock:
            existing = self._in_flight.get(image_id)
            if existing is not None:
                return existing, False
            event = asyncio.Event()
            self._in_flight[image_id] = event
            return event, True

    def release(self, image_id: str) -> None:
        """Signal completion (success or failure) and drop the registration."""
        if not image_id:
            return
        with self._lock:
            event = self._in_flight.pop(image_id, None)
        if event is not None:
            event.set()

    async def wait(self, event: Optional[asyncio.Event], timeout: Optional[float] = None) -> bool:
        """
        Wait for an owner to finish.

        Returns
        -------
        bool
            False if ``timeout`` elapsed first.
        """
        if event is None:
            return True
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out after %.1fs waiting for in-flight download", timeout or 0)
            return False
        return True

    def in_flight(self) -> list[str]:
        """Image ids currently being downloaded."""
        with self._lock:
            return sorted(self._in_flight)
