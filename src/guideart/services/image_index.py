"""
Persistent program -> image index.

Maps program ids to the image id that was chosen and downloaded for them,
plus the last time the program's poster was served. The proxy uses it to
serve cached files without consulting metadata, and the stale evictor uses
the per-image timestamps to decide what to delete.

The whole map is rewritten (temp file + rename) on every mutation. Write
failures are logged and never raised to callers.

File format::

    {"EP012345670000": {"imageID": "abc123", "lastRequestUnix": 1700000000}}

A legacy format with bare string values (``{"EP...": "abc123"}``) is still
accepted on load.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from guideart.models.images import IndexEntry
from guideart.utils.clock import Clock, utc_now
from guideart.utils.files import atomic_write_bytes

logger = logging.getLogger(__name__)


class ProgramImageIndex:
    """
    Thread-safe program -> image map backed by a JSON sidecar file.

    Parameters
    ----------
    path : Path
        Location of the ``*.imgindex.json`` file.
    clock : Clock | None, optional
        Source of "now" (default: aware UTC wall clock).
    """

    def __init__(self, path: Path, clock: Optional[Clock] = None) -> None:
        self.path = Path(path)
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self._entries: dict[str, IndexEntry] = {}
        # image id -> max lastRequestUnix over the programs mapped to it
        self._image_requests: dict[str, int] = {}
        self._load()

    # ------------------------------------------------------------------
    # Load / persist
    # ------------------------------------------------------------------

    def _load(self) -> None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable image index %s: %s", self.path, e)
            return

        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed image index %s", self.path)
            return

        for program_id, value in raw.items():
            entry: Optional[IndexEntry] = None
            if isinstance(value, str) and value:
                entry = IndexEntry(image_id=value)
            elif isinstance(value, dict):
                try:
                    entry = IndexEntry.model_validate(value)
                except ValueError:
                    entry = None
            if entry is None or not entry.image_id:
                logger.debug("Skipping bad index entry for %s", program_id)
                continue
            self._entries[program_id] = entry
            self._bump_image_request(entry.image_id, entry.last_request_unix)

        logger.debug("Loaded %d image index entries from %s", len(self._entries), self.path)

    def _persist(self) -> None:
        """Write the full map. Caller holds the lock."""
        payload = {
            program_id: entry.model_dump(by_alias=True)
            for program_id, entry in self._entries.items()
        }
        try:
            atomic_write_bytes(
                self.path, json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")
            )
        except OSError as e:
            logger.warning("Failed to persist image index %s: %s", self.path, e)

    # ------------------------------------------------------------------
    # Reverse timestamp bookkeeping
    # ------------------------------------------------------------------

    def _bump_image_request(self, image_id: str, unix: int) -> None:
        if unix > 0 and unix > self._image_requests.get(image_id, 0):
            self._image_requests[image_id] = unix

    def _recalculate_image(self, image_id: str) -> None:
        latest = 0
        for entry in self._entries.values():
            if entry.image_id == image_id and entry.last_request_unix > latest:
                latest = entry.last_request_unix
        if latest > 0:
            self._image_requests[image_id] = latest
        else:
            self._image_requests.pop(image_id, None)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, program_id: str) -> Optional[IndexEntry]:
        """Return the entry for ``program_id`` or None."""
        with self._lock:
            return self._entries.get(program_id)

    def set(
        self,
        program_id: str,
        image_id: str,
        *,
        requested_at: Optional[datetime] = None,
    ) -> None:
        """
        Map ``program_id`` to ``image_id`` and stamp the request time.

        Setting the same pair again only refreshes the timestamp. A blank
        ``image_id`` is ignored.

        Parameters
        ----------
        program_id : str
            Program identifier.
        image_id : str
            Image id that was served for the program.
        requested_at : datetime | None, optional
            Request time (default: now).
        """
        if not image_id or not program_id:
            return
        when = requested_at or self._clock()
        unix = int(when.timestamp())
        with self._lock:
            previous = self._entries.get(program_id)
            self._entries[program_id] = IndexEntry(image_id=image_id, last_request_unix=unix)
            if previous is not None and previous.image_id != image_id:
                self._recalculate_image(previous.image_id)
            self._bump_image_request(image_id, unix)
            self._persist()

    def delete(self, program_id: str) -> bool:
        """Remove the mapping for ``program_id``; returns whether one existed."""
        with self._lock:
            previous = self._entries.pop(program_id, None)
            if previous is None:
                return False
            self._recalculate_image(previous.image_id)
            self._persist()
            return True

    def delete_by_image_ids(self, image_ids: Iterable[str]) -> int:
        """
        Remove every mapping pointing at one of ``image_ids``.

        Parameters
        ----------
        image_ids : Iterable[str]
            Image ids whose program mappings should be dropped.

        Returns
        -------
        int
            Number of program mappings removed. The file is written once,
            and only if something changed.
        """
        targets = {image_id for image_id in image_ids if image_id}
        if not targets:
            return 0
        with self._lock:
            doomed = [pid for pid, entry in self._entries.items() if entry.image_id in targets]
            for program_id in doomed:
                del self._entries[program_id]
            for image_id in targets:
                self._image_requests.pop(image_id, None)
            if doomed:
                self._persist()
            return len(doomed)

    def last_request_for_image(self, image_id: str) -> Optional[datetime]:
        """Most recent serve time across all programs mapped to ``image_id``."""
        with self._lock:
            unix = self._image_requests.get(image_id, 0)
        if unix <= 0:
            return None
        return datetime.fromtimestamp(unix, tz=timezone.utc)

    def programs_for_image(self, image_id: str) -> list[str]:
        """Program ids currently mapped to ``image_id``."""
        with self._lock:
            return sorted(pid for pid, entry in self._entries.items() if entry.image_id == image_id)

    def image_ids(self) -> set[str]:
        """Distinct image ids referenced by the index."""
        with self._lock:
            return {entry.image_id for entry in self._entries.values()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, program_id: object) -> bool:
        with self._lock:
            return program_id in self._entries
