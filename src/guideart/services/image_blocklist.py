"""
Blocked image ids.

The blocklist file (``<cache base>.imgblock.txt``) holds one image id per
line. It is re-read whenever its modification time changes, so entries can
be added while the server runs. Blocked images are deleted from the image
directory and pruned from the index when encountered.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from guideart.services.image_index import ProgramImageIndex

logger = logging.getLogger(__name__)


class ImageBlocklist:
    """mtime-reloaded set of image ids that must never be served."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._entries: frozenset[str] = frozenset()
        self._mtime_ns: Optional[int] = None

    def _reload_if_changed(self) -> None:
        try:
            mtime_ns = self.path.stat().st_mtime_ns
        except OSError:
            with self._lock:
                self._entries = frozenset()
                self._mtime_ns = None
            return

        with self._lock:
            if self._mtime_ns == mtime_ns:
                return

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Unable to read blocklist %s: %s", self.path, e)
            with self._lock:
                self._entries = frozenset()
                self._mtime_ns = None
            return

        entries = frozenset(line.strip() for line in text.splitlines() if line.strip())
        with self._lock:
            self._entries = entries
            self._mtime_ns = mtime_ns
        logger.info("Loaded image blocklist %s (%d entries)", self.path, len(entries))

    def entries(self) -> frozenset[str]:
        """Current blocked ids (reloading the file if it changed)."""
        self._reload_if_changed()
        with self._lock:
            return self._entries

    def is_blocked(self, image_id: str) -> bool:
        """True if ``image_id`` is on the blocklist."""
        if not image_id:
            return False
        return image_id in self.entries()


def purge_blocked_image(image_id: str, image_dir: Path, index: ProgramImageIndex) -> bool:
    """
    Delete a blocked image's cached file and every index mapping to it.

    Parameters
    ----------
    image_id : str
        Blocked image id.
    image_dir : Path
        Directory holding ``<image_id>.jpg`` files.
    index : ProgramImageIndex
        Index to prune.

    Returns
    -------
    bool
        True if a cached file was removed.
    """
    if not image_id:
        return False
    removed = False
    file_path = Path(image_dir) / f"{image_id}.jpg"
    try:
        file_path.unlink()
        removed = True
        logger.info("Removed blocked cached poster %s", file_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove blocked cached poster %s: %s", file_path, e)

    index.delete_by_image_ids([image_id])
    return removed


def purge_all_blocked(blocklist: ImageBlocklist, image_dir: Path, index: ProgramImageIndex) -> int:
    """Purge every blocklisted image; returns how many cached files were removed."""
    removed = 0
    for image_id in sorted(blocklist.entries()):
        if purge_blocked_image(image_id, image_dir, index):
            removed += 1
    return removed
