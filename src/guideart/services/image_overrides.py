"""
Title -> image pins.

``overrides.txt`` lets the user force a specific Schedules Direct image for a
show regardless of what the selector would pick. Each non-blank line is one
CSV record::

    "The Example Show","a1b2c3d4e5"

Titles match case-insensitively after trimming. Pinned image ids are never
evicted as stale. The file is read once, on first use.
"""

from __future__ import annotations

import csv
import io
import logging
import threading
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ImageOverrides:
    """Lazily loaded override list."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._loaded = False
        self._by_title: dict[str, str] = {}
        self._image_ids: set[str] = set()

    def _ensure_loaded(self) -> None:
        with self._lock:
            if self._loaded:
                return
            self._loaded = True
            try:
                text = self.path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return
            except OSError as e:
                logger.warning("Failed to read overrides file %s: %s", self.path, e)
                return
            self._parse(text)

    def _parse(self, text: str) -> None:
        for line_no, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.strip()
            if not line:
                continue
            try:
                record = next(csv.reader(io.StringIO(line), skipinitialspace=True))
            except (csv.Error, StopIteration) as e:
                logger.warning("Overrides %s:%d: unable to parse line (%s)", self.path, line_no, e)
                continue
            if len(record) != 2:
                logger.warning(
                    "Overrides %s:%d: expected 2 fields, got %d", self.path, line_no, len(record)
                )
                continue
            title, image_id = record[0].strip(), record[1].strip()
            if not title or not image_id:
                logger.warning("Overrides %s:%d: empty title or image id", self.path, line_no)
                continue
            self._by_title[title.lower()] = image_id
            self._image_ids.add(image_id)

        if self._by_title:
            logger.info("Loaded %d image overrides from %s", len(self._by_title), self.path)

    def image_for_title(self, title: Optional[str]) -> Optional[str]:
        """Pinned image id for ``title``, if any."""
        if not title:
            return None
        self._ensure_loaded()
        return self._by_title.get(title.strip().lower())

    def is_pinned(self, image_id: str) -> bool:
        """True if ``image_id`` appears in the override list."""
        if not image_id:
            return False
        self._ensure_loaded()
        return image_id in self._image_ids

    def pinned_image_ids(self) -> frozenset[str]:
        """All pinned image ids."""
        self._ensure_loaded()
        return frozenset(self._image_ids)

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._by_title)
