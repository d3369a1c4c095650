"""
On-disk cache of program artwork metadata.

Lives in the guide cache file (default ``./cache/guide_cache.json``) shared
with the guide builder. This module only owns the ``Metadata`` object::

    {
      "Metadata": {"EP012345670000": {"title": "...", "data": [{...}, ...]}},
      "Program": {"EP012345670000": {"titles": [{"title120": "..."}]}},
      ...
    }

Every other top-level key is preserved untouched on write. Program titles
are also read from the ``Program`` section when present.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from guideart.models.images import ProgramMetadata
from guideart.utils.files import atomic_write_bytes

logger = logging.getLogger(__name__)

METADATA_KEY = "Metadata"
PROGRAM_KEY = "Program"


class ProgramMetadataCache:
    """Read/write access to the ``Metadata`` section of the guide cache."""

    def __init__(self, cache_file: Path) -> None:
        self.cache_file = Path(cache_file)
        self._lock = threading.RLock()
        self._document: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        try:
            raw = json.loads(self.cache_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable guide cache %s: %s", self.cache_file, e)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed guide cache %s", self.cache_file)
            return {}
        if not isinstance(raw.get(METADATA_KEY), dict):
            raw[METADATA_KEY] = {}
        return raw

    def _section(self) -> dict[str, Any]:
        return self._document.setdefault(METADATA_KEY, {})

    def _save(self) -> None:
        try:
            atomic_write_bytes(
                self.cache_file, json.dumps(self._document, indent=2).encode("utf-8")
            )
        except OSError as e:
            logger.warning("Failed to save guide cache %s: %s", self.cache_file, e)

    def _program_title(self, program_id: str) -> Optional[str]:
        program = self._document.get(PROGRAM_KEY, {}).get(program_id)
        if not isinstance(program, dict):
            return None
        for title in program.get("titles") or []:
            if isinstance(title, dict) and title.get("title120"):
                return str(title["title120"])
        return None

    def get(self, program_id: str) -> Optional[ProgramMetadata]:
        """Cached metadata for ``program_id``, or None."""
        with self._lock:
            entry = self._section().get(program_id)
            if not isinstance(entry, dict):
                return None
            title = entry.get("title") or self._program_title(program_id)
            data = entry.get("data") if isinstance(entry.get("data"), list) else []
        try:
            return ProgramMetadata(program_id=program_id, title=title, candidates=data)
        except ValueError as e:
            logger.warning("Discarding malformed metadata for %s: %s", program_id, e)
            return None

    def title_for(self, program_id: str) -> Optional[str]:
        """Program title from metadata or the program section, if known."""
        with self._lock:
            entry = self._section().get(program_id)
            if isinstance(entry, dict) and entry.get("title"):
                return str(entry["title"])
            return self._program_title(program_id)

    def put(self, metadata: ProgramMetadata) -> None:
        """Store ``metadata`` and write the cache file."""
        entry: dict[str, Any] = {
            "data": [c.model_dump() for c in metadata.candidates],
        }
        if metadata.title:
            entry["title"] = metadata.title
        with self._lock:
            self._section()[metadata.program_id] = entry
            self._save()

    def remove(self, program_id: str) -> bool:
        """Drop cached metadata for ``program_id``; returns whether it existed."""
        with self._lock:
            if self._section().pop(program_id, None) is None:
                return False
            self._save()
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._section())

    def __contains__(self, program_id: object) -> bool:
        with self._lock:
            return program_id in self._section()
