"""
Eviction of cached posters nobody asked for in a long time.

A cached file is purged once its age exceeds twice the configured image TTL.
Age is measured from the last time any program was served that image (from
the index), falling back to the file's mtime for images the index does not
know. Images pinned by the override list are never purged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from guideart.services.image_index import ProgramImageIndex
from guideart.services.image_overrides import ImageOverrides
from guideart.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

# Files older than this multiple of the TTL are removed
EVICTION_TTL_MULTIPLIER = 2

_IMAGE_SUFFIX = ".jpg"


class StaleImageEvictor:
    """
    Deletes stale ``<image_id>.jpg`` files and prunes their index entries.

    Parameters
    ----------
    index : ProgramImageIndex
        Source of last-request times; pruned after deletions.
    overrides : ImageOverrides | None, optional
        Pinned images that must be kept.
    clock : Clock | None, optional
        Source of "now" (default: aware UTC wall clock).
    """

    def __init__(
        self,
        index: ProgramImageIndex,
        overrides: Optional[ImageOverrides] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._index = index
        self._overrides = overrides
        self._clock = clock or utc_now

    def _last_used(self, image_id: str, path: Path) -> Optional[datetime]:
        last = self._index.last_request_for_image(image_id)
        if last is not None:
            return last
        try:
            return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError as e:
            logger.warning("Cannot stat %s: %s", path, e)
            return None

    def purge(self, directory: Path, max_age_days: int) -> int:
        """
        Remove stale cached images from ``directory``.

        Parameters
        ----------
        directory : Path
            Image cache directory.
        max_age_days : int
            Image TTL in days; files unused for twice this long are removed.
            Zero or negative disables eviction.

        Returns
        -------
        int
            Number of files deleted.
        """
        if max_age_days <= 0:
            return 0
        directory = Path(directory)
        if not directory.is_dir():
            return 0

        threshold = timedelta(days=max_age_days * EVICTION_TTL_MULTIPLIER)
        now = self._clock()
        removed_ids: list[str] = []

        for path in sorted(directory.glob(f"*{_IMAGE_SUFFIX}")):
            if not path.is_file():
                continue
            image_id = path.stem
            if self._overrides is not None and self._overrides.is_pinned(image_id):
                continue
            last_used = self._last_used(image_id, path)
            if last_used is None or now - last_used <= threshold:
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Failed to remove stale poster %s: %s", path, e)
                continue
            removed_ids.append(image_id)
            logger.debug("Removed stale poster %s (last used %s)", path.name, last_used.isoformat())

        if removed_ids:
            pruned = self._index.delete_by_image_ids(removed_ids)
            logger.info(
                "Purged %d stale posters from %s (%d index entries pruned)",
                len(removed_ids),
                directory,
                pruned,
            )
        return len(removed_ids)
