"""
Deterministic poster selection.

Given the artwork candidates Schedules Direct lists for a program, pick the
single best poster. Every ranking rule lives in a module constant so a rule
change shows up as a reviewable diff together with a ``RANKING_VERSION`` bump.

Score (lower wins)::

    tier_rank * 100 + category_rank * 10 + aspect_rank

Ties go to the wider image, then to the earlier candidate in input order.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from guideart.models.images import ImageCandidate

logger = logging.getLogger(__name__)

RANKING_VERSION = 3

DEFAULT_ALLOWED_CATEGORIES: tuple[str, ...] = (
    "Poster Art",
    "Box Art",
    "Banner-L1",
    "Banner-L2",
    "VOD Art",
)

# Rejected even when allow-listed
EXCLUDED_CATEGORY_MARKERS: tuple[str, ...] = (
    "cast",
    "person",
    "people",
    "headshot",
    "celebrity",
    "background",
    "fanart",
    "landscape",
)

TIER_RANKS: dict[str, int] = {
    "series": 0,
    "show": 0,
    "sport": 0,
    "team": 0,
    "season": 1,
    "episode": 2,
}
UNKNOWN_TIER_RANK = 1

# Only used when no exact aspect was requested
ASPECT_RANKS: dict[str, int] = {
    "2x3": 0,
    "3x4": 1,
    "4x3": 2,
    "1x1": 3,
    "16x9": 4,
}
UNKNOWN_ASPECT_RANK = 5

TIER_WEIGHT = 100
CATEGORY_WEIGHT = 10

NO_ASPECT_FILTER = "all"


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


@dataclass(frozen=True)
class SelectionConfig:
    """
    Knobs for :func:`select_image`.

    Attributes
    ----------
    desired_aspect : str | None
        Exact aspect to require (e.g. ``"2x3"``). ``None``, ``""`` or
        ``"all"`` disables the filter and enables aspect ranking instead.
    allowed_categories : tuple[str, ...]
        Accepted categories; the position in the tuple is the rank.
    """

    desired_aspect: Optional[str] = "2x3"
    allowed_categories: tuple[str, ...] = field(
        default_factory=lambda: DEFAULT_ALLOWED_CATEGORIES
    )

    @property
    def aspect_filter(self) -> Optional[str]:
        """Normalized aspect to filter on, or None when unfiltered."""
        aspect = _normalize(self.desired_aspect)
        if not aspect or aspect == NO_ASPECT_FILTER:
            return None
        return aspect

    def category_rank(self, category: str) -> Optional[int]:
        """Position of ``category`` in the allow-list, or None if not allowed."""
        wanted = _normalize(category)
        for rank, allowed in enumerate(self.allowed_categories):
            if _normalize(allowed) == wanted:
                return rank
        return None


def tier_rank(tier: str) -> int:
    """Rank of a program tier; series-level art beats season beats episode."""
    return TIER_RANKS.get(_normalize(tier), UNKNOWN_TIER_RANK)


def aspect_rank(aspect: str) -> int:
    """Preference among aspects when no exact aspect is required."""
    return ASPECT_RANKS.get(_normalize(aspect), UNKNOWN_ASPECT_RANK)


def is_excluded_category(category: str) -> bool:
    """True for person/cast/background style artwork."""
    value = _normalize(category)
    return any(marker in value for marker in EXCLUDED_CATEGORY_MARKERS)


def score_candidate(candidate: ImageCandidate, config: SelectionConfig) -> Optional[int]:
    """
    Score one candidate under ``config``.

    Parameters
    ----------
    candidate : ImageCandidate
        Artwork descriptor.
    config : SelectionConfig
        Active selection rules.

    Returns
    -------
    int | None
        Score (lower is better), or None if the candidate is not eligible.
    """
    if not candidate.uri:
        return None
    if is_excluded_category(candidate.category):
        return None
    cat_rank = config.category_rank(candidate.category)
    if cat_rank is None:
        return None

    wanted_aspect = config.aspect_filter
    if wanted_aspect is not None:
        if _normalize(candidate.aspect) != wanted_aspect:
            return None
        a_rank = 0
    else:
        a_rank = aspect_rank(candidate.aspect)

    return tier_rank(candidate.tier) * TIER_WEIGHT + cat_rank * CATEGORY_WEIGHT + a_rank


def select_image(
    candidates: Sequence[ImageCandidate],
    config: Optional[SelectionConfig] = None,
) -> Optional[ImageCandidate]:
    """
    Choose the single best poster among ``candidates``.

    Parameters
    ----------
    candidates : Sequence[ImageCandidate]
        Artwork descriptors in upstream order.
    config : SelectionConfig | None, optional
        Selection rules (default: 2x3 posters, default allow-list).

    Returns
    -------
    ImageCandidate | None
        The winning candidate, or None when nothing is acceptable. There is
        no relaxation of the aspect filter.
    """
    config = config or SelectionConfig()

    best: Optional[tuple[int, int, int]] = None
    best_candidate: Optional[ImageCandidate] = None
    for position, candidate in enumerate(candidates):
        score = score_candidate(candidate, config)
        if score is None:
            continue
        key = (score, -candidate.width, position)
        if best is None or key < best:
            best = key
            best_candidate = candidate

    if best_candidate is None:
        logger.debug(
            "No acceptable image among %d candidates (aspect=%s)",
            len(candidates),
            config.aspect_filter or NO_ASPECT_FILTER,
        )
    return best_candidate
