"""
Services module for guideart.

Contains the poster selection, caching and download components and the
Schedules Direct client they share.
"""

from __future__ import annotations

from guideart.services.backoff_gate import BackoffGate, next_utc_midnight_plus
from guideart.services.download_coordinator import DownloadCoordinator
from guideart.services.image_blocklist import ImageBlocklist
from guideart.services.image_index import ProgramImageIndex
from guideart.services.image_overrides import ImageOverrides
from guideart.services.image_selector import SelectionConfig, select_image
from guideart.services.metadata_cache import ProgramMetadataCache
from guideart.services.poster_proxy import PosterProxyConfig, PosterProxyService
from guideart.services.schedules_direct import SchedulesDirectClient
from guideart.services.stale_evictor import StaleImageEvictor
from guideart.services.token_manager import TokenManager

__all__: list[str] = [
    "BackoffGate",
    "DownloadCoordinator",
    "ImageBlocklist",
    "ImageOverrides",
    "PosterProxyConfig",
    "PosterProxyService",
    "ProgramImageIndex",
    "ProgramMetadataCache",
    "SchedulesDirectClient",
    "SelectionConfig",
    "StaleImageEvictor",
    "TokenManager",
    "next_utc_midnight_plus",
    "select_image",
]
