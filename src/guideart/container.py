"""
Dependency Injection Container for guideart.

Builds the long-lived components of the poster proxy exactly once and wires
them together. Every component is a lazily created singleton exposed as a
``cached_property``; tests either build a ``Container`` from their own
``Settings`` or call :meth:`Container.reset` after patching.

Usage
-----
    >>> from guideart.container import container
    >>> service = container.poster_proxy  # Cached
    >>> container.poster_proxy is service
    True

Design Principles
-----------------
- Components never reach for module-level state; everything is injected
- Settings are captured at construction (defaults to the global instance)
- Container can be reset for testing isolation
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import Optional

from guideart.config.settings import Settings
from guideart.config.settings import settings as default_settings
from guideart.services.backoff_gate import BackoffGate
from guideart.services.download_coordinator import DownloadCoordinator
from guideart.services.image_blocklist import ImageBlocklist, purge_all_blocked
from guideart.services.image_index import ProgramImageIndex
from guideart.services.image_overrides import ImageOverrides
from guideart.services.metadata_cache import ProgramMetadataCache
from guideart.services.poster_proxy import PosterProxyConfig, PosterProxyService
from guideart.services.schedules_direct import SchedulesDirectClient
from guideart.services.stale_evictor import StaleImageEvictor
from guideart.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


class Container:
    """
    Dependency injection container for guideart.

    Parameters
    ----------
    app_settings : Settings | None, optional
        Settings to build components from (default: global ``settings``).

    Examples
    --------
        >>> container = Container(Settings(cache_file=tmp / "guide.json"))
        >>> container.gate is container.poster_proxy._gate
        True
    """

    _SINGLETONS = (
        "gate",
        "coordinator",
        "index",
        "overrides",
        "blocklist",
        "metadata_cache",
        "sd_client",
        "token_manager",
        "evictor",
        "poster_proxy",
    )

    def __init__(self, app_settings: Optional[Settings] = None) -> None:
        self.settings = app_settings or default_settings

    # -------------------------------------------------------------------------
    # Singleton Components (Cached - same instance on repeated access)
    # -------------------------------------------------------------------------

    @cached_property
    def gate(self) -> BackoffGate:
        """Global upstream pause."""
        return BackoffGate()

    @cached_property
    def coordinator(self) -> DownloadCoordinator:
        """Per-image download de-duplication."""
        return DownloadCoordinator()

    @cached_property
    def index(self) -> ProgramImageIndex:
        """Program -> image index loaded from the cache sidecar."""
        return ProgramImageIndex(self.settings.index_file)

    @cached_property
    def overrides(self) -> ImageOverrides:
        """Title -> image pins."""
        return ImageOverrides(self.settings.overrides_file)

    @cached_property
    def blocklist(self) -> ImageBlocklist:
        """Blocked image ids."""
        return ImageBlocklist(self.settings.blocklist_file)

    @cached_property
    def metadata_cache(self) -> ProgramMetadataCache:
        """Artwork metadata section of the guide cache."""
        return ProgramMetadataCache(self.settings.cache_file)

    @cached_property
    def sd_client(self) -> SchedulesDirectClient:
        """Schedules Direct API client."""
        return SchedulesDirectClient(
            base_url=self.settings.sd_base_url,
            username=self.settings.sd_username,
            password=self.settings.sd_password,
            timeout=self.settings.request_timeout,
        )

    @cached_property
    def token_manager(self) -> TokenManager:
        """Shared upstream token, persisted beside the cache file."""
        return TokenManager(
            login=self.sd_client.login,
            token_file=self.settings.token_file,
            gate=self.gate,
        )

    @cached_property
    def evictor(self) -> StaleImageEvictor:
        """Stale poster eviction."""
        return StaleImageEvictor(self.index, self.overrides)

    @cached_property
    def poster_proxy(self) -> PosterProxyService:
        """
        Get the singleton PosterProxyService.

        Returns
        -------
        PosterProxyService
            Service wired to every other component of this container.
        """
        config = PosterProxyConfig(
            image_dir=self.settings.image_dir,
            sd_base_url=self.settings.sd_base_url,
            poster_aspect=self.settings.poster_aspect,
            poster_categories=self.settings.poster_categories,
            image_cache_ttl_days=self.settings.image_cache_ttl_days,
            download_wait_timeout=self.settings.download_wait_timeout,
            throttle_pause_seconds=self.settings.throttle_pause_seconds,
        )
        return PosterProxyService(
            config=config,
            client=self.sd_client,
            tokens=self.token_manager,
            gate=self.gate,
            index=self.index,
            coordinator=self.coordinator,
            metadata=self.metadata_cache,
            overrides=self.overrides,
            blocklist=self.blocklist,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def startup(self) -> None:
        """
        Prepare the cache for serving.

        Creates the cache directories, then removes blocklisted and stale
        posters.

        Raises
        ------
        OSError
            If the cache directories cannot be created.
        """
        self.settings.create_directories()
        blocked = purge_all_blocked(self.blocklist, self.settings.image_dir, self.index)
        stale = self.evictor.purge(self.settings.image_dir, self.settings.image_cache_ttl_days)
        logger.info(
            "Cache ready at %s (%d indexed programs, %d blocked and %d stale posters removed)",
            self.settings.image_dir,
            len(self.index),
            blocked,
            stale,
        )

    async def shutdown(self) -> None:
        """Close network resources."""
        if "sd_client" in self.__dict__:
            await self.sd_client.aclose()

    # -------------------------------------------------------------------------
    # Testing Support
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """
        Reset the container by clearing all cached singleton instances.

        Examples
        --------
        >>> container.reset()
        >>> # All cached components are rebuilt on next access
        """
        for prop in self._SINGLETONS:
            self.__dict__.pop(prop, None)


# Global container instance
container = Container()
