"""
Tests for the dependency injection container.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from guideart.config.settings import Settings
from guideart.container import Container
from tests.fakes import JPEG_BYTES

pytestmark = pytest.mark.asyncio


@pytest.fixture
def test_container(test_settings: Settings) -> Container:
    return Container(test_settings)


class TestSingletons:
    """Tests for cached component wiring."""

    async def test_components_are_cached(self, test_container: Container) -> None:
        """Repeated access returns the same instances."""
        assert test_container.poster_proxy is test_container.poster_proxy
        assert test_container.gate is test_container.gate

    async def test_proxy_shares_components(self, test_container: Container) -> None:
        """The proxy, token manager and admin views share one gate and index."""
        proxy = test_container.poster_proxy

        assert proxy._gate is test_container.gate
        assert proxy._index is test_container.index
        assert proxy._coordinator is test_container.coordinator
        assert test_container.token_manager.token_file == test_container.settings.token_file

    async def test_reset_rebuilds(self, test_container: Container) -> None:
        """reset() drops every cached component."""
        gate = test_container.gate

        test_container.reset()

        assert test_container.gate is not gate

    async def test_shutdown_without_client_is_noop(self, test_container: Container) -> None:
        """Shutting down before any upstream use does not build a client."""
        await test_container.shutdown()

        assert "sd_client" not in test_container.__dict__


class TestStartup:
    """Tests for Container.startup()."""

    async def test_startup_creates_dirs_and_purges(self, tmp_path: Path) -> None:
        """Startup creates directories, removes blocked and stale posters."""
        settings = Settings(
            cache_file=tmp_path / "cache" / "guide_cache.json",
            image_dir=tmp_path / "cache" / "images",
            image_cache_ttl_days=10,
        )
        settings.create_directories()
        image_dir = settings.image_dir
        (image_dir / "blocked.jpg").write_bytes(JPEG_BYTES)
        (image_dir / "fresh.jpg").write_bytes(JPEG_BYTES)
        stale = image_dir / "stale.jpg"
        stale.write_bytes(JPEG_BYTES)
        stamp = (datetime.now(timezone.utc) - timedelta(days=25)).timestamp()
        os.utime(stale, (stamp, stamp))
        settings.blocklist_file.write_text("blocked\n")

        Container(settings).startup()

        assert sorted(p.name for p in image_dir.iterdir()) == ["fresh.jpg"]

    async def test_startup_on_empty_tree(self, tmp_path: Path) -> None:
        """A missing cache tree is created."""
        settings = Settings(
            cache_file=tmp_path / "new" / "guide_cache.json",
            image_dir=tmp_path / "new" / "images",
        )

        Container(settings).startup()

        assert settings.image_dir.is_dir()
