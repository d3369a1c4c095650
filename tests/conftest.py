"""
Pytest configuration and fixtures for guideart tests.

All on-disk state lives under ``tmp_path``. Schedules Direct is replaced by
an ``httpx.MockTransport`` driven by :class:`tests.fakes.FakeSchedulesDirect`.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from guideart.config.settings import Settings
from tests.fakes import (
    JPEG_BYTES,
    PROGRAM_ID,
    SD_BASE_URL,
    FakeClock,
    FakeSchedulesDirect,
    candidate,
)


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to ``FIXED_NOW``."""
    return FakeClock()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Cache root under ``tmp_path``."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def image_dir(cache_dir: Path) -> Path:
    """Poster directory under the cache root."""
    path = cache_dir / "images"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(cache_dir: Path, image_dir: Path) -> Settings:
    """Settings pointing every file at ``tmp_path``."""
    return Settings(
        sd_username="user",
        sd_password="secret",
        sd_base_url=SD_BASE_URL,
        cache_file=cache_dir / "guide_cache.json",
        image_dir=image_dir,
        debug=False,
        log_level="INFO",
    )


@pytest.fixture
def fake_sd() -> FakeSchedulesDirect:
    """Upstream stand-in with one program and its series poster."""
    upstream = FakeSchedulesDirect()
    upstream.metadata[PROGRAM_ID] = [
        candidate(
            "ep-still", category="Iconic", aspect="16x9", width=1920, height=1080, tier="Episode"
        ),
        candidate("series-poster", width=240, height=360),
    ]
    upstream.images["series-poster"] = JPEG_BYTES
    return upstream
