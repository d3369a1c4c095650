"""
Tests for per-image download de-duplication.
"""

from __future__ import annotations

import asyncio

import pytest

from guideart.services.download_coordinator import DownloadCoordinator

pytestmark = pytest.mark.asyncio


class TestDownloadCoordinator:
    """Tests for acquire(), release() and wait()."""

    async def test_first_caller_owns_download(self) -> None:
        """The first acquire() owns; the second waits on the same event."""
        coordinator = DownloadCoordinator()

        event, owner = coordinator.acquire("img1")
        other_event, other_owner = coordinator.acquire("img1")

        assert owner is True
        assert other_owner is False
        assert other_event is event
        assert coordinator.in_flight() == ["img1"]

    async def test_release_wakes_waiters_and_clears_registration(self) -> None:
        """Waiters return True once the owner releases."""
        coordinator = DownloadCoordinator()
        coordinator.acquire("img1")
        event, _ = coordinator.acquire("img1")

        waiter = asyncio.create_task(coordinator.wait(event, timeout=1.0))
        await asyncio.sleep(0)
        coordinator.release("img1")

        assert await waiter is True
        assert coordinator.in_flight() == []

    async def test_new_acquire_after_release_owns_again(self) -> None:
        """Failed downloads do not block later attempts."""
        coordinator = DownloadCoordinator()
        coordinator.acquire("img1")
        coordinator.release("img1")

        _, owner = coordinator.acquire("img1")

        assert owner is True

    async def test_wait_times_out(self) -> None:
        """wait() returns False when the owner never finishes."""
        coordinator = DownloadCoordinator()
        coordinator.acquire("img1")
        event, _ = coordinator.acquire("img1")

        assert await coordinator.wait(event, timeout=0.01) is False

    async def test_blank_id_is_never_guarded(self) -> None:
        """Blank ids always own and have no event."""
        coordinator = DownloadCoordinator()

        assert coordinator.acquire("") == (None, True)
        assert coordinator.acquire("") == (None, True)
        assert await coordinator.wait(None) is True
        coordinator.release("")

    async def test_distinct_images_do_not_contend(self) -> None:
        """Different ids are independent."""
        coordinator = DownloadCoordinator()

        _, first = coordinator.acquire("img1")
        _, second = coordinator.acquire("img2")

        assert first is True and second is True
        assert coordinator.in_flight() == ["img1", "img2"]
