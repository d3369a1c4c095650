"""
Tests for the global upstream pause.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from guideart.services.backoff_gate import (
    BackoffGate,
    next_utc_midnight_plus,
    parse_retry_after,
    retry_after_seconds,
)
from tests.fakes import FIXED_NOW, FakeClock


class TestHelpers:
    """Tests for the reset-time helpers."""

    def test_next_midnight_plus_grace(self) -> None:
        """23:59 rolls over to 00:05 the next day."""
        ref = datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc)

        assert next_utc_midnight_plus(ref) == datetime(2024, 3, 2, 0, 5, tzinfo=timezone.utc)

    def test_next_midnight_converts_to_utc(self) -> None:
        """Non-UTC references are converted before rolling over."""
        ref = datetime(2024, 3, 1, 20, 0, tzinfo=timezone(timedelta(hours=-5)))

        assert next_utc_midnight_plus(ref, minutes=0) == datetime(
            2024, 3, 3, 0, 0, tzinfo=timezone.utc
        )

    def test_naive_reference_is_utc(self) -> None:
        """Naive datetimes are treated as UTC."""
        assert next_utc_midnight_plus(datetime(2024, 12, 31, 1, 0)) == datetime(
            2025, 1, 1, 0, 5, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize(
        "remaining,expected",
        [
            (timedelta(seconds=0), 1),
            (timedelta(milliseconds=200), 1),
            (timedelta(seconds=10.2), 11),
            (timedelta(hours=1), 3600),
        ],
    )
    def test_retry_after_seconds(self, remaining: timedelta, expected: int) -> None:
        """Retry-After is rounded up and never below one second."""
        assert retry_after_seconds(remaining) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("120", 120),
            (" 30 ", 30),
            ("0", None),
            ("", None),
            (None, None),
            ("soon", None),
            ("Fri, 01 Mar 2024 12:10:00 GMT", 600),
            ("Fri, 01 Mar 2024 11:00:00 GMT", None),
        ],
    )
    def test_parse_retry_after(self, value: str | None, expected: int | None) -> None:
        """Delay seconds and future HTTP dates are accepted; anything else is None."""
        assert parse_retry_after(value, FIXED_NOW) == expected


class TestBackoffGate:
    """Tests for BackoffGate."""

    def test_open_by_default(self, clock: FakeClock) -> None:
        """A new gate does not block."""
        gate = BackoffGate(clock)

        assert gate.should_block() == (False, timedelta(0))
        assert gate.paused_until is None
        assert gate.reason is None

    def test_pause_blocks_until_deadline(self, clock: FakeClock) -> None:
        """The gate blocks with the remaining time until the deadline passes."""
        gate = BackoffGate(clock)
        gate.pause_for(60, "HTTP 429")

        blocked, remaining = gate.should_block()
        assert blocked is True
        assert remaining == timedelta(seconds=60)
        assert gate.reason == "HTTP 429"

        clock.advance(seconds=60)
        assert gate.should_block() == (False, timedelta(0))
        assert gate.paused_until is None

    def test_pause_only_extends(self, clock: FakeClock) -> None:
        """An earlier deadline never shortens an active pause."""
        gate = BackoffGate(clock)
        later = FIXED_NOW + timedelta(hours=2)

        assert gate.set_pause_until(later, "quota") is True
        assert gate.set_pause_until(FIXED_NOW + timedelta(minutes=5), "429") is False
        assert gate.set_pause_until(later, "again") is False

        assert gate.paused_until == later
        assert gate.reason == "quota"

    def test_later_deadline_extends(self, clock: FakeClock) -> None:
        """A later deadline replaces the current one."""
        gate = BackoffGate(clock)
        gate.pause_for(60, "429")

        assert gate.pause_for(600, "quota") is True
        assert gate.paused_until == FIXED_NOW + timedelta(seconds=600)

    def test_none_deadline_is_ignored(self, clock: FakeClock) -> None:
        """set_pause_until(None) is a no-op."""
        gate = BackoffGate(clock)

        assert gate.set_pause_until(None, "nothing") is False
        assert gate.should_block()[0] is False

    def test_clear_lifts_pause(self, clock: FakeClock) -> None:
        """clear() reopens the gate immediately."""
        gate = BackoffGate(clock)
        gate.pause_for(3600, "quota")

        gate.clear()

        assert gate.should_block()[0] is False
        assert gate.set_pause_until(FIXED_NOW + timedelta(minutes=1), "429") is True
