"""Tests for the injectable clocks."""

from datetime import datetime, timezone

from payroll_kernel.domain.clock import DeterministicClock, SystemClock


class TestDeterministicClock:

    def test_fixed_until_advanced(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()
        assert clock.now().tzinfo is not None

    def test_tick_and_advance(self):
        clock = DeterministicClock(datetime(2025, 1, 31, 9, 0, tzinfo=timezone.utc))

        assert clock.tick() == datetime(2025, 1, 31, 9, 0, 1, tzinfo=timezone.utc)
        clock.advance(59)
        assert clock.now() == datetime(2025, 1, 31, 9, 1, tzinfo=timezone.utc)

    def test_set_time_resets_advance(self):
        clock = DeterministicClock()
        clock.advance(100)
        clock.set_time(datetime(2025, 2, 1, tzinfo=timezone.utc))
        assert clock.today().isoformat() == "2025-02-01"


class TestSystemClock:

    def test_timezone_aware(self):
        assert SystemClock().now().tzinfo is not None
