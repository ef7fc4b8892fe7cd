"""Tests for the sliding-window health monitor."""

import pytest

from health_monitor import HealthMonitor, matches_exhaustion


@pytest.fixture
def monitor(clock):
    return HealthMonitor(window_seconds=1.0, threshold=3, backoff_seconds=5.0, clock=clock)


class TestSignal:

    def test_threshold_inside_window_trips_backoff(self, monitor, clock):
        assert monitor.signal("timeout") is False
        clock.advance(0.2)
        assert monitor.signal("timeout") is False
        clock.advance(0.2)
        assert monitor.signal("timeout") is True

        assert monitor.backoff_until == pytest.approx(clock.now + 5.0)
        assert monitor.is_degraded()
        assert monitor.backoff_trips == 1

    def test_window_cleared_after_trip(self, monitor, clock):
        for _ in range(3):
            monitor.signal()
        assert monitor.window_size == 0

        clock.advance(0.1)
        assert monitor.signal() is False
        assert monitor.window_size == 1

    def test_old_signals_fall_out_of_window(self, monitor, clock):
        monitor.signal()
        clock.advance(0.6)
        monitor.signal()
        clock.advance(0.6)
        assert monitor.signal() is False

        assert monitor.window_size == 2
        assert not monitor.is_degraded()

    def test_signal_exactly_window_old_is_pruned(self, monitor, clock):
        monitor.signal()
        clock.advance(1.0)
        monitor.signal()
        assert monitor.window_size == 1

    def test_backoff_expires(self, monitor, clock):
        for _ in range(3):
            monitor.signal()
        clock.advance(4.9)
        assert monitor.is_degraded()
        assert monitor.backoff_remaining == pytest.approx(0.1)
        clock.advance(0.2)
        assert not monitor.is_degraded()
        assert monitor.backoff_remaining == 0.0

    def test_backoff_deadline_never_moves_backwards(self, monitor, clock):
        for _ in range(3):
            monitor.signal()
        first_deadline = monitor.backoff_until

        monitor.backoff_seconds = 0.5
        clock.advance(0.1)
        for _ in range(3):
            monitor.signal()

        assert monitor.backoff_trips == 2
        assert monitor.backoff_until == first_deadline

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValueError):
            HealthMonitor(threshold=0)

    def test_to_dict(self, monitor):
        monitor.signal()
        data = monitor.to_dict()
        assert data["total_signals"] == 1
        assert data["backoff_trips"] == 0
        assert data["threshold"] == 3


class TestExhaustionMatching:

    @pytest.mark.parametrize("message", [
        "HTTP 500: HikariPool-1 - Connection is not available, request timed out after 30000ms",
        "HTTP 503: connection pool exhausted",
        "HTTP 500: FATAL: too many connections for role",
        "HTTP 500: Transaction silently rolled back because it has been marked as rollback-only",
        "HTTP 500: java.lang.OutOfMemoryError: Java heap space",
        "HTTP 500: Out of sort memory, consider increasing server sort buffer size",
    ])
    def test_exhaustion_messages_match(self, message):
        assert matches_exhaustion(message)

    @pytest.mark.parametrize("message", [
        None,
        "",
        "HTTP 404: Product not found",
        "HTTP 400: Validation failed",
        "Timeout",
    ])
    def test_other_messages_do_not_match(self, message):
        assert not matches_exhaustion(message)

    def test_signal_if_exhausted(self, monitor):
        assert monitor.signal_if_exhausted("HTTP 500: out of memory") is True
        assert monitor.signal_if_exhausted("HTTP 404: nope") is False
        assert monitor.total_signals == 1
