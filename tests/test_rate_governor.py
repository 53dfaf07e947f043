"""Tests for sliding-window request budgeting and backoff."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from deliveryspeed.rate_governor import HOUR_MS, MINUTE_MS, RateGovernor


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


def _governor(clock: FakeClock, **kwargs) -> RateGovernor:
    return RateGovernor(clock=clock, **kwargs)


def test_compute_wait_is_zero_with_fresh_budget():
    """Verify no wait is required before any request was made."""
    governor = _governor(FakeClock())

    assert governor.compute_wait_ms() == 0


def test_burst_capacity_forces_wait_until_oldest_request_expires():
    """Verify the burst window blocks until its oldest member ages out."""
    clock = FakeClock()
    governor = _governor(clock, burst_limit=3)

    for _ in range(3):
        governor.record_success(from_cache=False)
        clock.advance_ms(1000)

    wait_ms = governor.compute_wait_ms()
    assert wait_ms == pytest.approx(MINUTE_MS - 3000)

    clock.advance_ms(wait_ms)
    assert governor.compute_wait_ms() == 0


def test_cached_requests_do_not_consume_budget():
    """Verify cache hits are counted but never enter the sliding windows."""
    governor = _governor(FakeClock(), burst_limit=1)

    governor.record_success(from_cache=True)
    governor.record_success(from_cache=True)

    assert governor.compute_wait_ms() == 0
    assert governor.remaining() == {"hourly": 4500, "burst": 1}
    assert governor.stats().cached_requests == 2
    assert governor.stats().total_requests == 0


def test_hourly_safety_margin_waits_at_most_current_delay():
    """Verify the hourly window near its limit waits min(expiry, current delay)."""
    clock = FakeClock()
    governor = _governor(clock, hourly_limit=20, burst_limit=1000, floor_ms=2000)

    for _ in range(10):
        governor.record_success(from_cache=False)

    assert governor.remaining()["hourly"] == 10
    assert governor.compute_wait_ms() == 2000


def test_hourly_margin_not_reached_returns_zero():
    """Verify eleven remaining hourly requests do not trigger a wait."""
    governor = _governor(FakeClock(), hourly_limit=20, burst_limit=1000)

    for _ in range(9):
        governor.record_success(from_cache=False)

    assert governor.compute_wait_ms() == 0


def test_hourly_window_prunes_entries_older_than_one_hour():
    """Verify timestamps older than an hour no longer count against the budget."""
    clock = FakeClock()
    governor = _governor(clock, hourly_limit=20, burst_limit=1000)

    for _ in range(15):
        governor.record_success(from_cache=False)
    clock.advance_ms(HOUR_MS)

    assert governor.remaining() == {"hourly": 20, "burst": 1000}
    assert governor.compute_wait_ms() == 0


def test_hard_limit_waits_until_reset_then_clears():
    """Verify a hard limit returns the time to reset and clears once it passes."""
    clock = FakeClock(start=1000.0)
    governor = _governor(clock)

    governor.on_hard_limit(1060)

    assert governor.compute_wait_ms() == pytest.approx(60_000)
    assert governor.stats().rate_limit_hits == 1

    clock.advance_ms(60_000)
    assert governor.compute_wait_ms() == 0
    assert governor.backoff.is_limited is False


def test_backoff_escalates_to_ceiling_and_resets_on_clean_request():
    """Verify consecutive waits increase the delay up to the ceiling and a clean request resets it."""
    governor = _governor(FakeClock(), multiplier=2.0, floor_ms=1000, ceiling_ms=5000)

    delays = []
    for _ in range(5):
        governor.on_waited(100)
        delays.append(governor.backoff.current_delay_ms)

    assert delays == [2000, 4000, 5000, 5000, 5000]
    assert governor.stats().backoff_events == 5
    assert governor.stats().total_wait_ms == 500

    governor.on_clean_request()
    assert governor.backoff.current_delay_ms == 1000


def test_efficiency_reports_cache_share():
    """Verify efficiency is the percentage of requests served from cache."""
    governor = _governor(FakeClock())
    governor.record_success(from_cache=True)
    governor.record_success(from_cache=False)
    governor.record_success(from_cache=False)
    governor.record_success(from_cache=True)

    assert governor.stats().efficiency == pytest.approx(50.0)
