"""Tests for src/sync/backoff.py"""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.courtlistener.rate_limiter import UsageStats
from src.sync.backoff import compute_delay, seconds_until
from tests.helpers import T0


def stats(remaining: int, minutes_left: float = 60, limit: int = 4500) -> UsageStats:
    used = limit - remaining
    return UsageStats(
        total_requests=used,
        limit=limit,
        remaining=remaining,
        utilization_percent=100.0 * used / limit,
        window_start=T0 - timedelta(minutes=60 - minutes_left),
        window_end=T0 + timedelta(minutes=minutes_left),
    )


class TestComputeDelay:
    def test_unknown_usage_uses_fallback(self):
        assert compute_delay(UsageStats.unknown(4500), 10, fallback=5.0, now=T0) == 5.0

    def test_idle_window_barely_waits(self):
        delay = compute_delay(stats(remaining=4500), expected_requests=11, fallback=5.0, now=T0)
        assert delay == pytest.approx(3600 * 11 / 4500)

    def test_busy_window_waits_longer(self):
        idle = compute_delay(stats(remaining=4000), 30, fallback=10.0, now=T0)
        busy = compute_delay(stats(remaining=100), 30, fallback=10.0, now=T0)
        assert busy > idle

    def test_not_enough_quota_waits_for_reset(self):
        delay = compute_delay(stats(remaining=5, minutes_left=12), expected_requests=30, fallback=10.0, now=T0)
        assert delay == pytest.approx(12 * 60)

    def test_exhausted_quota_waits_for_reset(self):
        delay = compute_delay(stats(remaining=0, minutes_left=3), expected_requests=0, fallback=10.0, now=T0)
        assert delay == pytest.approx(180)

    def test_minimum_applies(self):
        delay = compute_delay(stats(remaining=4500), 1, fallback=5.0, minimum=2.0, now=T0)
        assert delay == 2.0

    def test_never_past_window_end(self):
        delay = compute_delay(stats(remaining=4500, minutes_left=0.5), 1, fallback=5.0, minimum=120.0, now=T0)
        assert delay == pytest.approx(30)


class TestSecondsUntil:
    def test_future(self):
        assert seconds_until(T0 + timedelta(seconds=90), T0) == 90

    def test_past_and_none(self):
        assert seconds_until(T0 - timedelta(seconds=5), T0) == 0.0
        assert seconds_until(None, T0) == 0.0
