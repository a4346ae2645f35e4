"""Delay between phase iterations, computed from the remaining quota."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from src.courtlistener.rate_limiter import UsageStats


def seconds_until(moment: Optional[datetime], now: datetime) -> float:
    if moment is None:
        return 0.0
    return max(0.0, (moment - now).total_seconds())


def compute_delay(
    stats: UsageStats,
    expected_requests: int,
    fallback: float,
    minimum: float = 0.0,
    now: datetime | None = None,
) -> float:
    """
    Seconds to wait before issuing a batch of ``expected_requests`` calls.

    - Unknown usage: ``fallback``.
    - Not enough quota left: wait for the window to reset.
    - Otherwise spread the remaining quota over the rest of the window, so a
      nearly idle window yields almost no wait and a busy one slows down.
    """
    if not stats.available or stats.remaining is None or stats.window_end is None:
        return fallback

    now = now or datetime.now(timezone.utc)
    until_reset = seconds_until(stats.window_end, now)
    if stats.remaining < expected_requests:
        return until_reset
    if stats.remaining == 0:
        return until_reset

    paced = until_reset * max(expected_requests, 0) / stats.remaining
    return min(max(paced, minimum), until_reset)
