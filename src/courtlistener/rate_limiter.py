"""
CourtListener rate-limit accounting.

CourtListener publishes a quota of 5,000 requests per hour. The sync keeps a
shared counter per fixed window and reports usage against a buffer limit
(4,500 by default) so manual queries keep some headroom.

The limiter never blocks. Callers read ``get_usage_stats()`` and decide
whether to pause; ``src.sync.backoff`` turns the stats into a delay.

State lives in a ``RateLimitStore``:
    MemoryRateLimitStore    - process-local counter (tests, single runs)
    PostgresRateLimitStore  - one row in ``courtlistener_rate_limit``

Usage:
    limiter = RateLimiter(MemoryRateLimitStore())
    limiter.record_request()
    stats = limiter.get_usage_stats()
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Literal, Optional, Protocol

import psycopg
from psycopg.rows import dict_row

from src.db.sql import (
    CREATE_RATE_LIMIT_TABLE,
    INCREMENT_RATE_LIMIT,
    RESET_RATE_LIMIT,
    SELECT_RATE_LIMIT,
)

logger = logging.getLogger(__name__)

HOURLY_LIMIT = 5000
BUFFER_LIMIT = 4500
WARNING_PERCENT = 70.0
CRITICAL_PERCENT = 90.0
WINDOW_DURATION = timedelta(hours=1)
DEFAULT_KEY = "courtlistener"

UsageLevel = Literal["ok", "warning", "critical", "unknown"]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class WindowState:
    """Raw counter state as held by a store."""

    window_start: datetime
    request_count: int


@dataclass(frozen=True)
class UsageStats:
    """Snapshot of quota usage for the current window.

    ``available`` is False when the backing store could not be read; counts
    are then ``None`` and callers should treat usage as unknown.
    """

    total_requests: Optional[int]
    limit: int
    remaining: Optional[int]
    utilization_percent: Optional[float]
    window_start: Optional[datetime]
    window_end: Optional[datetime]
    projected_hourly: Optional[int] = None
    available: bool = True

    @classmethod
    def unknown(cls, limit: int) -> "UsageStats":
        return cls(
            total_requests=None,
            limit=limit,
            remaining=None,
            utilization_percent=None,
            window_start=None,
            window_end=None,
            projected_hourly=None,
            available=False,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "limit": self.limit,
            "remaining": self.remaining,
            "utilization_percent": self.utilization_percent,
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "projected_hourly": self.projected_hourly,
            "available": self.available,
        }


class RateLimitStore(Protocol):
    """Backing storage for the shared request counter."""

    def increment(self, now: datetime, window: timedelta) -> WindowState:
        """Count one request, starting a new window if the current one ended."""
        ...

    def read(self) -> Optional[WindowState]:
        """Return the stored window, or None if nothing was recorded yet."""
        ...

    def reset(self, now: datetime) -> None:
        ...


class MemoryRateLimitStore:
    """Process-local store. Safe for threads within one process only."""

    def __init__(self) -> None:
        self._state: Optional[WindowState] = None
        self._lock = threading.Lock()

    def increment(self, now: datetime, window: timedelta) -> WindowState:
        with self._lock:
            state = self._state
            if state is None or state.window_start + window <= now:
                state = WindowState(window_start=now, request_count=1)
            else:
                state = WindowState(state.window_start, state.request_count + 1)
            self._state = state
            return state

    def read(self) -> Optional[WindowState]:
        with self._lock:
            return self._state

    def reset(self, now: datetime) -> None:
        with self._lock:
            self._state = WindowState(window_start=now, request_count=0)


class PostgresRateLimitStore:
    """Store the counter as one row per key in ``courtlistener_rate_limit``."""

    def __init__(
        self,
        conninfo: str,
        key: str = DEFAULT_KEY,
        connect: Callable[..., psycopg.Connection[Any]] = psycopg.connect,
    ) -> None:
        self._conninfo = conninfo
        self._key = key
        self._connect = connect

    def _connection(self) -> psycopg.Connection[Any]:
        return self._connect(self._conninfo, autocommit=True, connect_timeout=10)

    def ensure_schema(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(CREATE_RATE_LIMIT_TABLE)

    def increment(self, now: datetime, window: timedelta) -> WindowState:
        with self._connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(INCREMENT_RATE_LIMIT, {"key": self._key, "now": now, "window": window})
            row = cur.fetchone()
        if row is None:
            raise RuntimeError("Rate-limit increment returned no row")
        return WindowState(window_start=row["window_start"], request_count=int(row["request_count"]))

    def read(self) -> Optional[WindowState]:
        with self._connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(SELECT_RATE_LIMIT, {"key": self._key})
            row = cur.fetchone()
        if row is None:
            return None
        return WindowState(window_start=row["window_start"], request_count=int(row["request_count"]))

    def reset(self, now: datetime) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(RESET_RATE_LIMIT, {"key": self._key, "now": now})


class RateLimiter:
    """
    Window-based request accounting for the CourtListener API.

    A limiter instance is passed to every API client that shares the quota.
    Store failures never propagate: recording is skipped and usage reads as
    unknown, so a broken counter degrades reporting instead of blocking sync.
    """

    def __init__(
        self,
        store: RateLimitStore,
        *,
        hourly_limit: int = HOURLY_LIMIT,
        buffer_limit: int = BUFFER_LIMIT,
        window: timedelta = WINDOW_DURATION,
        warning_percent: float = WARNING_PERCENT,
        critical_percent: float = CRITICAL_PERCENT,
        clock: Clock = utc_now,
    ) -> None:
        if buffer_limit <= 0:
            raise ValueError("buffer_limit must be positive")
        self.store = store
        self.hourly_limit = hourly_limit
        self.buffer_limit = buffer_limit
        self.window = window
        self.warning_percent = warning_percent
        self.critical_percent = critical_percent
        self._clock = clock

    @property
    def limit(self) -> int:
        return self.buffer_limit

    def record_request(self) -> None:
        """Count one request against the current window."""
        try:
            self.store.increment(self._clock(), self.window)
        except Exception as exc:
            logger.warning("Failed to record CourtListener request: %s", exc)

    def get_usage_stats(self) -> UsageStats:
        try:
            state = self.store.read()
        except Exception as exc:
            logger.warning("Rate-limit state unavailable, usage unknown: %s", exc)
            return UsageStats.unknown(self.buffer_limit)

        now = self._clock()
        if state is None or state.window_start + self.window <= now:
            # Expired or never-started windows read as a fresh window.
            window_start = now
            total = 0
        else:
            window_start = state.window_start
            total = state.request_count

        elapsed = (now - window_start).total_seconds()
        window_seconds = self.window.total_seconds()
        projected = round(total / elapsed * window_seconds) if elapsed > 0 else 0

        return UsageStats(
            total_requests=total,
            limit=self.buffer_limit,
            remaining=max(0, self.buffer_limit - total),
            utilization_percent=100.0 * total / self.buffer_limit,
            window_start=window_start,
            window_end=window_start + self.window,
            projected_hourly=projected,
            available=True,
        )

    def level(self, stats: UsageStats | None = None) -> UsageLevel:
        stats = stats or self.get_usage_stats()
        if not stats.available or stats.utilization_percent is None:
            return "unknown"
        if stats.utilization_percent >= self.critical_percent:
            return "critical"
        if stats.utilization_percent >= self.warning_percent:
            return "warning"
        return "ok"

    def check_limit(self) -> bool:
        """Return True while requests remain in the window (fail open when unknown)."""
        stats = self.get_usage_stats()
        if not stats.available or stats.remaining is None:
            return True
        return stats.remaining > 0

    def seconds_until_reset(self, stats: UsageStats | None = None) -> float:
        stats = stats or self.get_usage_stats()
        if stats.window_end is None:
            return self.window.total_seconds()
        return max(0.0, (stats.window_end - self._clock()).total_seconds())

    def reset(self) -> None:
        """Start a fresh window. Intended for tests and manual recovery."""
        try:
            self.store.reset(self._clock())
            logger.info("Rate limit window reset")
        except Exception as exc:
            logger.warning("Failed to reset rate-limit window: %s", exc)

    def status_report(self, stats: UsageStats | None = None) -> str:
        stats = stats or self.get_usage_stats()
        if not stats.available:
            return "\n".join(
                [
                    "CourtListener Rate Limit Status",
                    "================================",
                    "Usage: unknown (rate-limit state unavailable)",
                    f"Buffer Limit: {stats.limit}",
                    f"Published Hourly Limit: {self.hourly_limit}",
                ]
            )
        return "\n".join(
            [
                "CourtListener Rate Limit Status",
                "================================",
                f"Current Requests: {stats.total_requests}/{stats.limit}",
                f"Published Hourly Limit: {self.hourly_limit}",
                f"Remaining: {stats.remaining}",
                f"Utilization: {stats.utilization_percent:.2f}%",
                f"Window Start: {stats.window_start.isoformat() if stats.window_start else 'N/A'}",
                f"Window End: {stats.window_end.isoformat() if stats.window_end else 'N/A'}",
                f"Projected Hourly: {stats.projected_hourly if stats.projected_hourly is not None else 'N/A'}",
            ]
        )


def build_rate_limiter(
    settings: Any,
    clock: Clock = utc_now,
    connect: Callable[..., psycopg.Connection[Any]] = psycopg.connect,
) -> RateLimiter:
    """Create a limiter from Settings, choosing the configured backend.

    The Postgres backend creates its window table if it does not exist yet.
    """
    store: RateLimitStore
    if settings.RATE_LIMIT_BACKEND == "postgres":
        from src.supabase_client import describe_db_url, get_supabase_db_url

        db_url = get_supabase_db_url(settings)
        host, dbname, _ = describe_db_url(db_url)
        logger.info("Using Postgres rate-limit store host=%s db=%s", host, dbname)
        postgres_store = PostgresRateLimitStore(db_url, connect=connect)
        try:
            postgres_store.ensure_schema()
        except Exception as exc:
            logger.warning("Could not create rate-limit table, usage may read as unknown: %s", exc)
        store = postgres_store
    else:
        store = MemoryRateLimitStore()

    return RateLimiter(
        store,
        hourly_limit=settings.COURTLISTENER_HOURLY_LIMIT,
        buffer_limit=settings.COURTLISTENER_BUFFER_LIMIT,
        warning_percent=settings.RATE_LIMIT_WARNING_PERCENT,
        critical_percent=settings.RATE_LIMIT_CRITICAL_PERCENT,
        clock=clock,
    )
