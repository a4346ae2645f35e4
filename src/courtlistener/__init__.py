"""CourtListener API client, record models and rate-limit accounting."""

from .client import (
    CourtListenerClient,
    CourtListenerConfigError,
    CourtListenerError,
    CourtListenerFetchError,
    CourtListenerNetworkError,
    Page,
    RateLimitedError,
)
from .rate_limiter import (
    MemoryRateLimitStore,
    PostgresRateLimitStore,
    RateLimiter,
    UsageStats,
    build_rate_limiter,
)

__all__ = [
    "CourtListenerClient",
    "CourtListenerConfigError",
    "CourtListenerError",
    "CourtListenerFetchError",
    "CourtListenerNetworkError",
    "MemoryRateLimitStore",
    "Page",
    "PostgresRateLimitStore",
    "RateLimitedError",
    "RateLimiter",
    "UsageStats",
    "build_rate_limiter",
]
