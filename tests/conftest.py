"""
tests/conftest.py

Pytest configuration and shared fixtures for the CourtListener sync suite.

Nothing here talks to the network or a database: the CourtListener API is
served by ``FakeCourtListenerClient`` (or ``httpx.MockTransport`` in client
tests) and storage by ``MemoryStore``.
"""

from __future__ import annotations

import pytest

from src.core_config import reset_settings
from src.courtlistener.rate_limiter import MemoryRateLimitStore, RateLimiter
from tests.helpers import FakeCourtListenerClient, FixedClock, MemoryStore, SleepRecorder

# =============================================================================
# GLOBAL TEST CONFIGURATION
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers to avoid pytest warnings."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as requiring live services (CourtListener, Supabase)",
    )


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before and after each test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def sync_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Minimal valid environment for Settings."""
    monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role-key")
    monkeypatch.setenv("COURTLISTENER_API_KEY", "cl-test-token")
    monkeypatch.setenv("RATE_LIMIT_BACKEND", "memory")
    monkeypatch.delenv("SUPABASE_DB_URL", raising=False)


# =============================================================================
# FAKES
# =============================================================================


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def sleeper(clock: FixedClock) -> SleepRecorder:
    return SleepRecorder(clock)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def fake_client() -> FakeCourtListenerClient:
    return FakeCourtListenerClient()


@pytest.fixture
def limiter(clock: FixedClock) -> RateLimiter:
    return RateLimiter(MemoryRateLimitStore(), buffer_limit=100, hourly_limit=120, clock=clock)
