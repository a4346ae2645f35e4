"""Tests for src/sync/court_sync.py"""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.courtlistener.client import CourtListenerFetchError, CourtListenerNetworkError, RateLimitedError
from src.sync.court_sync import COURTS_TABLE, CourtSyncManager
from tests.helpers import FakeCourtListenerClient, FixedClock, MemoryStore, court_record


def california_courts(count: int) -> list[dict]:
    return [court_record(f"ca{i}", f"Superior Court of California {i}") for i in range(count)]


@pytest.fixture
def manager(store: MemoryStore, fake_client: FakeCourtListenerClient, clock: FixedClock) -> CourtSyncManager:
    return CourtSyncManager(store, fake_client, clock=clock)


class TestCreate:
    def test_twenty_new_courts_in_one_page(self, manager, store, fake_client):
        fake_client.courts = california_courts(20)
        result = manager.sync(jurisdiction="CA", batch_size=20)

        assert result.success is True
        assert result.courts_processed == 20
        assert result.courts_created == 20
        assert result.courts_updated == 0
        assert result.errors == []
        assert len(store.rows(COURTS_TABLE)) == 20
        assert fake_client.calls[0][1]["filters"] == {"full_name__icontains": "California"}

    def test_reports_cursor_for_next_page(self, manager, fake_client):
        fake_client.courts = california_courts(25)
        first = manager.sync(jurisdiction="CA", batch_size=20)
        assert first.exhausted is False
        second = manager.sync(jurisdiction="CA", batch_size=20, cursor=first.next_cursor)
        assert second.processed == 5
        assert second.exhausted is True


class TestIdempotence:
    def test_second_run_creates_nothing(self, manager, store, fake_client):
        fake_client.courts = california_courts(5)
        manager.sync(jurisdiction="CA")
        again = manager.sync(jurisdiction="CA")

        assert again.created == 0
        assert again.updated == 0
        assert again.skipped == 5
        assert len(store.rows(COURTS_TABLE)) == 5

    def test_force_refresh_updates(self, manager, fake_client):
        fake_client.courts = california_courts(3)
        manager.sync(jurisdiction="CA")
        refreshed = manager.sync(jurisdiction="CA", force_refresh=True)
        assert refreshed.created == 0
        assert refreshed.updated == 3

    def test_stale_rows_are_updated(self, manager, fake_client, clock):
        fake_client.courts = california_courts(2)
        manager.sync(jurisdiction="CA")
        clock.advance(timedelta(days=8).total_seconds())
        later = manager.sync(jurisdiction="CA")
        assert later.updated == 2
        assert later.skipped == 0

    def test_links_existing_court_by_name(self, manager, store, fake_client):
        store.seed(COURTS_TABLE, name="Superior Court of California 0", jurisdiction="CA")
        fake_client.courts = california_courts(1)
        result = manager.sync(jurisdiction="CA")
        assert result.created == 0
        assert result.updated == 1
        assert store.rows(COURTS_TABLE)[0]["courtlistener_id"] == "ca0"


class TestPartialFailure:
    def test_malformed_record_is_isolated(self, manager, store, fake_client):
        courts = california_courts(4)
        courts.insert(2, {"id": "broken", "name": ""})
        fake_client.courts = courts

        result = manager.sync(jurisdiction="CA")

        assert result.success is True
        assert result.processed == 5
        assert result.created == 4
        assert len(result.errors) == 1
        assert "broken" in result.errors[0]

    def test_storage_failure_for_one_row(self, manager, store, fake_client):
        fake_client.courts = california_courts(3)
        store.fail_when(lambda op, table, row: op == "insert" and table == COURTS_TABLE and row["courtlistener_id"] == "ca1")
        result = manager.sync(jurisdiction="CA")
        assert result.created == 2
        assert len(result.errors) == 1
        assert result.created + result.updated <= result.processed


class TestPhaseErrors:
    def test_page_fetch_failure(self, manager, fake_client):
        fake_client.errors["list_courts"] = CourtListenerFetchError(401, "invalid token")
        result = manager.sync(jurisdiction="CA")
        assert result.success is False
        assert "Court page fetch failed" in result.errors[0]

    def test_network_failure(self, manager, fake_client):
        fake_client.errors["list_courts"] = CourtListenerNetworkError("unreachable")
        result = manager.sync(jurisdiction="CA")
        assert result.success is False

    def test_rate_limit_propagates(self, manager, store, fake_client):
        fake_client.errors["list_courts"] = RateLimitedError(60)
        with pytest.raises(RateLimitedError):
            manager.sync(jurisdiction="CA")
        assert store.rows("sync_logs")[0]["status"] == "failed"


class TestSyncLog:
    def test_run_is_logged(self, manager, store, fake_client):
        fake_client.courts = california_courts(1)
        manager.sync(jurisdiction="CA")
        log = store.rows("sync_logs")[0]
        assert log["sync_type"] == "courts"
        assert log["status"] == "completed"
        assert log["result"]["created"] == 1

    def test_log_failure_does_not_break_sync(self, manager, store, fake_client):
        store.fail_all("insert", "sync_logs")
        fake_client.courts = california_courts(1)
        assert manager.sync(jurisdiction="CA").created == 1
