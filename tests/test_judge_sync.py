"""Tests for src/sync/judge_sync.py"""

from __future__ import annotations

import pytest

from src.courtlistener.client import CourtListenerFetchError
from src.sync.court_sync import COURTS_TABLE
from src.sync.judge_sync import JUDGES_TABLE, JudgeSyncManager
from tests.helpers import FakeCourtListenerClient, FixedClock, MemoryStore, judge_record, position_record


@pytest.fixture
def manager(store: MemoryStore, fake_client: FakeCourtListenerClient, clock: FixedClock) -> JudgeSyncManager:
    store.seed(COURTS_TABLE, name="Supreme Court of California", jurisdiction="CA", courtlistener_id="cal")
    store.seed(COURTS_TABLE, name="Court of Appeal of California", jurisdiction="CA", courtlistener_id="calctapp")
    return JudgeSyncManager(store, fake_client, clock=clock)


def ca_judges(count: int) -> list[dict]:
    return [judge_record(100 + i, "Judge", f"Number{i}", [position_record("cal")]) for i in range(count)]


class TestJudgeSync:
    def test_creates_judges_linked_to_courts(self, manager, store, fake_client):
        fake_client.judges = [
            judge_record(
                1,
                "Mariano-Florentino",
                "Cuéllar",
                [position_record("calctapp", start="2005-01-01", end="2014-12-31"), position_record("cal", start="2015-01-05")],
            )
        ]
        result = manager.sync(jurisdiction="CA", batch_size=10)

        assert result.success is True
        assert result.judges_processed == 1
        assert result.judges_created == 1
        judge = store.rows(JUDGES_TABLE)[0]
        assert judge["court_name"] == "Supreme Court of California"
        assert judge["jurisdiction"] == "CA"
        assert judge["status"] == "active"
        assert [pos["court_id"] for pos in judge["positions"]] == ["calctapp", "cal"]
        assert fake_client.calls[0][1]["court_ids"] == ["cal", "calctapp"]

    def test_retired_judge(self, manager, store, fake_client):
        fake_client.judges = [judge_record(2, "Retired", "Judge", [position_record("cal", end="2018-06-30")])]
        manager.sync(jurisdiction="CA")
        assert store.rows(JUDGES_TABLE)[0]["status"] == "retired"

    def test_positions_fetched_when_listing_has_links_only(self, manager, store, fake_client):
        fake_client.judges = [{"id": 3, "name_first": "Link", "name_last": "Only", "positions": ["https://x/positions/9/"]}]
        fake_client.positions["3"] = [position_record("cal")]
        result = manager.sync(jurisdiction="CA")
        assert result.created == 1
        assert fake_client.call_count("get_positions") == 1

    def test_no_court_match_is_error(self, manager, store, fake_client):
        fake_client.judges = ca_judges(2) + [judge_record(9, "Out", "Ofstate", [position_record("nyappdiv")])]
        result = manager.sync(jurisdiction="CA")
        assert result.success is True
        assert result.created == 2
        assert len(result.errors) == 1
        assert "no court match" in result.errors[0]
        assert len(store.rows(JUDGES_TABLE)) == 2

    def test_positions_fetch_error_is_per_record(self, manager, fake_client):
        fake_client.judges = [{"id": 4, "name_first": "A", "name_last": "B"}] + ca_judges(1)
        fake_client.person_errors[("get_positions", "4")] = CourtListenerFetchError(500, "boom")
        result = manager.sync(jurisdiction="CA")
        assert result.created == 1
        assert len(result.errors) == 1

    def test_idempotent_rerun(self, manager, store, fake_client):
        fake_client.judges = ca_judges(4)
        manager.sync(jurisdiction="CA")
        again = manager.sync(jurisdiction="CA")
        assert again.created == 0
        assert again.skipped == 4
        assert again.judges_created + again.judges_updated <= again.judges_processed

    def test_force_refresh_updates_without_creating(self, manager, fake_client):
        fake_client.judges = ca_judges(3)
        manager.sync(jurisdiction="CA")
        again = manager.sync(jurisdiction="CA", force_refresh=True)
        assert again.updated == 3
        assert again.created == 0

    def test_no_local_courts_is_empty_success(self, store, fake_client, clock):
        manager = JudgeSyncManager(store, fake_client, clock=clock)
        result = manager.sync(jurisdiction="NY")
        assert result.success is True
        assert result.processed == 0
        assert result.exhausted is True
        assert fake_client.call_count("list_judges") == 0

    def test_court_lookup_failure_is_phase_error(self, manager, store):
        store.fail_all("select", COURTS_TABLE)
        result = manager.sync(jurisdiction="CA")
        assert result.success is False
        assert "Court lookup failed" in result.errors[0]

    def test_page_fetch_failure_is_phase_error(self, manager, fake_client):
        fake_client.errors["list_judges"] = CourtListenerFetchError(403, "forbidden")
        result = manager.sync(jurisdiction="CA")
        assert result.success is False
