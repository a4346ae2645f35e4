"""
Tests for etl/bulk_import.py

The CLI is invoked through typer's CliRunner with the wiring functions
patched to in-memory fakes, so no network, database or sleeping happens.
"""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from etl import bulk_import
from src.courtlistener.client import CourtListenerFetchError
from src.sync.court_sync import COURTS_TABLE
from src.sync.orchestrator import SyncRunStat
from tests.helpers import T0, court_record

runner = CliRunner()


@pytest.fixture
def wired(monkeypatch, sync_env, limiter, fake_client, store):
    monkeypatch.setattr(bulk_import, "build_limiter", lambda settings: limiter)
    monkeypatch.setattr(bulk_import, "build_client", lambda settings, lim: fake_client)
    monkeypatch.setattr(bulk_import, "build_store", lambda settings: store)
    monkeypatch.setattr(bulk_import, "_sleep", lambda seconds: None)
    monkeypatch.setattr(bulk_import, "load_env", lambda: None)
    return fake_client


class TestRunCommand:
    def test_full_run_succeeds(self, wired, store):
        wired.courts = [court_record(f"ca{i}", f"Superior Court of California {i}") for i in range(3)]

        result = runner.invoke(bulk_import.app, ["run"])

        assert result.exit_code == 0, result.output
        assert "BULK IMPORT SUMMARY" in result.output
        assert "COURTS:" in result.output
        assert len(store.rows(COURTS_TABLE)) == 3

    def test_single_entity_with_limit(self, wired):
        result = runner.invoke(bulk_import.app, ["run", "courts", "--limit", "3"])
        assert result.exit_code == 0, result.output
        assert wired.calls[0][1]["page_size"] == 3
        assert wired.call_count("list_judges") == 0

    def test_unknown_entity(self, wired):
        result = runner.invoke(bulk_import.app, ["run", "opinions"])
        assert result.exit_code == 2

    def test_phase_failure_exits_nonzero(self, wired):
        wired.errors["list_courts"] = CourtListenerFetchError(401, "invalid token")
        result = runner.invoke(bulk_import.app, ["run", "courts"])
        assert result.exit_code == 1

    def test_crash_prints_collected_stats(self, wired, monkeypatch):
        class CrashingOrchestrator:
            stats = [SyncRunStat(phase="courts", run_number=1, started_at=T0, ended_at=T0, success=True, processed=4)]

            def run(self, phases=None):
                raise RuntimeError("reporting exploded")

        monkeypatch.setattr(bulk_import, "build_orchestrator", lambda *args, **kwargs: CrashingOrchestrator())

        result = runner.invoke(bulk_import.app, ["run"])

        assert result.exit_code == 1
        assert "BULK IMPORT SUMMARY" in result.output
        assert "COURTS:" in result.output


class TestPreflight:
    def test_critical_usage_aborts(self, wired, limiter):
        for _ in range(95):
            limiter.record_request()
        result = runner.invoke(bulk_import.app, ["run"])
        assert result.exit_code == 1
        assert wired.calls == []

    def test_ignore_rate_limit_overrides(self, wired, limiter):
        for _ in range(95):
            limiter.record_request()
        assert bulk_import.preflight(limiter, ignore_rate_limit=True) is True

    def test_ok_usage_passes(self, limiter):
        assert bulk_import.preflight(limiter, ignore_rate_limit=False) is True


class TestStatusCommand:
    def test_prints_report(self, wired, limiter):
        limiter.record_request()
        result = runner.invoke(bulk_import.app, ["status"])
        assert result.exit_code == 0
        assert "Current Requests: 1/100" in result.output


class TestInterrupt:
    def test_handler_prints_status_and_exits_130(self, limiter, capsys):
        handler = bulk_import.make_interrupt_handler(limiter)
        with pytest.raises(SystemExit) as exc_info:
            handler(2, None)
        assert exc_info.value.code == 130
        assert "Remaining" in capsys.readouterr().err
