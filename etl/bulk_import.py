"""
CourtListener bulk import CLI.

Runs the phased import (courts -> judges -> judge details -> decisions)
against the shared CourtListener quota and prints a per-phase summary.

Usage:
    python -m etl.bulk_import run                      # all phases, CA
    python -m etl.bulk_import run judges --limit 5
    python -m etl.bulk_import run all --jurisdiction NY --force-refresh
    python -m etl.bulk_import status                   # rate-limit status only
"""

from __future__ import annotations

import signal
import sys
import time
from datetime import timedelta
from typing import Any, Callable, Optional

import typer
from dotenv import load_dotenv
from loguru import logger

from src.core_config import Settings, get_settings
from src.core_config import configure_logging as configure_library_logging
from src.courtlistener.client import CourtListenerClient, CourtListenerConfigError
from src.courtlistener.rate_limiter import RateLimiter, build_rate_limiter
from src.sync.court_sync import CourtSyncManager
from src.sync.decision_sync import DecisionSyncManager
from src.sync.judge_details_sync import JudgeDetailsSyncManager
from src.sync.judge_sync import JudgeSyncManager
from src.sync.orchestrator import (
    PHASE_SELECTORS,
    BulkImportOrchestrator,
    BulkImportReport,
    build_default_phases,
)
from src.sync.reporting import format_summary, summarize
from src.sync.store import SupabaseStore, SyncStore

app = typer.Typer(add_completion=False, help="CourtListener bulk import CLI")

SIGINT_EXIT_CODE = 130


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), serialize=False, diagnose=False, backtrace=False)


def load_env() -> None:
    load_dotenv(override=False)


def _sleep(seconds: float) -> None:
    time.sleep(seconds)


# =============================================================================
# Wiring (patched in tests)
# =============================================================================


def build_limiter(settings: Settings) -> RateLimiter:
    return build_rate_limiter(settings)


def build_client(settings: Settings, limiter: RateLimiter) -> CourtListenerClient:
    return CourtListenerClient.from_settings(settings, limiter=limiter)


def build_store(settings: Settings) -> SyncStore:
    return SupabaseStore()


def build_orchestrator(
    settings: Settings,
    store: SyncStore,
    client: CourtListenerClient,
    limiter: RateLimiter,
    *,
    jurisdiction: str,
    force_refresh: bool,
    limit: Optional[int],
) -> BulkImportOrchestrator:
    manager_kwargs: dict[str, Any] = {
        "stale_after": timedelta(days=settings.SYNC_STALE_AFTER_DAYS),
    }
    phases = build_default_phases(
        CourtSyncManager(store, client, **manager_kwargs),
        JudgeSyncManager(store, client, **manager_kwargs),
        JudgeDetailsSyncManager(store, client, **manager_kwargs),
        DecisionSyncManager(store, client, **manager_kwargs),
        jurisdiction=jurisdiction,
        force_refresh=force_refresh,
        limit=limit,
    )
    return BulkImportOrchestrator(phases, limiter, sleep=_sleep, echo=typer.echo)


def make_interrupt_handler(limiter: RateLimiter) -> Callable[[int, Any], None]:
    """SIGINT: show where the quota stands, then exit 130."""

    def handler(signum: int, frame: Any) -> None:
        typer.echo("\nInterrupted. Current rate limit status:", err=True)
        typer.echo(limiter.status_report(), err=True)
        sys.exit(SIGINT_EXIT_CODE)

    return handler


def preflight(limiter: RateLimiter, ignore_rate_limit: bool) -> bool:
    """Print usage and decide whether the import may start."""
    stats = limiter.get_usage_stats()
    typer.echo(limiter.status_report(stats))
    level = limiter.level(stats)
    if level == "critical":
        if ignore_rate_limit:
            logger.warning("Rate limit above critical threshold; continuing (--ignore-rate-limit)")
            return True
        logger.error(
            "Rate limit too high ({:.1f}% used). Aborting; wait for the window to reset.",
            stats.utilization_percent or 0.0,
        )
        return False
    if level == "warning":
        logger.warning("Rate limit at {:.1f}%; consider a smaller --limit", stats.utilization_percent or 0.0)
    elif level == "unknown":
        logger.warning("Rate limit usage unknown; continuing")
    return True


def report_outcome(report: BulkImportReport) -> int:
    typer.echo(format_summary(summarize(report.stats)))
    if report.succeeded:
        logger.success("[OK] Bulk import complete")
        return 0
    logger.error("Bulk import failed: {}", report.error or "unknown error")
    return 1


# =============================================================================
# Commands
# =============================================================================


@app.command("run")
def run_command(
    entity: str = typer.Argument("all", help="all, courts, judges, details or decisions"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Cap the batch size of every phase"),
    jurisdiction: Optional[str] = typer.Option(
        None, "--jurisdiction", help="State code (defaults to SYNC_JURISDICTION)"
    ),
    force_refresh: bool = typer.Option(False, "--force-refresh", help="Update rows even when fresh; re-fetch details and decisions for every judge"),
    ignore_rate_limit: bool = typer.Option(
        False, "--ignore-rate-limit", help="Start even above the critical utilization threshold"
    ),
) -> None:
    """Run the bulk import for all phases or a single entity."""
    load_env()
    selector = entity.lower()
    if selector != "all" and selector not in PHASE_SELECTORS:
        raise typer.BadParameter(f"Unknown entity '{entity}'", param_hint="ENTITY")

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    configure_library_logging(settings)

    limiter = build_limiter(settings)
    if not preflight(limiter, ignore_rate_limit):
        raise typer.Exit(code=1)

    previous_handler = signal.signal(signal.SIGINT, make_interrupt_handler(limiter))
    orchestrator: Optional[BulkImportOrchestrator] = None
    try:
        client = build_client(settings, limiter)
        store = build_store(settings)
        orchestrator = build_orchestrator(
            settings,
            store,
            client,
            limiter,
            jurisdiction=jurisdiction or settings.SYNC_JURISDICTION,
            force_refresh=force_refresh,
            limit=limit,
        )
        report = orchestrator.run(None if selector == "all" else [selector])
    except CourtListenerConfigError as exc:
        logger.error("{}", exc)
        raise typer.Exit(code=1)
    except Exception:
        logger.exception("Bulk import crashed")
        if orchestrator is not None:
            typer.echo(format_summary(summarize(orchestrator.stats)))
        raise typer.Exit(code=1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        typer.echo("")
        typer.echo(limiter.status_report())

    code = report_outcome(report)
    if code:
        raise typer.Exit(code=code)


@app.command("status")
def status_command() -> None:
    """Print the CourtListener rate-limit status."""
    load_env()
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    limiter = build_limiter(settings)
    typer.echo(limiter.status_report())


if __name__ == "__main__":
    app()
