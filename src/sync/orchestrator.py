"""
Bulk import orchestrator.

Runs the sync phases in order, re-invoking each phase until its convergence
predicate holds or its iteration cap is reached:

    COURTS -> JUDGES -> JUDGE_DETAILS -> DECISIONS -> DONE
                      (any phase failure)           -> FAILED

Phases are declared as ``PhaseSpec`` rows; the orchestrator itself has no
per-phase logic. Waiting between iterations is derived from the rate
limiter's remaining quota (see ``src.sync.backoff``), falling back to the
phase's fixed delay when usage is unknown.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from src.courtlistener.client import RateLimitedError
from src.courtlistener.rate_limiter import RateLimiter, UsageStats

from .backoff import compute_delay, seconds_until
from .base import SyncResult, utc_now
from .court_sync import CourtSyncManager
from .decision_sync import DecisionSyncManager
from .judge_details_sync import JudgeDetailsSyncManager
from .judge_sync import JudgeSyncManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY_AFTER = 900.0


class ImportState(str, Enum):
    COURTS = "courts"
    JUDGES = "judges"
    JUDGE_DETAILS = "judge-details"
    DECISIONS = "decisions"
    DONE = "done"
    FAILED = "failed"


PHASE_SELECTORS = {
    "courts": ImportState.COURTS,
    "judges": ImportState.JUDGES,
    "details": ImportState.JUDGE_DETAILS,
    "decisions": ImportState.DECISIONS,
}


@dataclass(frozen=True)
class PhaseSpec:
    """One row of the phase table.

    ``run`` receives the cursor returned by the previous iteration of the
    same phase (None on the first) and returns that iteration's result.
    """

    state: ImportState
    name: str
    title: str
    run: Callable[[Optional[str]], SyncResult]
    is_converged: Callable[[SyncResult], bool]
    max_runs: int
    fallback_delay: float
    expected_requests: int
    batch_size: int


@dataclass
class SyncRunStat:
    """In-memory record of one phase iteration."""

    phase: str
    run_number: int
    started_at: datetime
    ended_at: datetime
    success: bool
    processed: int = 0
    created: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()


@dataclass
class BulkImportReport:
    state: ImportState
    stats: list[SyncRunStat] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is ImportState.DONE


# =============================================================================
# Phase table
# =============================================================================


def converge_once(result: SyncResult) -> bool:
    return True


def make_no_new_records(
    batch_size: int, *, stop_when_exhausted: bool = False
) -> Callable[[SyncResult], bool]:
    """Converged when nothing new was created and the batch was not full."""

    def predicate(result: SyncResult) -> bool:
        if stop_when_exhausted and result.exhausted:
            return True
        return result.created == 0 and result.processed < batch_size

    return predicate


def no_judges_processed(result: SyncResult) -> bool:
    return result.processed == 0


def offset_pages_exhausted(result: SyncResult) -> bool:
    """Full refreshes page by offset; the last short page ends the phase."""
    return result.processed == 0 or result.exhausted


def build_default_phases(
    courts: CourtSyncManager,
    judges: JudgeSyncManager,
    details: JudgeDetailsSyncManager,
    decisions: DecisionSyncManager,
    *,
    jurisdiction: str = "CA",
    force_refresh: bool = False,
    limit: int | None = None,
) -> list[PhaseSpec]:
    """The standard four-phase import. ``limit`` caps every batch size."""

    def batch(default: int) -> int:
        return min(default, limit) if limit and limit > 0 else default

    court_batch = batch(20)
    judge_batch = batch(10)
    details_batch = batch(50)
    decision_batch = batch(5)

    return [
        PhaseSpec(
            state=ImportState.COURTS,
            name="courts",
            title="Courts",
            run=lambda cursor: courts.sync(
                jurisdiction=jurisdiction, batch_size=court_batch, force_refresh=force_refresh, cursor=cursor
            ),
            is_converged=converge_once,
            max_runs=20,
            fallback_delay=0.0,
            expected_requests=1,
            batch_size=court_batch,
        ),
        PhaseSpec(
            state=ImportState.JUDGES,
            name="judges",
            title="Judges",
            run=lambda cursor: judges.sync(
                jurisdiction=jurisdiction, batch_size=judge_batch, force_refresh=force_refresh, cursor=cursor
            ),
            # A full page of updates never converges on its own; the end of
            # the source listing does.
            is_converged=make_no_new_records(judge_batch, stop_when_exhausted=True),
            max_runs=20,
            fallback_delay=5.0,
            expected_requests=1 + judge_batch,
            batch_size=judge_batch,
        ),
        PhaseSpec(
            state=ImportState.JUDGE_DETAILS,
            name="details",
            title="Judge Details",
            run=lambda cursor: details.sync(
                jurisdiction=jurisdiction,
                batch_size=details_batch,
                incomplete_only=not force_refresh,
                cursor=cursor,
            ),
            is_converged=offset_pages_exhausted if force_refresh else make_no_new_records(details_batch),
            max_runs=20,
            fallback_delay=5.0,
            expected_requests=3 * details_batch,
            batch_size=details_batch,
        ),
        PhaseSpec(
            state=ImportState.DECISIONS,
            name="decisions",
            title="Decisions",
            run=lambda cursor: decisions.sync(
                jurisdiction=jurisdiction,
                batch_size=decision_batch,
                max_decisions_per_judge=100,
                max_filings_per_judge=100,
                years_back=10,
                include_dockets=True,
                force_refresh=force_refresh,
                cursor=cursor,
            ),
            is_converged=offset_pages_exhausted if force_refresh else no_judges_processed,
            max_runs=80,
            fallback_delay=10.0,
            expected_requests=6 * decision_batch,
            batch_size=decision_batch,
        ),
    ]


# =============================================================================
# Orchestrator
# =============================================================================


class BulkImportOrchestrator:
    """Drive the phase table to DONE or FAILED.

    ``echo`` receives operator-facing progress lines; ``sleep`` and ``clock``
    are injectable so tests never wait.
    """

    def __init__(
        self,
        phases: Sequence[PhaseSpec],
        limiter: RateLimiter | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
        echo: Callable[[str], None] | None = None,
        max_retry_after: float = DEFAULT_MAX_RETRY_AFTER,
        minimum_delay: float = 0.0,
    ) -> None:
        self.phases = list(phases)
        self.limiter = limiter
        self._sleep = sleep
        self._clock = clock
        self._echo = echo or logger.info
        self.max_retry_after = max_retry_after
        self.minimum_delay = minimum_delay
        self.state: ImportState = self.phases[0].state if self.phases else ImportState.DONE
        self.transitions: list[ImportState] = []
        self.stats: list[SyncRunStat] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, phases_selected: Iterable[str] | None = None) -> BulkImportReport:
        selected = self._select(phases_selected)
        for phase in selected:
            self._enter(phase.state)
            error = self._run_phase(phase)
            if error is not None:
                self._enter(ImportState.FAILED)
                return BulkImportReport(state=self.state, stats=list(self.stats), error=error)
        self._enter(ImportState.DONE)
        return BulkImportReport(state=self.state, stats=list(self.stats))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _select(self, names: Iterable[str] | None) -> list[PhaseSpec]:
        if names is None:
            return list(self.phases)
        wanted = {name.lower() for name in names}
        unknown = wanted - {phase.name for phase in self.phases}
        if unknown:
            raise ValueError(f"Unknown phase(s): {', '.join(sorted(unknown))}")
        return [phase for phase in self.phases if phase.name in wanted]

    def _enter(self, state: ImportState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug("Bulk import state -> %s", state.value)

    def _usage(self) -> Optional[UsageStats]:
        return self.limiter.get_usage_stats() if self.limiter is not None else None

    def _wait(self, seconds: float, reason: str) -> None:
        if seconds <= 0:
            return
        self._echo(f"Waiting {seconds:.0f}s ({reason})")
        self._sleep(seconds)

    def _pre_iteration_check(self, phase: PhaseSpec) -> None:
        stats = self._usage()
        if stats is None or self.limiter is None:
            return
        level = self.limiter.level(stats)
        if level == "critical":
            logger.warning(
                "Rate limit critical before %s: %.1f%% used", phase.name, stats.utilization_percent or 0.0
            )
            self._wait(seconds_until(stats.window_end, self._clock()), "rate limit critical, waiting for reset")
        elif level == "warning":
            logger.warning(
                "Rate limit at %.1f%% before %s (%s remaining)",
                stats.utilization_percent or 0.0,
                phase.name,
                stats.remaining,
            )

    def _between_runs_delay(self, phase: PhaseSpec) -> float:
        stats = self._usage()
        if stats is None:
            return phase.fallback_delay
        return compute_delay(
            stats,
            phase.expected_requests,
            phase.fallback_delay,
            minimum=self.minimum_delay,
            now=self._clock(),
        )

    def _record(
        self,
        phase: PhaseSpec,
        run_number: int,
        started: datetime,
        result: SyncResult | None,
        errors: list[str],
    ) -> SyncRunStat:
        stat = SyncRunStat(
            phase=phase.name,
            run_number=run_number,
            started_at=started,
            ended_at=self._clock(),
            success=result.success if result is not None else False,
            processed=result.processed if result is not None else 0,
            created=result.created if result is not None else 0,
            updated=result.updated if result is not None else 0,
            errors=errors,
        )
        self.stats.append(stat)
        return stat

    def _run_phase(self, phase: PhaseSpec) -> Optional[str]:
        """Loop one phase. Returns an error message when the run must stop."""
        self._echo(f"=== {phase.title} (batch {phase.batch_size}, max {phase.max_runs} runs) ===")
        cursor: Optional[str] = None
        for run_number in range(1, phase.max_runs + 1):
            self._pre_iteration_check(phase)
            started = self._clock()
            try:
                result = phase.run(cursor)
            except RateLimitedError as exc:
                self._record(phase, run_number, started, None, [str(exc)])
                wait = exc.retry_after
                if wait is None:
                    wait = self._between_runs_delay(phase)
                if wait > self.max_retry_after:
                    return f"{phase.title}: rate limited, retry after {wait:.0f}s exceeds {self.max_retry_after:.0f}s"
                self._wait(wait, "CourtListener returned 429")
                continue
            except Exception as exc:
                logger.exception("%s run %s raised", phase.title, run_number)
                self._record(phase, run_number, started, None, [str(exc)])
                return f"{phase.title}: {exc}"

            self._record(phase, run_number, started, result, list(result.errors))
            self._echo(
                f"[{phase.title}] run {run_number}/{phase.max_runs}: processed={result.processed} "
                f"created={result.created} updated={result.updated} skipped={result.skipped} "
                f"errors={len(result.errors)}"
            )
            if not result.success:
                return f"{phase.title}: {'; '.join(result.errors) or 'sync reported failure'}"
            if phase.is_converged(result):
                self._echo(f"{phase.title} complete after {run_number} run(s)")
                return None

            cursor = result.next_cursor
            if run_number < phase.max_runs:
                self._wait(self._between_runs_delay(phase), f"pacing {phase.name}")

        logger.warning(
            "%s reached its cap of %s runs without converging; may need additional runs later",
            phase.title,
            phase.max_runs,
        )
        self._echo(f"{phase.title} stopped at {phase.max_runs} runs (may need additional runs later)")
        return None
