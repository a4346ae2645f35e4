"""Human-readable summary of a bulk import run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .orchestrator import SyncRunStat

RULE = "=" * 60


@dataclass
class PhaseSummary:
    phase: str
    runs: int = 0
    successful: int = 0
    failed: int = 0
    duration: float = 0.0
    processed: int = 0
    created: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "runs": self.runs,
            "successful": self.successful,
            "failed": self.failed,
            "duration": round(self.duration, 3),
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "errors": list(self.errors),
        }


@dataclass
class ImportSummary:
    phases: list[PhaseSummary] = field(default_factory=list)

    @property
    def total_runs(self) -> int:
        return sum(phase.runs for phase in self.phases)

    @property
    def total_successful(self) -> int:
        return sum(phase.successful for phase in self.phases)

    @property
    def total_failed(self) -> int:
        return sum(phase.failed for phase in self.phases)

    @property
    def total_duration(self) -> float:
        return sum(phase.duration for phase in self.phases)

    def as_dict(self) -> dict[str, Any]:
        return {
            "phases": [phase.as_dict() for phase in self.phases],
            "total_runs": self.total_runs,
            "total_successful": self.total_successful,
            "total_failed": self.total_failed,
            "total_duration": round(self.total_duration, 3),
        }


def summarize(stats: Iterable[SyncRunStat]) -> ImportSummary:
    """Group run stats by phase, keeping the order phases first appeared."""
    by_phase: dict[str, PhaseSummary] = {}
    for stat in stats:
        summary = by_phase.setdefault(stat.phase, PhaseSummary(phase=stat.phase))
        summary.runs += 1
        if stat.success:
            summary.successful += 1
        else:
            summary.failed += 1
        summary.duration += stat.duration
        summary.processed += stat.processed
        summary.created += stat.created
        summary.updated += stat.updated
        summary.errors.extend(stat.errors)
    return ImportSummary(phases=list(by_phase.values()))


def _minutes(seconds: float) -> str:
    return f"{seconds / 60:.2f} min"


def format_summary(summary: ImportSummary, max_errors: int = 5) -> str:
    lines = [RULE, "BULK IMPORT SUMMARY", RULE]
    for phase in summary.phases:
        lines.extend(
            [
                "",
                f"{phase.phase.upper()}:",
                f"  Runs:       {phase.runs}",
                f"  Successful: {phase.successful}",
                f"  Failed:     {phase.failed}",
                f"  Duration:   {_minutes(phase.duration)}",
                f"  Processed:  {phase.processed}",
                f"  Created:    {phase.created}",
                f"  Updated:    {phase.updated}",
            ]
        )
        if phase.errors:
            lines.append(f"  Errors:     {len(phase.errors)}")
            lines.extend(f"    - {message}" for message in phase.errors[:max_errors])
            hidden = len(phase.errors) - max_errors
            if hidden > 0:
                lines.append(f"    ... and {hidden} more")
    lines.extend(
        [
            "",
            "OVERALL:",
            f"  Total Runs:     {summary.total_runs}",
            f"  Successful:     {summary.total_successful}",
            f"  Failed:         {summary.total_failed}",
            f"  Total Duration: {_minutes(summary.total_duration)}",
            RULE,
        ]
    )
    return "\n".join(lines)
