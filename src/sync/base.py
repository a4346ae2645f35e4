"""Shared pieces of the per-entity sync managers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, ClassVar, Optional

from src.courtlistener.client import (
    CourtListenerClient,
    CourtListenerNetworkError,
    RateLimitedError,
)
from src.courtlistener.transforms import normalize_jurisdiction

from .store import StoreError, SyncStore

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(days=7)
SYNC_LOG_TABLE = "sync_logs"

Clock = Callable[[], datetime]

# Failures that mean the source itself is unreachable: abort the batch.
PHASE_FATAL_ERRORS = (CourtListenerNetworkError,)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class SyncResult:
    """Outcome of one manager invocation (one page / one batch).

    ``success`` is False only when the batch as a whole could not run.
    Per-record failures land in ``errors`` and leave ``success`` True.
    Counts are also readable under entity names, e.g. ``judges_created``.
    """

    ACCESSOR_PREFIX: ClassVar[dict[str, str]] = {
        "courts": "courts",
        "judges": "judges",
        "judge_details": "judges",
        "decisions": "judges",
    }
    COUNT_FIELDS: ClassVar[tuple[str, ...]] = ("processed", "created", "updated", "skipped")

    entity: str
    success: bool = True
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    duration: float = 0.0
    next_cursor: Optional[str] = None
    exhausted: bool = True
    extra: dict[str, int] = field(default_factory=dict)

    def __getattr__(self, name: str) -> Any:
        # Only reached for names that are not real attributes.
        if name.startswith("__"):
            raise AttributeError(name)
        extra = self.__dict__.get("extra") or {}
        if name in extra:
            return extra[name]
        prefix = self.ACCESSOR_PREFIX.get(self.__dict__.get("entity", ""), "")
        if prefix and name.startswith(prefix + "_"):
            suffix = name[len(prefix) + 1 :]
            if suffix in self.COUNT_FIELDS:
                return self.__dict__[suffix]
        raise AttributeError(f"{type(self).__name__!s} has no attribute {name!r}")

    def add_error(self, message: str) -> None:
        logger.warning("%s sync: %s", self.entity, message)
        self.errors.append(message)

    def fail(self, message: str) -> "SyncResult":
        logger.error("%s sync failed: %s", self.entity, message)
        self.success = False
        self.errors.append(message)
        return self

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "success": self.success,
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "duration": round(self.duration, 3),
            "next_cursor": self.next_cursor,
            "exhausted": self.exhausted,
            **self.extra,
        }


class BaseSyncManager:
    """Holds the collaborators every manager needs and the shared helpers."""

    entity: ClassVar[str] = ""
    stale_column: ClassVar[str] = "updated_at"

    def __init__(
        self,
        store: SyncStore,
        client: CourtListenerClient,
        *,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        clock: Clock = utc_now,
        log_runs: bool = True,
    ) -> None:
        self.store = store
        self.client = client
        self.stale_after = stale_after
        self._clock = clock
        self.log_runs = log_runs
        self._logger = logging.getLogger(self.__class__.__name__)

    def _now(self) -> datetime:
        return self._clock()

    def _new_result(self) -> SyncResult:
        return SyncResult(entity=self.entity)

    @staticmethod
    def _jurisdiction(value: str | None) -> Optional[str]:
        return normalize_jurisdiction(value)

    def is_stale(self, row: dict[str, Any]) -> bool:
        """Rows never stamped, or stamped longer ago than ``stale_after``."""
        stamp = parse_timestamp(row.get(self.stale_column)) or parse_timestamp(row.get("updated_at"))
        if stamp is None:
            return True
        return self._now() - stamp >= self.stale_after

    # ------------------------------------------------------------------
    # sync_logs bookkeeping (best effort)
    # ------------------------------------------------------------------

    def _start_log(self, options: dict[str, Any]) -> Optional[Any]:
        if not self.log_runs:
            return None
        try:
            row = self.store.insert(
                SYNC_LOG_TABLE,
                {
                    "sync_type": self.entity,
                    "status": "started",
                    "started_at": self._now().isoformat(),
                    "options": options,
                },
            )
        except StoreError as exc:
            self._logger.warning("Could not write sync log start: %s", exc)
            return None
        return row.get("id")

    def _finish_log(self, log_id: Optional[Any], result: SyncResult) -> None:
        if log_id is None:
            return
        try:
            self.store.update(
                SYNC_LOG_TABLE,
                log_id,
                {
                    "status": "completed" if result.success else "failed",
                    "completed_at": self._now().isoformat(),
                    "duration_ms": int(result.duration * 1000),
                    "result": result.as_dict(),
                    "error_message": "; ".join(result.errors[:5]) or None,
                },
            )
        except StoreError as exc:
            self._logger.warning("Could not write sync log completion: %s", exc)

    def _run_logged(self, options: dict[str, Any], body: Callable[[SyncResult], None]) -> SyncResult:
        """Run ``body`` with timing, run logging and phase-error handling."""
        result = self._new_result()
        started = time.monotonic()
        log_id = self._start_log(options)
        try:
            body(result)
        except PHASE_FATAL_ERRORS as exc:
            result.fail(f"CourtListener unreachable: {exc}")
        except RateLimitedError as exc:
            # The orchestrator decides whether to wait or abort.
            result.fail(str(exc))
            raise
        finally:
            result.duration = time.monotonic() - started
            self._finish_log(log_id, result)
        self._logger.info(
            "%s sync: processed=%s created=%s updated=%s skipped=%s errors=%s (%.1fs)",
            self.entity,
            result.processed,
            result.created,
            result.updated,
            result.skipped,
            len(result.errors),
            result.duration,
        )
        return result
