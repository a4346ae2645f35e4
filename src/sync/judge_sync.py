"""Judge discovery sync.

Pulls one page of CourtListener people who held positions at the
jurisdiction's courts and inserts or refreshes their ``judges`` rows.
A judge is only stored when one of their positions resolves to a court that
already exists locally, so courts must be synced first.
"""

from __future__ import annotations

from typing import Any, Optional

from src.courtlistener.client import CourtListenerFetchError
from src.courtlistener.models import CourtListenerJudge, CourtListenerPosition
from src.courtlistener.transforms import MappingError, judge_to_row, primary_position

from .base import BaseSyncManager, SyncResult
from .court_sync import COURTS_TABLE
from .store import StoreError

JUDGES_TABLE = "judges"


class JudgeSyncManager(BaseSyncManager):
    entity = "judges"
    stale_column = "last_synced_at"

    def sync(
        self,
        jurisdiction: str | None = None,
        batch_size: int = 10,
        force_refresh: bool = False,
        cursor: str | None = None,
    ) -> SyncResult:
        code = self._jurisdiction(jurisdiction)
        options = {"jurisdiction": code, "batch_size": batch_size, "force_refresh": force_refresh}
        return self._run_logged(
            options, lambda result: self._sync_page(result, code, batch_size, force_refresh, cursor)
        )

    def _local_courts(self, jurisdiction: Optional[str]) -> dict[str, dict[str, Any]]:
        filters = {"jurisdiction": jurisdiction} if jurisdiction else None
        rows = self.store.select(COURTS_TABLE, filters)
        return {str(row["courtlistener_id"]): row for row in rows if row.get("courtlistener_id")}

    def _sync_page(
        self,
        result: SyncResult,
        jurisdiction: Optional[str],
        batch_size: int,
        force_refresh: bool,
        cursor: Optional[str],
    ) -> None:
        try:
            courts = self._local_courts(jurisdiction)
        except StoreError as exc:
            result.fail(f"Court lookup failed: {exc}")
            return
        if not courts:
            self._logger.warning("No local courts for jurisdiction %s; run the courts phase first", jurisdiction)
            return

        try:
            page = self.client.list_judges(court_ids=courts.keys(), page_size=batch_size, cursor=cursor)
        except CourtListenerFetchError as exc:
            result.fail(f"Judge page fetch failed: {exc}")
            return

        now = self._now()
        for raw in page.results:
            result.processed += 1
            label = raw.get("id") or "<unknown>"
            try:
                judge = CourtListenerJudge.model_validate(raw)
                if not judge.positions and judge.id is not None:
                    judge.positions = [
                        CourtListenerPosition.model_validate(item)
                        for item in self.client.get_positions(judge.id)
                    ]
                court_row = self._match_court(judge, courts)
                row = judge_to_row(judge, court_row, now)
                self._apply(result, row, force_refresh)
            except (ValueError, StoreError, CourtListenerFetchError) as exc:
                result.add_error(f"judge {label}: {exc}")

        result.next_cursor = page.next_cursor
        result.exhausted = page.exhausted

    def _match_court(self, judge: CourtListenerJudge, courts: dict[str, dict[str, Any]]) -> dict[str, Any]:
        position = primary_position(judge.positions)
        court_id = position.resolved_court_id if position else None
        if court_id is None:
            raise MappingError("no court match (no position with a court)")
        court_row = courts.get(court_id) or self.store.find_one(COURTS_TABLE, "courtlistener_id", court_id)
        if court_row is None:
            raise MappingError(f"no court match for court {court_id}")
        return court_row

    def _apply(self, result: SyncResult, row: dict[str, Any], force_refresh: bool) -> None:
        existing = self.store.find_one(JUDGES_TABLE, "courtlistener_id", row["courtlistener_id"])
        if existing is None:
            self.store.insert(JUDGES_TABLE, {**row, "created_at": row["updated_at"]})
            result.created += 1
        elif force_refresh or self.is_stale(existing):
            self.store.update(JUDGES_TABLE, existing["id"], row)
            result.updated += 1
        else:
            result.skipped += 1
