"""Court reference-data sync."""

from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from src.courtlistener.client import CourtListenerFetchError
from src.courtlistener.models import CourtListenerCourt
from src.courtlistener.transforms import court_filters_for, court_to_row

from .base import BaseSyncManager, SyncResult
from .store import StoreError

COURTS_TABLE = "courts"


class CourtSyncManager(BaseSyncManager):
    """Pull one page of courts and insert/refresh the matching rows.

    Existing rows are matched on ``courtlistener_id``; a court previously
    entered by hand is linked by exact name when it has no external id yet.
    """

    entity = "courts"

    def sync(
        self,
        jurisdiction: str | None = None,
        batch_size: int = 20,
        force_refresh: bool = False,
        cursor: str | None = None,
    ) -> SyncResult:
        code = self._jurisdiction(jurisdiction)
        options = {"jurisdiction": code, "batch_size": batch_size, "force_refresh": force_refresh}
        return self._run_logged(
            options, lambda result: self._sync_page(result, code, batch_size, force_refresh, cursor)
        )

    def _sync_page(
        self,
        result: SyncResult,
        jurisdiction: Optional[str],
        batch_size: int,
        force_refresh: bool,
        cursor: Optional[str],
    ) -> None:
        try:
            page = self.client.list_courts(
                filters=court_filters_for(jurisdiction), page_size=batch_size, cursor=cursor
            )
        except CourtListenerFetchError as exc:
            result.fail(f"Court page fetch failed: {exc}")
            return

        sync_id = str(uuid4())
        now = self._now()
        for raw in page.results:
            result.processed += 1
            label = raw.get("id") or raw.get("name") or "<unknown>"
            try:
                court = CourtListenerCourt.model_validate(raw)
                row = court_to_row(court, sync_id, now, default_jurisdiction=jurisdiction)
                self._apply(result, row, force_refresh)
            except (ValueError, StoreError) as exc:
                result.add_error(f"court {label}: {exc}")

        result.next_cursor = page.next_cursor
        result.exhausted = page.exhausted

    def _find_existing(self, row: dict[str, Any]) -> Optional[dict[str, Any]]:
        existing = self.store.find_one(COURTS_TABLE, "courtlistener_id", row["courtlistener_id"])
        if existing is not None:
            return existing
        by_name = self.store.find_one(COURTS_TABLE, "name", row["name"])
        if by_name is not None and not by_name.get("courtlistener_id"):
            return by_name
        return None

    def _apply(self, result: SyncResult, row: dict[str, Any], force_refresh: bool) -> None:
        existing = self._find_existing(row)
        if existing is None:
            self.store.insert(COURTS_TABLE, {**row, "created_at": row["updated_at"]})
            result.created += 1
            return
        if force_refresh or not existing.get("courtlistener_id") or self.is_stale(existing):
            self.store.update(COURTS_TABLE, existing["id"], row)
            result.updated += 1
            return
        result.skipped += 1
