"""Decision sync: opinions and dockets per judge, stored as ``cases`` rows."""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Optional

from src.courtlistener.client import CourtListenerFetchError, Page
from src.courtlistener.models import CourtListenerDocket, CourtListenerOpinion
from src.courtlistener.transforms import docket_to_case, opinion_to_case

from .base import BaseSyncManager, SyncResult
from .judge_details_sync import SYNC_PROGRESS_TABLE
from .judge_sync import JUDGES_TABLE
from .store import StoreError

CASES_TABLE = "cases"
ANALYTICS_READY_CASES = 500
OPINION_PAGE_SIZE = 50
DOCKET_PAGE_SIZE = 25


def years_before(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year.
        return today.replace(year=today.year - years, day=28)


class DecisionSyncManager(BaseSyncManager):
    """
    Import decisions for judges whose ``decisions_synced_at`` is still null.

    ``processed`` counts judges. Case volume is reported separately as
    ``decisions_processed`` and ``filings_processed``; cases are upserted on
    ``courtlistener_id`` so reruns never duplicate them.
    """

    entity = "decisions"
    stale_column = "decisions_synced_at"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._failed_ids: set[Any] = set()

    def sync(
        self,
        jurisdiction: str | None = None,
        batch_size: int = 5,
        max_decisions_per_judge: int = 100,
        max_filings_per_judge: int = 100,
        years_back: int = 10,
        include_dockets: bool = True,
        force_refresh: bool = False,
        cursor: str | None = None,
    ) -> SyncResult:
        code = self._jurisdiction(jurisdiction)
        options = {
            "jurisdiction": code,
            "batch_size": batch_size,
            "max_decisions_per_judge": max_decisions_per_judge,
            "max_filings_per_judge": max_filings_per_judge,
            "years_back": years_back,
            "include_dockets": include_dockets,
            "force_refresh": force_refresh,
        }

        def body(result: SyncResult) -> None:
            result.extra.update({"decisions_processed": 0, "filings_processed": 0})
            offset = int(cursor or 0) if force_refresh else 0
            try:
                judges = self.store.select_pending(
                    JUDGES_TABLE,
                    None if force_refresh else "decisions_synced_at",
                    {"jurisdiction": code} if code else None,
                    limit=batch_size,
                    offset=offset,
                    exclude_ids=() if force_refresh else self._failed_ids,
                )
            except StoreError as exc:
                result.fail(f"Judge selection failed: {exc}")
                return

            start_date = years_before(self._now().date(), years_back)
            for judge in judges:
                result.processed += 1
                try:
                    self._sync_judge(
                        result,
                        judge,
                        start_date,
                        max_decisions_per_judge,
                        max_filings_per_judge if include_dockets else 0,
                    )
                    result.updated += 1
                except (ValueError, StoreError, CourtListenerFetchError) as exc:
                    self._failed_ids.add(judge.get("id"))
                    result.add_error(f"judge {judge.get('name') or judge.get('id')}: {exc}")

            if force_refresh and len(judges) == batch_size:
                result.next_cursor = str(offset + len(judges))
            result.exhausted = result.next_cursor is None

        return self._run_logged(options, body)

    def _collect(
        self,
        fetch: Callable[[Optional[str], int], Page],
        limit: int,
        page_size: int,
    ) -> list[dict[str, Any]]:
        """Follow cursors until ``limit`` records are gathered or pages run out."""
        records: list[dict[str, Any]] = []
        cursor: Optional[str] = None
        while len(records) < limit:
            page = fetch(cursor, min(page_size, limit - len(records)))
            records.extend(page.results)
            if page.exhausted or not page.results:
                break
            cursor = page.next_cursor
        return records[:limit]

    def _store_cases(self, result: SyncResult, rows: list[dict[str, Any]]) -> int:
        stored = 0
        for row in rows:
            try:
                self.store.upsert(CASES_TABLE, row, on_conflict="courtlistener_id")
                stored += 1
            except StoreError as exc:
                result.add_error(f"case {row.get('case_number')}: {exc}")
        return stored

    def _sync_judge(
        self,
        result: SyncResult,
        judge: dict[str, Any],
        start_date: date,
        max_decisions: int,
        max_filings: int,
    ) -> None:
        person_id = judge.get("courtlistener_id")
        if not person_id:
            raise ValueError("judge has no courtlistener_id")
        now = self._now()
        end_date = now.date()

        opinions = self._collect(
            lambda cursor, size: self.client.get_opinions_by_judge(
                person_id, start_date=start_date, end_date=end_date, page_size=size, cursor=cursor
            ),
            max_decisions,
            OPINION_PAGE_SIZE,
        )
        dockets: list[dict[str, Any]] = []
        if max_filings > 0:
            dockets = self._collect(
                lambda cursor, size: self.client.get_dockets_by_judge(
                    person_id, start_date=start_date, end_date=end_date, page_size=size, cursor=cursor
                ),
                max_filings,
                DOCKET_PAGE_SIZE,
            )

        case_rows: list[dict[str, Any]] = []
        for raw in opinions:
            try:
                case_rows.append(opinion_to_case(CourtListenerOpinion.model_validate(raw), judge, now))
            except ValueError as exc:
                result.add_error(f"opinion {raw.get('id')}: {exc}")
        opinion_count = len(case_rows)
        for raw in dockets:
            try:
                case_rows.append(docket_to_case(CourtListenerDocket.model_validate(raw), judge, now))
            except ValueError as exc:
                result.add_error(f"docket {raw.get('id')}: {exc}")
        docket_count = len(case_rows) - opinion_count

        self._store_cases(result, case_rows)
        result.extra["decisions_processed"] += opinion_count
        result.extra["filings_processed"] += docket_count

        stamp = now.isoformat()
        self.store.update(JUDGES_TABLE, judge["id"], {"decisions_synced_at": stamp, "updated_at": stamp})
        total = opinion_count + docket_count
        progress: dict[str, Any] = {
            "judge_id": judge["id"],
            "opinions_count": opinion_count,
            "dockets_count": docket_count,
            "total_cases_count": total,
            "is_analytics_ready": total >= ANALYTICS_READY_CASES,
            "opinions_synced_at": stamp,
            "sync_phase": "complete",
            "last_synced_at": stamp,
        }
        if max_filings > 0:
            progress["dockets_synced_at"] = stamp
        self.store.upsert(SYNC_PROGRESS_TABLE, progress, on_conflict="judge_id")
