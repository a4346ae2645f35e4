"""Judge details enrichment: positions, education, political affiliation."""

from __future__ import annotations

from typing import Any, Optional

from src.courtlistener.client import CourtListenerFetchError
from src.courtlistener.models import (
    CourtListenerEducation,
    CourtListenerPoliticalAffiliation,
    CourtListenerPosition,
)
from src.courtlistener.transforms import (
    format_education,
    format_political_affiliation,
    format_positions,
)

from .base import BaseSyncManager, SyncResult
from .judge_sync import JUDGES_TABLE
from .store import StoreError

SYNC_PROGRESS_TABLE = "sync_progress"


class JudgeDetailsSyncManager(BaseSyncManager):
    """
    Enrich judges that have not had their details fetched yet.

    Each judge costs three CourtListener requests (positions, educations,
    political affiliations). Judges are only ever updated, never created.
    In incomplete-only mode a judge that fails is skipped for the rest of
    this manager's lifetime so repeated batches move on to new work. A full
    refresh pages by offset and never skips.
    """

    entity = "judge_details"
    stale_column = "details_synced_at"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._failed_ids: set[Any] = set()

    def sync(
        self,
        jurisdiction: str | None = None,
        batch_size: int = 50,
        incomplete_only: bool = True,
        cursor: str | None = None,
    ) -> SyncResult:
        code = self._jurisdiction(jurisdiction)
        options = {"jurisdiction": code, "batch_size": batch_size, "incomplete_only": incomplete_only}
        return self._run_logged(
            options, lambda result: self._sync_batch(result, code, batch_size, incomplete_only, cursor)
        )

    def _sync_batch(
        self,
        result: SyncResult,
        jurisdiction: Optional[str],
        batch_size: int,
        incomplete_only: bool,
        cursor: Optional[str],
    ) -> None:
        # Incomplete-only batches shrink the pending set as they go; a full
        # refresh has to page with an offset instead.
        offset = 0 if incomplete_only else int(cursor or 0)
        try:
            judges = self.store.select_pending(
                JUDGES_TABLE,
                "details_synced_at" if incomplete_only else None,
                {"jurisdiction": jurisdiction} if jurisdiction else None,
                limit=batch_size,
                offset=offset,
                exclude_ids=self._failed_ids if incomplete_only else (),
            )
        except StoreError as exc:
            result.fail(f"Judge selection failed: {exc}")
            return

        for judge in judges:
            result.processed += 1
            try:
                self._enrich(judge)
                result.updated += 1
            except (ValueError, StoreError, CourtListenerFetchError) as exc:
                self._failed_ids.add(judge.get("id"))
                result.add_error(f"judge {judge.get('name') or judge.get('id')}: {exc}")

        if not incomplete_only and len(judges) == batch_size:
            result.next_cursor = str(offset + len(judges))
        result.exhausted = result.next_cursor is None

    def _enrich(self, judge: dict[str, Any]) -> None:
        person_id = judge.get("courtlistener_id")
        if not person_id:
            raise ValueError("judge has no courtlistener_id")

        raw_positions = self.client.get_positions(person_id)
        raw_educations = self.client.get_educations(person_id)
        raw_affiliations = self.client.get_political_affiliations(person_id)
        positions = [CourtListenerPosition.model_validate(item) for item in raw_positions]
        educations = [CourtListenerEducation.model_validate(item) for item in raw_educations]
        affiliations = [CourtListenerPoliticalAffiliation.model_validate(item) for item in raw_affiliations]

        now = self._now().isoformat()
        values: dict[str, Any] = {
            "education": format_education(educations),
            "political_affiliation": format_political_affiliation(affiliations),
            "courtlistener_data": {
                "positions": raw_positions,
                "educations": raw_educations,
                "political_affiliations": raw_affiliations,
                "fetched_at": now,
            },
            "details_synced_at": now,
            "updated_at": now,
        }
        # Keep positions from judge discovery when the detail call has none.
        if positions:
            values["positions"] = format_positions(positions)
        self.store.update(JUDGES_TABLE, judge["id"], values)

        self.store.upsert(
            SYNC_PROGRESS_TABLE,
            {
                "judge_id": judge["id"],
                "has_positions": bool(positions),
                "has_education": bool(educations),
                "has_political_affiliations": bool(affiliations),
                "positions_synced_at": now,
                "education_synced_at": now,
                "political_affiliations_synced_at": now,
                "sync_phase": "details",
                "last_synced_at": now,
            },
            on_conflict="judge_id",
        )
