"""
tests/helpers.py

Fakes shared by the sync test suite:

  MemoryStore              - SyncStore over in-process dict tables
  FakeCourtListenerClient  - canned CourtListener data with cursor paging
  FixedClock               - controllable clock for limiter/orchestrator tests
  *_record()               - builders for raw CourtListener payloads
"""

from __future__ import annotations

import copy
import itertools
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

from src.courtlistener.client import Page
from src.sync.store import StoreError

FailRule = Callable[[str, str, Optional[Mapping[str, Any]]], bool]

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class SleepRecorder:
    """Stand-in for time.sleep that optionally advances a clock."""

    def __init__(self, clock: FixedClock | None = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


# =============================================================================
# Storage
# =============================================================================


class MemoryStore:
    """In-memory ``SyncStore``. ``fail_rules`` simulate storage failures."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.fail_rules: list[FailRule] = []
        self._ids = itertools.count(1)

    def fail_when(self, rule: FailRule) -> None:
        self.fail_rules.append(rule)

    def fail_all(self, operation: str, table: str) -> None:
        self.fail_when(lambda op, tbl, _row: op == operation and tbl == table)

    def _check(self, operation: str, table: str, row: Mapping[str, Any] | None = None) -> None:
        for rule in self.fail_rules:
            if rule(operation, table, row):
                raise StoreError(operation, table, "simulated failure")

    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        stored = {"id": next(self._ids), **row}
        self.tables[table].append(stored)
        return copy.deepcopy(stored)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self.tables[table])

    @staticmethod
    def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
        return all(row.get(column) == value for column, value in (filters or {}).items())

    def find_one(self, table: str, column: str, value: Any) -> Optional[dict[str, Any]]:
        self._check("select", table)
        for row in self.tables[table]:
            if row.get(column) == value:
                return copy.deepcopy(row)
        return None

    def select(self, table: str, filters: Mapping[str, Any] | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        self._check("select", table)
        rows = [copy.deepcopy(row) for row in self.tables[table] if self._matches(row, filters)]
        rows.sort(key=lambda row: row["id"])
        return rows[:limit] if limit is not None else rows

    def select_pending(
        self,
        table: str,
        null_column: str | None,
        filters: Mapping[str, Any] | None = None,
        limit: int = 50,
        offset: int = 0,
        exclude_ids: Iterable[Any] = (),
    ) -> list[dict[str, Any]]:
        self._check("select", table)
        excluded = set(exclude_ids)
        rows = [
            copy.deepcopy(row)
            for row in self.tables[table]
            if self._matches(row, filters)
            and (null_column is None or row.get(null_column) is None)
            and row.get("id") not in excluded
        ]
        rows.sort(key=lambda row: row["id"])
        return rows[offset : offset + limit]

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        self._check("insert", table, row)
        stored = {"id": next(self._ids), **copy.deepcopy(dict(row))}
        self.tables[table].append(stored)
        return copy.deepcopy(stored)

    def update(self, table: str, row_id: Any, values: Mapping[str, Any]) -> None:
        self._check("update", table, values)
        for row in self.tables[table]:
            if row.get("id") == row_id:
                row.update(copy.deepcopy(dict(values)))
                return
        raise StoreError("update", table, f"no row with id {row_id}")

    def upsert(self, table: str, row: Mapping[str, Any], on_conflict: str) -> None:
        self._check("upsert", table, row)
        for existing in self.tables[table]:
            if existing.get(on_conflict) == row.get(on_conflict):
                existing.update(copy.deepcopy(dict(row)))
                return
        self.tables[table].append({"id": next(self._ids), **copy.deepcopy(dict(row))})

    def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        self._check("count", table)
        return sum(1 for row in self.tables[table] if self._matches(row, filters))


# =============================================================================
# CourtListener
# =============================================================================


def paginate(records: list[dict[str, Any]], page_size: int, cursor: str | None) -> Page:
    """Offset cursors of the form ``cursor:<offset>``."""
    offset = int(cursor.split(":", 1)[1]) if cursor else 0
    chunk = records[offset : offset + page_size]
    following = offset + page_size
    next_cursor = f"cursor:{following}" if following < len(records) else None
    return Page(results=copy.deepcopy(chunk), next_cursor=next_cursor, count=len(records))


class FakeCourtListenerClient:
    """Serves canned records. ``errors`` raise per method, ``person_errors`` per (method, id)."""

    def __init__(self) -> None:
        self.courts: list[dict[str, Any]] = []
        self.judges: list[dict[str, Any]] = []
        self.positions: dict[str, list[dict[str, Any]]] = {}
        self.educations: dict[str, list[dict[str, Any]]] = {}
        self.affiliations: dict[str, list[dict[str, Any]]] = {}
        self.opinions: dict[str, list[dict[str, Any]]] = {}
        self.dockets: dict[str, list[dict[str, Any]]] = {}
        self.errors: dict[str, BaseException] = {}
        self.person_errors: dict[tuple[str, str], BaseException] = {}
        self.calls: list[tuple[str, Any]] = []

    def _enter(self, method: str, detail: Any = None, person_id: Any = None) -> None:
        self.calls.append((method, detail))
        if method in self.errors:
            raise self.errors[method]
        if person_id is not None and (method, str(person_id)) in self.person_errors:
            raise self.person_errors[(method, str(person_id))]

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def list_courts(self, *, filters=None, page_size=20, cursor=None) -> Page:
        self._enter("list_courts", {"filters": filters, "page_size": page_size, "cursor": cursor})
        return paginate(self.courts, page_size, cursor)

    def list_judges(self, *, court_ids=(), page_size=10, cursor=None) -> Page:
        ids = set(court_ids)
        self._enter("list_judges", {"court_ids": sorted(ids), "page_size": page_size, "cursor": cursor})
        return paginate(self.judges, page_size, cursor)

    def get_positions(self, person_id) -> list[dict[str, Any]]:
        self._enter("get_positions", person_id, person_id)
        return copy.deepcopy(self.positions.get(str(person_id), []))

    def get_educations(self, person_id) -> list[dict[str, Any]]:
        self._enter("get_educations", person_id, person_id)
        return copy.deepcopy(self.educations.get(str(person_id), []))

    def get_political_affiliations(self, person_id) -> list[dict[str, Any]]:
        self._enter("get_political_affiliations", person_id, person_id)
        return copy.deepcopy(self.affiliations.get(str(person_id), []))

    def get_opinions_by_judge(self, person_id, *, start_date=None, end_date=None, page_size=50, cursor=None) -> Page:
        self._enter("get_opinions_by_judge", {"person_id": person_id, "start_date": start_date}, person_id)
        return paginate(self.opinions.get(str(person_id), []), page_size, cursor)

    def get_dockets_by_judge(self, person_id, *, start_date=None, end_date=None, page_size=25, cursor=None) -> Page:
        self._enter("get_dockets_by_judge", {"person_id": person_id, "start_date": start_date}, person_id)
        return paginate(self.dockets.get(str(person_id), []), page_size, cursor)


# =============================================================================
# Record builders
# =============================================================================


def court_record(court_id: str, name: str, **extra: Any) -> dict[str, Any]:
    return {
        "id": court_id,
        "name": name,
        "full_name": extra.pop("full_name", name),
        "short_name": extra.pop("short_name", name.split()[0]),
        "jurisdiction": extra.pop("jurisdiction", "S"),
        "citation_string": extra.pop("citation_string", court_id.upper()),
        "url": extra.pop("url", f"https://courts.example/{court_id}"),
        "in_use": True,
        "has_opinion_scraper": True,
        "has_oral_argument_scraper": False,
        "position_count": 3,
        **extra,
    }


def position_record(
    court_id: str,
    *,
    start: str = "2010-01-01",
    end: str | None = None,
    position_type: str = "jud",
    court_name: str | None = None,
) -> dict[str, Any]:
    court: dict[str, Any] = {"id": court_id}
    if court_name:
        court["full_name"] = court_name
    return {
        "court": court,
        "position_type": position_type,
        "date_start": start,
        "date_termination": end,
    }


def judge_record(person_id: int, first: str, last: str, positions: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return {
        "id": person_id,
        "name_first": first,
        "name_last": last,
        "positions": positions or [],
    }


def opinion_record(opinion_id: int, case_name: str = "People v. Smith", **extra: Any) -> dict[str, Any]:
    return {
        "id": opinion_id,
        "case_name": case_name,
        "date_filed": extra.pop("date_filed", "2020-05-01"),
        "precedential_status": extra.pop("precedential_status", "Published"),
        **extra,
    }


def docket_record(docket_id: int, case_name: str = "Doe v. Roe", **extra: Any) -> dict[str, Any]:
    return {
        "id": docket_id,
        "case_name": case_name,
        "docket_number": extra.pop("docket_number", f"2:20-cv-{docket_id:05d}"),
        "date_filed": extra.pop("date_filed", "2021-02-03"),
        **extra,
    }
