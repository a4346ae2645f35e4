"""Storage adapter used by the sync managers.

The managers only need keyed lookups, inserts, updates, upserts and a
"rows still missing X" query, so the contract is kept to exactly that.
``SupabaseStore`` implements it over PostgREST; tests use an in-memory fake
with the same surface.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Protocol

from supabase import Client

from src.supabase_client import create_supabase_client

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class StoreError(RuntimeError):
    """A storage call failed (network, PostgREST error, constraint violation)."""

    def __init__(self, operation: str, table: str, cause: BaseException | str) -> None:
        self.operation = operation
        self.table = table
        super().__init__(f"{operation} on {table} failed: {cause}")


def coerce_json(value: Any) -> Any:
    """Make a row JSON-safe for PostgREST."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): coerce_json(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [coerce_json(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    return str(value)


class SyncStore(Protocol):
    def find_one(self, table: str, column: str, value: Any) -> Optional[Row]:
        """Return the first row where ``column == value``, or None."""
        ...

    def select(self, table: str, filters: Mapping[str, Any] | None = None, limit: int | None = None) -> list[Row]:
        ...

    def select_pending(
        self,
        table: str,
        null_column: str | None,
        filters: Mapping[str, Any] | None = None,
        limit: int = 50,
        offset: int = 0,
        exclude_ids: Iterable[Any] = (),
    ) -> list[Row]:
        """Rows (ordered by id) whose ``null_column`` is still null.

        ``null_column=None`` selects every row matching ``filters``.
        """
        ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        ...

    def update(self, table: str, row_id: Any, values: Mapping[str, Any]) -> None:
        ...

    def upsert(self, table: str, row: Mapping[str, Any], on_conflict: str) -> None:
        ...

    def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        ...


class SupabaseStore:
    """``SyncStore`` over the Supabase REST (PostgREST) API."""

    def __init__(self, client: Client | None = None) -> None:
        self._client = client or create_supabase_client()

    @staticmethod
    def _apply_filters(query: Any, filters: Mapping[str, Any] | None) -> Any:
        for column, value in (filters or {}).items():
            query = query.is_(column, "null") if value is None else query.eq(column, value)
        return query

    def find_one(self, table: str, column: str, value: Any) -> Optional[Row]:
        try:
            response = self._client.table(table).select("*").eq(column, value).limit(1).execute()
        except Exception as exc:
            raise StoreError("select", table, exc) from exc
        rows = response.data or []
        return rows[0] if rows else None

    def select(self, table: str, filters: Mapping[str, Any] | None = None, limit: int | None = None) -> list[Row]:
        try:
            query = self._apply_filters(self._client.table(table).select("*"), filters).order("id")
            if limit is not None:
                query = query.limit(limit)
            response = query.execute()
        except Exception as exc:
            raise StoreError("select", table, exc) from exc
        return list(response.data or [])

    def select_pending(
        self,
        table: str,
        null_column: str | None,
        filters: Mapping[str, Any] | None = None,
        limit: int = 50,
        offset: int = 0,
        exclude_ids: Iterable[Any] = (),
    ) -> list[Row]:
        excluded = [str(row_id) for row_id in exclude_ids]
        try:
            query = self._apply_filters(self._client.table(table).select("*"), filters)
            if null_column:
                query = query.is_(null_column, "null")
            if excluded:
                query = query.not_.in_("id", excluded)
            response = query.order("id").range(offset, offset + limit - 1).execute()
        except Exception as exc:
            raise StoreError("select", table, exc) from exc
        return list(response.data or [])

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        try:
            response = self._client.table(table).insert(coerce_json(dict(row))).execute()
        except Exception as exc:
            raise StoreError("insert", table, exc) from exc
        rows = response.data or []
        return rows[0] if rows else dict(row)

    def update(self, table: str, row_id: Any, values: Mapping[str, Any]) -> None:
        try:
            self._client.table(table).update(coerce_json(dict(values))).eq("id", row_id).execute()
        except Exception as exc:
            raise StoreError("update", table, exc) from exc

    def upsert(self, table: str, row: Mapping[str, Any], on_conflict: str) -> None:
        try:
            self._client.table(table).upsert(coerce_json(dict(row)), on_conflict=on_conflict).execute()
        except Exception as exc:
            raise StoreError("upsert", table, exc) from exc

    def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        try:
            query = self._client.table(table).select("id", count="exact")
            response = self._apply_filters(query, filters).limit(1).execute()
        except Exception as exc:
            raise StoreError("count", table, exc) from exc
        return int(response.count or 0)
