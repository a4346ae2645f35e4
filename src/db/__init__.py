"""Database helpers for the CourtListener sync."""

from .sql import CREATE_RATE_LIMIT_TABLE, INCREMENT_RATE_LIMIT, RESET_RATE_LIMIT, SELECT_RATE_LIMIT

__all__ = (
    "CREATE_RATE_LIMIT_TABLE",
    "INCREMENT_RATE_LIMIT",
    "RESET_RATE_LIMIT",
    "SELECT_RATE_LIMIT",
)
