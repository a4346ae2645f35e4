"""CourtListener sync managers and the bulk import orchestrator."""

from .base import SyncResult
from .court_sync import CourtSyncManager
from .decision_sync import DecisionSyncManager
from .judge_details_sync import JudgeDetailsSyncManager
from .judge_sync import JudgeSyncManager
from .orchestrator import (
    BulkImportOrchestrator,
    BulkImportReport,
    ImportState,
    PhaseSpec,
    SyncRunStat,
    build_default_phases,
)
from .reporting import ImportSummary, format_summary, summarize
from .store import StoreError, SupabaseStore, SyncStore

__all__ = [
    "BulkImportOrchestrator",
    "BulkImportReport",
    "CourtSyncManager",
    "DecisionSyncManager",
    "ImportState",
    "ImportSummary",
    "JudgeDetailsSyncManager",
    "JudgeSyncManager",
    "PhaseSpec",
    "StoreError",
    "SupabaseStore",
    "SyncResult",
    "SyncRunStat",
    "SyncStore",
    "build_default_phases",
    "format_summary",
    "summarize",
]
