"""Persistence adapters."""

from .sqlite_store import BookingFilters, ImportAuditRecord, SqliteStore
from .synchronizer import PersistenceSynchronizer, SyncState, SyncStatus, UpsertResult

__all__ = [
    "BookingFilters",
    "ImportAuditRecord",
    "PersistenceSynchronizer",
    "SqliteStore",
    "SyncState",
    "SyncStatus",
    "UpsertResult",
]
