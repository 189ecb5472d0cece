"""Local persistence -- one relational store, two interchangeable backends.

Provides:
- LocalStore with SQLiteStore and PostgresStore implementations
- Upsert / AddColumn neutral operations translated per dialect
- create_store(): backend selection at startup with SQLite fallback
- Repositories for opportunities, sync log, and user preferences
"""

from src.dealboard.store.adapter import (
    AddColumn,
    LocalStore,
    PostgresStore,
    SQLiteStore,
    StoreSession,
    Upsert,
    WriteResult,
    create_store,
    open_sqlite_store,
)
from src.dealboard.store.repository import (
    OpportunityRepository,
    PreferenceRepository,
    SyncLogRepository,
)

__all__ = [
    "AddColumn",
    "LocalStore",
    "PostgresStore",
    "SQLiteStore",
    "StoreSession",
    "Upsert",
    "WriteResult",
    "create_store",
    "open_sqlite_store",
    "OpportunityRepository",
    "PreferenceRepository",
    "SyncLogRepository",
]
