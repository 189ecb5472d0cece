"""Sync orchestration -- mirrors Salesforce opportunities into the local store."""

from src.dealboard.sync.orchestrator import (
    SyncOrchestrator,
    SyncProgress,
    SyncState,
    SyncSummary,
)

__all__ = [
    "SyncOrchestrator",
    "SyncProgress",
    "SyncState",
    "SyncSummary",
]
