"""Connectors that project external activity into the knowledge graph."""

from .sds_sync import (
    Evaluation,
    PracticeSession,
    SessionSyncConnector,
    SyncResult,
    render_session_content,
)
from .sync_ledger import LedgerEntry, SyncLedger, SyncSourceType

__all__ = [
    "Evaluation",
    "LedgerEntry",
    "PracticeSession",
    "SessionSyncConnector",
    "SyncLedger",
    "SyncResult",
    "SyncSourceType",
    "render_session_content",
]
