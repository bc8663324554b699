"""Sync Ledger - records which external items have been materialized into the graph.

(session_id, source_type, source_key) is unique in the store, and that
constraint is what makes a sync at-most-once. Reads here only avoid
redundant work.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog

from ..errors import UniqueViolationError
from ..storage.store import SYNC_LEDGER, Store

logger = structlog.get_logger()

LEDGER_KEY = ("session_id", "source_type", "source_key")


class SyncSourceType(Enum):
    """Kinds of external items tracked by the ledger."""

    SESSION = "session"
    CONCEPT = "concept"
    EDGE = "edge"
    PATTERN = "pattern"


@dataclass
class LedgerEntry:
    """One materialized item and the graph record it produced."""

    session_id: str
    source_type: SyncSourceType
    source_key: str
    mos_node_id: str
    synced_at: datetime | None = None


class SyncLedger:
    """Idempotency ledger for the session sync connector."""

    def __init__(self, store: Store):
        self.store = store

    async def record(
        self,
        session_id: str,
        mos_node_id: str,
        source_type: SyncSourceType,
        source_key: str,
    ) -> bool:
        """Record an item. Returns True if new, False if it already existed."""
        try:
            row = await self.store.upsert(
                SYNC_LEDGER,
                {
                    "session_id": session_id,
                    "mos_node_id": mos_node_id,
                    "source_type": source_type.value,
                    "source_key": source_key,
                },
                conflict_keys=LEDGER_KEY,
                ignore_duplicates=True,
            )
        except UniqueViolationError:
            # A concurrent writer won the insert
            return False
        return row is not None

    async def lookup(
        self,
        session_id: str,
        source_type: SyncSourceType,
        source_key: str,
    ) -> LedgerEntry | None:
        row = await self.store.get(
            SYNC_LEDGER,
            {"session_id": session_id, "source_type": source_type.value, "source_key": source_key},
        )
        if row is None:
            return None
        return LedgerEntry(
            session_id=str(row["session_id"]),
            source_type=SyncSourceType(row["source_type"]),
            source_key=row["source_key"],
            mos_node_id=str(row["mos_node_id"]),
            synced_at=row.get("synced_at"),
        )

    async def is_synced(
        self,
        session_id: str,
        source_type: SyncSourceType,
        source_key: str,
    ) -> bool:
        return await self.lookup(session_id, source_type, source_key) is not None
