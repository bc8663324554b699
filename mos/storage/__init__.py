"""Storage backends behind the narrow Store protocol."""

from .memory_store import MemoryStore
from .pg_schema import Migration, SchemaMigrator, run_migrations
from .pg_store import PgStore
from .store import (
    EDGES,
    EMBEDDINGS,
    NODES,
    SYNC_LEDGER,
    AnyOf,
    Store,
    TextMatch,
)


def create_store(backend: str | None = None) -> MemoryStore | PgStore:
    """Create a store from configuration (STORE_BACKEND) unless overridden."""
    from ..config import STORE_BACKEND

    kind = (backend or STORE_BACKEND).lower()
    if kind == "memory":
        return MemoryStore()
    elif kind == "postgres":
        return PgStore()
    else:
        raise ValueError(
            f"Unknown STORE_BACKEND={kind!r}. Expected 'postgres' or 'memory'."
        )


__all__ = [
    "EDGES",
    "EMBEDDINGS",
    "NODES",
    "SYNC_LEDGER",
    "AnyOf",
    "MemoryStore",
    "Migration",
    "PgStore",
    "SchemaMigrator",
    "Store",
    "TextMatch",
    "create_store",
    "run_migrations",
]
