"""Store interface - the narrow surface the graph, search and sync layers use.

Records are plain dicts keyed by column name. Filters are dicts where a
scalar value means equality and an AnyOf value means membership.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

NODES = "nodes"
EDGES = "edges"
EMBEDDINGS = "embeddings"
SYNC_LEDGER = "sync_ledger"

# embeddings.entity_type value for each embeddable table
EMBEDDING_ENTITY_TYPES = {
    NODES: "mos_node",
    EDGES: "mos_edge",
}

Record = dict[str, Any]
Filters = dict[str, Any]


@dataclass(frozen=True)
class AnyOf:
    """Membership filter: column value must be one of `values`."""

    values: tuple[Any, ...]

    @classmethod
    def of(cls, values: Iterable[Any]) -> "AnyOf":
        return cls(tuple(values))


@dataclass(frozen=True)
class TextMatch:
    """Case-insensitive substring match against any of `columns`."""

    columns: tuple[str, ...]
    text: str


@runtime_checkable
class Store(Protocol):
    """Interface satisfied by MemoryStore and PgStore."""

    async def get(
        self,
        table: str,
        filters: Filters,
        columns: Sequence[str] | None = None,
    ) -> Record | None: ...

    async def scan(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        match: TextMatch | None = None,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Record]: ...

    async def insert(self, table: str, record: Record) -> Record: ...

    async def upsert(
        self,
        table: str,
        record: Record,
        conflict_keys: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Record | None: ...

    async def update(self, table: str, filters: Filters, values: Record) -> list[Record]: ...

    async def delete(self, table: str, filters: Filters) -> None: ...

    async def nearest_neighbor(
        self,
        table: str,
        vector: Sequence[float],
        *,
        threshold: float,
        limit: int,
        filters: Filters | None = None,
    ) -> list[Record]: ...

    async def full_text_search(
        self,
        table: str,
        query: str,
        *,
        filters: Filters | None = None,
        limit: int,
    ) -> list[Record]: ...
