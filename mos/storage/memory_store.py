"""In-process store - same interface and constraints as the PostgreSQL schema.

Used by the test suite and by STORE_BACKEND=memory for local experiments.
Nothing is persisted; every table is a dict of id -> record.
"""

import copy
import re
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import numpy as np
import structlog

from ..errors import StoreError, UniqueViolationError, ValidationError
from ..graph.models import EdgeType, NodeType
from .store import (
    EDGES,
    EMBEDDING_ENTITY_TYPES,
    EMBEDDINGS,
    NODES,
    SYNC_LEDGER,
    AnyOf,
    Filters,
    Record,
    TextMatch,
)

logger = structlog.get_logger()

_TOKEN_RE = re.compile(r"\w+")

NODE_TYPES = {t.value for t in NodeType}
EDGE_TYPES = {t.value for t in EdgeType}
SYNC_SOURCE_TYPES = {"session", "concept", "edge", "pattern"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_node(record: Record) -> None:
    if record.get("type") not in NODE_TYPES:
        raise ValidationError(f"nodes.type_check violated: {record.get('type')!r}")


def _check_edge(record: Record) -> None:
    if record.get("edge_type") not in EDGE_TYPES:
        raise ValidationError(f"edges.edge_type_check violated: {record.get('edge_type')!r}")
    if record.get("source_id") == record.get("target_id"):
        raise ValidationError("edges.no_self_edge violated")
    if record.get("edge_type") == "custom" and not record.get("custom_label"):
        raise ValidationError("edges.custom_label_check violated")


def _check_ledger(record: Record) -> None:
    if record.get("source_type") not in SYNC_SOURCE_TYPES:
        raise ValidationError(
            f"sync_ledger.source_type_check violated: {record.get('source_type')!r}"
        )


# Column defaults applied on insert, mirroring the SQL DDL
TABLE_DEFAULTS: dict[str, Callable[[], Record]] = {
    NODES: lambda: {
        "content": None,
        "summary": None,
        "metadata": {},
        "created_at": _now(),
        "updated_at": _now(),
    },
    EDGES: lambda: {
        "edge_type": "related_to",
        "custom_label": None,
        "weight": 1.0,
        "summary": None,
        "metadata": {},
        "created_at": _now(),
    },
    EMBEDDINGS: lambda: {
        "provider": "openai",
        "created_at": _now(),
        "updated_at": _now(),
    },
    SYNC_LEDGER: lambda: {"synced_at": _now()},
}

UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    NODES: [("user_id", "slug")],
    EDGES: [],
    EMBEDDINGS: [("entity_type", "entity_id", "model")],
    SYNC_LEDGER: [("session_id", "source_type", "source_key")],
}

CHECKS: dict[str, Callable[[Record], None]] = {
    NODES: _check_node,
    EDGES: _check_edge,
    SYNC_LEDGER: _check_ledger,
}

# Full-text columns and their rank weights (title > content > summary)
FULL_TEXT_COLUMNS: dict[str, dict[str, float]] = {
    NODES: {"title": 1.0, "content": 0.4, "summary": 0.2},
}


def _matches(record: Record, filters: Filters | None) -> bool:
    if not filters:
        return True
    for column, expected in filters.items():
        value = record.get(column)
        if isinstance(expected, AnyOf):
            if value not in expected.values:
                return False
        elif value != expected:
            return False
    return True


def _text_matches(record: Record, match: TextMatch | None) -> bool:
    if match is None:
        return True
    needle = match.text.lower()
    return any(needle in (record.get(col) or "").lower() for col in match.columns)


def _project(record: Record, columns: Sequence[str] | None) -> Record:
    if columns is None:
        return copy.deepcopy(record)
    return {col: copy.deepcopy(record.get(col)) for col in columns}


class MemoryStore:
    """Dict-backed implementation of the Store protocol."""

    def __init__(self):
        self.tables: dict[str, dict[str, Record]] = {
            NODES: {},
            EDGES: {},
            EMBEDDINGS: {},
            SYNC_LEDGER: {},
        }

    def _table(self, table: str) -> dict[str, Record]:
        try:
            return self.tables[table]
        except KeyError as e:
            raise StoreError(f"Unknown table: {table}") from e

    def _find_conflict(
        self,
        table: str,
        record: Record,
        keys: Sequence[str],
        exclude_id: str | None = None,
    ) -> Record | None:
        for row in self._table(table).values():
            if row["id"] == exclude_id:
                continue
            if all(row.get(k) == record.get(k) for k in keys):
                return row
        return None

    def _validate(self, table: str, record: Record) -> None:
        check = CHECKS.get(table)
        if check:
            check(record)
        if table == EDGES:
            nodes = self.tables[NODES]
            for column in ("source_id", "target_id"):
                if record.get(column) not in nodes:
                    raise StoreError(f"edges.{column} references a missing node")

    def _insert_row(self, table: str, record: Record) -> Record:
        row = TABLE_DEFAULTS[table]()
        row.update(copy.deepcopy(record))
        row.setdefault("id", str(uuid.uuid4()))
        self._validate(table, row)
        for keys in UNIQUE_KEYS[table]:
            if self._find_conflict(table, row, keys):
                raise UniqueViolationError(f"{table} unique constraint {keys} violated")
        self._table(table)[row["id"]] = row
        return row

    async def get(
        self,
        table: str,
        filters: Filters,
        columns: Sequence[str] | None = None,
    ) -> Record | None:
        for row in self._table(table).values():
            if _matches(row, filters):
                return _project(row, columns)
        return None

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
    ) -> list[Record]:
        rows = [
            row
            for row in self._table(table).values()
            if _matches(row, filters) and _text_matches(row, match)
        ]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by), reverse=descending)
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [_project(r, columns) for r in rows]

    async def insert(self, table: str, record: Record) -> Record:
        return copy.deepcopy(self._insert_row(table, record))

    async def upsert(
        self,
        table: str,
        record: Record,
        conflict_keys: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Record | None:
        existing = self._find_conflict(table, record, conflict_keys)
        if existing is None:
            return copy.deepcopy(self._insert_row(table, record))
        if ignore_duplicates:
            return None

        merged = {**existing, **copy.deepcopy(record), "id": existing["id"]}
        self._validate(table, merged)
        existing.clear()
        existing.update(merged)
        return copy.deepcopy(existing)

    async def update(self, table: str, filters: Filters, values: Record) -> list[Record]:
        updated = []
        for row in self._table(table).values():
            if not _matches(row, filters):
                continue
            merged = {**row, **copy.deepcopy(values), "id": row["id"]}
            self._validate(table, merged)
            for keys in UNIQUE_KEYS[table]:
                if self._find_conflict(table, merged, keys, exclude_id=row["id"]):
                    raise UniqueViolationError(f"{table} unique constraint {keys} violated")
            updated.append((row, merged))

        for row, merged in updated:
            row.clear()
            row.update(merged)
        return [copy.deepcopy(row) for row, _ in updated]

    async def delete(self, table: str, filters: Filters) -> None:
        rows = self._table(table)
        doomed = [row_id for row_id, row in rows.items() if _matches(row, filters)]
        for row_id in doomed:
            del rows[row_id]

        # ON DELETE CASCADE for edges referencing removed nodes
        if table == NODES and doomed:
            gone = set(doomed)
            edges = self.tables[EDGES]
            for edge_id in [
                eid for eid, e in edges.items()
                if e["source_id"] in gone or e["target_id"] in gone
            ]:
                del edges[edge_id]

    async def nearest_neighbor(
        self,
        table: str,
        vector: Sequence[float],
        *,
        threshold: float,
        limit: int,
        filters: Filters | None = None,
    ) -> list[Record]:
        entity_type = EMBEDDING_ENTITY_TYPES.get(table)
        if entity_type is None:
            raise StoreError(f"Table {table} has no embeddings")

        query = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        rows = self._table(table)
        scored = []
        for emb in self.tables[EMBEDDINGS].values():
            if emb["entity_type"] != entity_type:
                continue
            row = rows.get(emb["entity_id"])
            if row is None or not _matches(row, filters):
                continue
            candidate = np.asarray(emb["embedding"], dtype=float)
            norm = np.linalg.norm(candidate)
            if norm == 0 or candidate.shape != query.shape:
                continue
            similarity = float(np.dot(query, candidate) / (query_norm * norm))
            if similarity > threshold:
                scored.append((similarity, row))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [{**_project(row, None), "similarity": sim} for sim, row in scored[:limit]]

    async def full_text_search(
        self,
        table: str,
        query: str,
        *,
        filters: Filters | None = None,
        limit: int,
    ) -> list[Record]:
        weights = FULL_TEXT_COLUMNS.get(table)
        if weights is None:
            raise StoreError(f"Table {table} has no full-text index")

        terms = [t.lower() for t in _TOKEN_RE.findall(query)]
        if not terms:
            return []

        ranked = []
        for row in self._table(table).values():
            if not _matches(row, filters):
                continue
            tokens = {
                col: [t.lower() for t in _TOKEN_RE.findall(row.get(col) or "")]
                for col in weights
            }
            # every term must appear in at least one column (AND semantics)
            if not all(any(term in toks for toks in tokens.values()) for term in terms):
                continue
            rank = sum(
                weight * tokens[col].count(term)
                for col, weight in weights.items()
                for term in terms
            )
            ranked.append((rank, row))

        ranked.sort(key=lambda pair: pair[0], reverse=True)
        return [_project(row, None) for _, row in ranked[:limit]]
