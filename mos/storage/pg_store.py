"""PostgreSQL Store - nodes, edges, embeddings and the sync ledger on asyncpg + pgvector."""

import json
import uuid
from collections.abc import Sequence
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import structlog
from pgvector.asyncpg import register_vector

from ..config import DATABASE_URL, EMBEDDING_DIM
from ..errors import StoreError, UniqueViolationError, ValidationError
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

# Whitelist of columns per table; identifiers are never taken from callers verbatim
TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    NODES: (
        "id", "user_id", "type", "slug", "title", "content", "summary",
        "metadata", "created_at", "updated_at",
    ),
    EDGES: (
        "id", "user_id", "source_id", "target_id", "edge_type", "custom_label",
        "weight", "summary", "metadata", "created_at",
    ),
    EMBEDDINGS: (
        "id", "user_id", "entity_type", "entity_id", "content_hash", "embedding",
        "model", "provider", "created_at", "updated_at",
    ),
    SYNC_LEDGER: (
        "id", "session_id", "mos_node_id", "source_type", "source_key", "synced_at",
    ),
}

UUID_COLUMNS = {
    "id", "user_id", "source_id", "target_id", "entity_id", "session_id", "mos_node_id",
}


def _column(table: str, column: str) -> str:
    if column not in TABLE_COLUMNS[table]:
        raise StoreError(f"Unknown column {table}.{column}")
    return column


def _table(table: str) -> str:
    if table not in TABLE_COLUMNS:
        raise StoreError(f"Unknown table: {table}")
    return table


def _row_to_record(row: asyncpg.Record) -> Record:
    record = dict(row)
    for key, value in record.items():
        if isinstance(value, uuid.UUID):
            record[key] = str(value)
    if "embedding" in record and record["embedding"] is not None:
        record["embedding"] = list(record["embedding"])
    return record


class _Params:
    """Collects positional parameters and hands out $n placeholders."""

    def __init__(self):
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def _where(table: str, filters: Filters | None, params: _Params, alias: str = "") -> list[str]:
    prefix = f"{alias}." if alias else ""
    conditions = []
    for column, expected in (filters or {}).items():
        col = f"{prefix}{_column(table, column)}"
        cast = "::uuid" if column in UUID_COLUMNS else ""
        if isinstance(expected, AnyOf):
            values = [str(v) for v in expected.values] if cast else list(expected.values)
            array_cast = f"{cast}[]" if cast else ""
            conditions.append(f"{col} = ANY({params.add(values)}{array_cast})")
        elif expected is None:
            conditions.append(f"{col} IS NULL")
        else:
            value = str(expected) if cast else expected
            conditions.append(f"{col} = {params.add(value)}{cast}")
    return conditions


def _translate_error(e: asyncpg.PostgresError) -> StoreError:
    if isinstance(e, asyncpg.UniqueViolationError):
        return UniqueViolationError(str(e))
    if isinstance(e, asyncpg.CheckViolationError):
        return ValidationError(str(e))
    return StoreError(str(e))


class PgStore:
    """PostgreSQL + pgvector implementation of the Store protocol."""

    def __init__(
        self,
        database_url: str | None = None,
        embedding_dim: int = EMBEDDING_DIM,
    ):
        self.database_url = database_url or DATABASE_URL
        self.embedding_dim = embedding_dim
        self.pool: asyncpg.Pool | None = None

    async def connect(self):
        """Initialize connection pool."""
        # The extension must exist before register_vector can find the type
        conn = await asyncpg.connect(self.database_url)
        try:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        finally:
            await conn.close()

        self.pool = await asyncpg.create_pool(
            self.database_url,
            min_size=2,
            max_size=10,
            init=self._init_connection,
        )
        logger.info("connected_to_database")

    async def _init_connection(self, conn: asyncpg.Connection):
        """Initialize each connection with pgvector and JSONB codecs."""
        await register_vector(conn)
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("closed_database_connection")

    @asynccontextmanager
    async def connection(self):
        """Get a connection from the pool, translating driver errors."""
        if self.pool is None:
            raise StoreError("PgStore.connect() has not been called")
        async with self.pool.acquire() as conn:
            try:
                yield conn
            except asyncpg.PostgresError as e:
                raise _translate_error(e) from e

    async def initialize_schema(self):
        """Create tables, constraints and indexes."""
        async with self.connection() as conn:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
            await conn.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS nodes (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id UUID NOT NULL,
                    type TEXT NOT NULL,
                    slug TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT,
                    summary TEXT,
                    metadata JSONB NOT NULL DEFAULT '{}',
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    CONSTRAINT nodes_user_slug UNIQUE (user_id, slug),
                    CONSTRAINT type_check CHECK (type IN (
                        'concept', 'pattern', 'domain', 'person',
                        'org', 'project', 'note', 'artifact'
                    ))
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS edges (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id UUID NOT NULL,
                    source_id UUID NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
                    target_id UUID NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
                    edge_type TEXT NOT NULL DEFAULT 'related_to',
                    custom_label TEXT,
                    weight DOUBLE PRECISION NOT NULL DEFAULT 1.0,
                    summary TEXT,
                    metadata JSONB NOT NULL DEFAULT '{}',
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    CONSTRAINT no_self_edge CHECK (source_id <> target_id),
                    CONSTRAINT edge_type_check CHECK (edge_type IN (
                        'related_to', 'used_in', 'practiced_at', 'knows',
                        'prepared_for', 'works_at', 'authored', 'read',
                        'connected_to', 'depends_on', 'part_of', 'custom'
                    )),
                    CONSTRAINT custom_label_check CHECK (
                        (edge_type = 'custom' AND custom_label IS NOT NULL AND custom_label <> '')
                        OR (edge_type <> 'custom')
                    )
                )
            """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS embeddings (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id UUID NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id UUID NOT NULL,
                    content_hash TEXT NOT NULL,
                    embedding vector({self.embedding_dim}) NOT NULL,
                    model TEXT NOT NULL,
                    provider TEXT NOT NULL DEFAULT 'openai',
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    CONSTRAINT embeddings_entity_model UNIQUE (entity_type, entity_id, model),
                    CONSTRAINT entity_type_check CHECK (entity_type IN ('mos_node', 'mos_edge'))
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_ledger (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    session_id UUID NOT NULL,
                    mos_node_id UUID NOT NULL,
                    source_type TEXT NOT NULL,
                    source_key TEXT NOT NULL,
                    synced_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    CONSTRAINT sync_ledger_unique UNIQUE (session_id, source_type, source_key),
                    CONSTRAINT source_type_check CHECK (
                        source_type IN ('session', 'concept', 'edge', 'pattern')
                    )
                )
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_nodes_user ON nodes (user_id);
                CREATE INDEX IF NOT EXISTS idx_nodes_type ON nodes (type);
                CREATE INDEX IF NOT EXISTS idx_edges_source ON edges (source_id);
                CREATE INDEX IF NOT EXISTS idx_edges_target ON edges (target_id);
                CREATE INDEX IF NOT EXISTS idx_edges_type ON edges (edge_type);
                CREATE INDEX IF NOT EXISTS idx_embeddings_entity
                    ON embeddings (entity_type, entity_id);
            """)

            logger.info("initialized_schema")

    async def get(
        self,
        table: str,
        filters: Filters,
        columns: Sequence[str] | None = None,
    ) -> Record | None:
        rows = await self.scan(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

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
        params = _Params()
        select = ", ".join(_column(table, c) for c in columns) if columns else "*"
        conditions = _where(table, filters, params)

        if match is not None:
            pattern = params.add(f"%{match.text}%")
            conditions.append(
                "(" + " OR ".join(f"{_column(table, c)} ILIKE {pattern}" for c in match.columns) + ")"
            )

        sql = f"SELECT {select} FROM {_table(table)}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        if order_by:
            sql += f" ORDER BY {_column(table, order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += f" LIMIT {params.add(limit)}"
        if offset:
            sql += f" OFFSET {params.add(offset)}"

        async with self.connection() as conn:
            rows = await conn.fetch(sql, *params.values)
        return [_row_to_record(r) for r in rows]

    def _values_clause(self, table: str, record: Record, params: _Params) -> tuple[list[str], list[str]]:
        cols = []
        placeholders = []
        for column, value in record.items():
            cols.append(_column(table, column))
            if column in UUID_COLUMNS and value is not None:
                placeholders.append(f"{params.add(str(value))}::uuid")
            else:
                placeholders.append(params.add(value))
        return cols, placeholders

    async def insert(self, table: str, record: Record) -> Record:
        params = _Params()
        cols, placeholders = self._values_clause(table, record, params)
        sql = (
            f"INSERT INTO {_table(table)} ({', '.join(cols)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING *"
        )
        async with self.connection() as conn:
            row = await conn.fetchrow(sql, *params.values)
        return _row_to_record(row)

    async def upsert(
        self,
        table: str,
        record: Record,
        conflict_keys: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Record | None:
        params = _Params()
        cols, placeholders = self._values_clause(table, record, params)
        keys = ", ".join(_column(table, k) for k in conflict_keys)
        sql = (
            f"INSERT INTO {_table(table)} ({', '.join(cols)}) "
            f"VALUES ({', '.join(placeholders)}) ON CONFLICT ({keys}) "
        )
        updates = [c for c in cols if c not in conflict_keys and c != "id"]
        if ignore_duplicates or not updates:
            sql += "DO NOTHING"
        else:
            sql += "DO UPDATE SET " + ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
        sql += " RETURNING *"

        async with self.connection() as conn:
            row = await conn.fetchrow(sql, *params.values)
        return _row_to_record(row) if row else None

    async def update(self, table: str, filters: Filters, values: Record) -> list[Record]:
        params = _Params()
        assignments = []
        for column, value in values.items():
            cast = "::uuid" if column in UUID_COLUMNS and value is not None else ""
            value = str(value) if cast else value
            assignments.append(f"{_column(table, column)} = {params.add(value)}{cast}")
        conditions = _where(table, filters, params)

        sql = f"UPDATE {_table(table)} SET {', '.join(assignments)}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " RETURNING *"

        async with self.connection() as conn:
            rows = await conn.fetch(sql, *params.values)
        return [_row_to_record(r) for r in rows]

    async def delete(self, table: str, filters: Filters) -> None:
        params = _Params()
        conditions = _where(table, filters, params)
        if not conditions:
            raise StoreError("Refusing to delete without filters")
        sql = f"DELETE FROM {_table(table)} WHERE " + " AND ".join(conditions)
        async with self.connection() as conn:
            await conn.execute(sql, *params.values)

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

        params = _Params()
        vec = params.add(list(vector))
        conditions = [f"e.entity_type = {params.add(entity_type)}"]
        conditions += _where(table, filters, params, alias="t")
        conditions.append(f"1 - (e.embedding <=> {vec}) > {params.add(threshold)}")

        sql = f"""
            SELECT t.*, 1 - (e.embedding <=> {vec}) AS similarity
            FROM embeddings e
            JOIN {_table(table)} t ON t.id = e.entity_id
            WHERE {" AND ".join(conditions)}
            ORDER BY e.embedding <=> {vec}
            LIMIT {params.add(limit)}
        """
        async with self.connection() as conn:
            rows = await conn.fetch(sql, *params.values)
        return [_row_to_record(r) for r in rows]

    async def full_text_search(
        self,
        table: str,
        query: str,
        *,
        filters: Filters | None = None,
        limit: int,
    ) -> list[Record]:
        if table != NODES:
            raise StoreError(f"Table {table} has no full-text index")

        params = _Params()
        tsquery = f"websearch_to_tsquery('english', {params.add(query)})"
        conditions = _where(table, filters, params)
        conditions.append(f"search_vector @@ {tsquery}")

        columns = ", ".join(TABLE_COLUMNS[NODES])
        sql = f"""
            SELECT {columns}
            FROM nodes
            WHERE {" AND ".join(conditions)}
            ORDER BY ts_rank(search_vector, {tsquery}) DESC
            LIMIT {params.add(limit)}
        """
        async with self.connection() as conn:
            rows = await conn.fetch(sql, *params.values)
        return [_row_to_record(r) for r in rows]

