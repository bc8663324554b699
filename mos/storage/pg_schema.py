"""PostgreSQL Schema Migrations - versioned changes applied after initialize_schema()."""

from dataclasses import dataclass

import asyncpg
import structlog

logger = structlog.get_logger()


@dataclass
class Migration:
    """A database migration."""

    version: int
    name: str
    sql: str


MIGRATIONS = [
    Migration(
        version=1,
        name="add_node_search_vector",
        sql="""
        -- Weighted full-text vector: title (A) > content (B) > summary (C)
        ALTER TABLE nodes ADD COLUMN IF NOT EXISTS search_vector tsvector
        GENERATED ALWAYS AS (
            setweight(to_tsvector('english', coalesce(title, '')), 'A') ||
            setweight(to_tsvector('english', coalesce(content, '')), 'B') ||
            setweight(to_tsvector('english', coalesce(summary, '')), 'C')
        ) STORED;

        CREATE INDEX IF NOT EXISTS idx_nodes_search ON nodes USING gin (search_vector);
        """,
    ),
    Migration(
        version=2,
        name="add_embedding_ann_index",
        sql="""
        CREATE INDEX IF NOT EXISTS idx_embeddings_vector
        ON embeddings USING hnsw (embedding vector_cosine_ops);

        CREATE INDEX IF NOT EXISTS idx_embeddings_user ON embeddings (user_id);
        """,
    ),
    Migration(
        version=3,
        name="add_listing_indexes",
        sql="""
        -- list_nodes orders by updated_at within a user
        CREATE INDEX IF NOT EXISTS idx_nodes_user_updated
        ON nodes (user_id, updated_at DESC);

        CREATE INDEX IF NOT EXISTS idx_sync_ledger_session ON sync_ledger (session_id);
        """,
    ),
]

MIGRATIONS_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS mos_schema_migrations (
        version INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""


def pending_migrations(applied_versions: set[int]) -> list[Migration]:
    """Migrations not yet applied, in version order."""
    return sorted(
        (m for m in MIGRATIONS if m.version not in applied_versions),
        key=lambda m: m.version,
    )


class SchemaMigrator:
    """Applies MIGRATIONS on one connection, each in its own transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def applied_versions(self) -> set[int]:
        await self.conn.execute(MIGRATIONS_TABLE_DDL)
        rows = await self.conn.fetch("SELECT version FROM mos_schema_migrations")
        return {row["version"] for row in rows}

    async def apply(self, migration: Migration) -> None:
        async with self.conn.transaction():
            await self.conn.execute(migration.sql)
            await self.conn.execute(
                "INSERT INTO mos_schema_migrations (version, name) VALUES ($1, $2)",
                migration.version,
                migration.name,
            )
        logger.info("applied_migration", version=migration.version, name=migration.name)

    async def migrate(self) -> list[Migration]:
        """Apply all pending migrations. Returns the ones applied."""
        pending = pending_migrations(await self.applied_versions())
        for migration in pending:
            await self.apply(migration)

        if pending:
            logger.info("migrations_complete", applied_count=len(pending))
        else:
            logger.debug("no_pending_migrations")
        return pending


async def run_migrations(database_url: str) -> list[Migration]:
    """Run all pending migrations against `database_url`.

    Expects initialize_schema() to have created the base tables.
    """
    conn = await asyncpg.connect(database_url)
    try:
        return await SchemaMigrator(conn).migrate()
    finally:
        await conn.close()
