#!/usr/bin/env python3
"""CLI for the personal knowledge graph.

Usage:
    python scripts/mos_cli.py init-db
    python scripts/mos_cli.py search USER_ID "consistent hashing"
    python scripts/mos_cli.py search USER_ID "consistent hashing" --keyword-only
    python scripts/mos_cli.py ask USER_ID "caching"
    python scripts/mos_cli.py crib USER_ID NODE_ID
    python scripts/mos_cli.py suggest USER_ID
    python scripts/mos_cli.py sync session.json
    python scripts/mos_cli.py reindex USER_ID
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog
from dotenv import load_dotenv
load_dotenv()  # Must run before any mos.* imports

from mos.config import DATABASE_URL, SEARCH_DEFAULT_LIMIT
from mos.connectors import Evaluation, PracticeSession, SessionSyncConnector
from mos.embeddings import NodeEmbeddingIndexer, create_embedder
from mos.generation import NodeSummarizer
from mos.graph import GraphEngine, PracticeSuggester
from mos.logging_config import configure_logging
from mos.retrieval import HybridSearchEngine
from mos.storage import PgStore, create_store, run_migrations

configure_logging()
logger = structlog.get_logger()


async def open_store():
    store = create_store()
    if isinstance(store, PgStore):
        await store.connect()
    return store


async def close_store(store) -> None:
    if isinstance(store, PgStore):
        await store.close()


async def cmd_init_db(args: argparse.Namespace) -> None:
    """Create tables and apply pending migrations."""
    store = PgStore(database_url=args.database_url)
    await store.connect()
    try:
        await store.initialize_schema()
    finally:
        await store.close()

    applied = await run_migrations(args.database_url)
    print(f"Schema ready, {len(applied)} migration(s) applied")


async def cmd_search(args: argparse.Namespace) -> None:
    store = await open_store()
    try:
        search = HybridSearchEngine(store)
        if args.keyword_only:
            results = await search.search_nodes(args.query, args.user_id, args.limit)
        else:
            results = await search.hybrid_search(args.query, args.user_id, args.limit)
    finally:
        await close_store(store)

    if not results:
        print("No matching nodes.")
        return
    for i, r in enumerate(results, 1):
        print(f"{i:2}. [{r.score:.3f} {r.source.value}] {r.node.title} ({r.node.type.value}) {r.node.id}")


async def cmd_ask(args: argparse.Namespace) -> None:
    store = await open_store()
    try:
        engine = GraphEngine(store)
        summarizer = NodeSummarizer(engine, HybridSearchEngine(store))
        answer = await summarizer.what_do_i_know(args.user_id, args.topic)
    finally:
        await close_store(store)
    print(answer)


async def cmd_crib(args: argparse.Namespace) -> None:
    store = await open_store()
    try:
        engine = GraphEngine(store)
        summarizer = NodeSummarizer(engine, HybridSearchEngine(store))
        sheet = await summarizer.generate_crib_sheet(args.user_id, args.node_id)
    finally:
        await close_store(store)
    print(sheet)


async def cmd_suggest(args: argparse.Namespace) -> None:
    """Show concepts due for practice."""
    store = await open_store()
    try:
        suggestions = await PracticeSuggester(store).suggest(args.user_id)
    finally:
        await close_store(store)

    if not suggestions:
        print("Nothing stale. Keep it up.")
        return
    for s in suggestions:
        when = "never practiced" if s.days_since_practice is None else f"{s.days_since_practice} days ago"
        print(f"  - {s.title} ({when})")


async def cmd_sync(args: argparse.Namespace) -> None:
    """Sync a session from a JSON file with "session" and "evaluation" objects."""
    payload = json.loads(Path(args.path).read_text())
    session = PracticeSession.from_dict(payload["session"])
    evaluation = Evaluation.from_dict(payload["evaluation"])

    store = await open_store()
    try:
        result = await SessionSyncConnector(GraphEngine(store)).sync_session_to_mos(session, evaluation)
    finally:
        await close_store(store)
    print(json.dumps(result.to_dict(), indent=2))


async def cmd_reindex(args: argparse.Namespace) -> None:
    """Re-embed every node of a user whose content changed."""
    store = await open_store()
    try:
        indexer = NodeEmbeddingIndexer(store, create_embedder())
        written = await indexer.reindex_user(args.user_id)
    finally:
        await close_store(store)
    print(f"Wrote {written} embedding(s)")


def main():
    parser = argparse.ArgumentParser(description="Personal knowledge graph CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-db", help="Create schema and run migrations")
    init_parser.add_argument("--database-url", default=DATABASE_URL)
    init_parser.set_defaults(func=cmd_init_db)

    search_parser = subparsers.add_parser("search", help="Search a user's nodes")
    search_parser.add_argument("user_id")
    search_parser.add_argument("query")
    search_parser.add_argument("--limit", type=int, default=SEARCH_DEFAULT_LIMIT)
    search_parser.add_argument("--keyword-only", action="store_true")
    search_parser.set_defaults(func=cmd_search)

    ask_parser = subparsers.add_parser("ask", help='Answer "what do I know about <topic>?"')
    ask_parser.add_argument("user_id")
    ask_parser.add_argument("topic")
    ask_parser.set_defaults(func=cmd_ask)

    crib_parser = subparsers.add_parser("crib", help="Generate a crib sheet for a node")
    crib_parser.add_argument("user_id")
    crib_parser.add_argument("node_id")
    crib_parser.set_defaults(func=cmd_crib)

    suggest_parser = subparsers.add_parser("suggest", help="List concepts due for practice")
    suggest_parser.add_argument("user_id")
    suggest_parser.set_defaults(func=cmd_suggest)

    sync_parser = subparsers.add_parser("sync", help="Sync an evaluated session from JSON")
    sync_parser.add_argument("path")
    sync_parser.set_defaults(func=cmd_sync)

    reindex_parser = subparsers.add_parser("reindex", help="Re-embed a user's nodes")
    reindex_parser.add_argument("user_id")
    reindex_parser.set_defaults(func=cmd_reindex)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(args.func(args))


if __name__ == "__main__":
    main()
