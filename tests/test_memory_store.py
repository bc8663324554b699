"""Tests for the in-process store's constraints and queries."""

import asyncio

import pytest

from mos.errors import StoreError, UniqueViolationError, ValidationError
from mos.storage import EDGES, EMBEDDINGS, NODES, SYNC_LEDGER, AnyOf, MemoryStore, Store, TextMatch


def add_node(store, slug, title=None, **extra):
    record = {"user_id": "u", "type": "concept", "slug": slug, "title": title or slug, **extra}
    return asyncio.run(store.insert(NODES, record))


class TestMemoryStoreConstraints:
    """Tests for unique and check constraints."""

    def test_satisfies_protocol(self):
        assert isinstance(MemoryStore(), Store)

    def test_insert_fills_defaults(self, store):
        row = add_node(store, "a")
        assert row["id"]
        assert row["metadata"] == {}
        assert row["content"] is None
        assert row["created_at"] is not None

    def test_duplicate_slug_insert_raises(self, store):
        add_node(store, "a")
        with pytest.raises(UniqueViolationError):
            add_node(store, "a")

    def test_upsert_ignore_duplicates_returns_none(self, store):
        add_node(store, "a", title="First")
        result = asyncio.run(
            store.upsert(
                NODES,
                {"user_id": "u", "type": "concept", "slug": "a", "title": "Second"},
                conflict_keys=("user_id", "slug"),
                ignore_duplicates=True,
            )
        )
        assert result is None
        assert asyncio.run(store.get(NODES, {"slug": "a"}))["title"] == "First"

    def test_upsert_overwrites_supplied_columns(self, store):
        original = add_node(store, "a", title="First", content="kept")
        result = asyncio.run(
            store.upsert(
                NODES,
                {"user_id": "u", "type": "concept", "slug": "a", "title": "Second"},
                conflict_keys=("user_id", "slug"),
            )
        )
        assert result["id"] == original["id"]
        assert result["title"] == "Second"
        assert result["content"] == "kept"

    def test_check_constraints(self, store):
        a = add_node(store, "a")
        b = add_node(store, "b")

        with pytest.raises(ValidationError):
            add_node(store, "c", type="widget")
        with pytest.raises(ValidationError):
            asyncio.run(
                store.insert(
                    EDGES, {"user_id": "u", "source_id": a["id"], "target_id": a["id"]}
                )
            )
        with pytest.raises(ValidationError):
            asyncio.run(
                store.insert(
                    EDGES,
                    {"user_id": "u", "source_id": a["id"], "target_id": b["id"], "edge_type": "custom"},
                )
            )
        with pytest.raises(ValidationError):
            asyncio.run(
                store.insert(
                    SYNC_LEDGER,
                    {"session_id": "s", "mos_node_id": a["id"], "source_type": "bogus", "source_key": "k"},
                )
            )

    def test_unknown_table(self, store):
        with pytest.raises(StoreError):
            asyncio.run(store.get("widgets", {}))

    def test_returned_rows_are_copies(self, store):
        row = add_node(store, "a", metadata={"tags": ["x"]})
        row["metadata"]["tags"].append("y")
        assert asyncio.run(store.get(NODES, {"id": row["id"]}))["metadata"] == {"tags": ["x"]}


class TestMemoryStoreQueries:
    """Tests for scan, nearest_neighbor and full_text_search."""

    def test_any_of_filter(self, store):
        a = add_node(store, "a")
        add_node(store, "b")
        c = add_node(store, "c")

        rows = asyncio.run(store.scan(NODES, {"id": AnyOf.of([a["id"], c["id"]])}))
        assert {r["slug"] for r in rows} == {"a", "c"}
        assert asyncio.run(store.scan(NODES, {"id": AnyOf.of([])})) == []

    def test_text_match_is_case_insensitive(self, store):
        add_node(store, "a", title="Consistent Hashing")
        add_node(store, "b", content="uses consistent HASHING rings")
        add_node(store, "c", title="Bloom filters")

        rows = asyncio.run(store.scan(NODES, match=TextMatch(("title", "content"), "hashing")))
        assert {r["slug"] for r in rows} == {"a", "b"}

    def test_column_projection(self, store):
        add_node(store, "a")
        rows = asyncio.run(store.scan(NODES, columns=("slug",)))
        assert rows == [{"slug": "a"}]

    def test_nearest_neighbor_threshold_is_strict(self, store):
        near = add_node(store, "near")
        edge_case = add_node(store, "edge-case")
        for node, vector in ((near, [1.0, 0.0, 0.0, 0.0]), (edge_case, [1.0, 1.0, 1.0, 1.0])):
            asyncio.run(
                store.insert(
                    EMBEDDINGS,
                    {
                        "user_id": "u",
                        "entity_type": "mos_node",
                        "entity_id": node["id"],
                        "model": "m",
                        "content_hash": "h",
                        "embedding": vector,
                    },
                )
            )

        rows = asyncio.run(store.nearest_neighbor(NODES, [1.0, 0.0, 0.0, 0.0], threshold=0.5, limit=5))
        assert [r["slug"] for r in rows] == ["near"]
        assert rows[0]["similarity"] == pytest.approx(1.0)

    def test_full_text_requires_every_term(self, store):
        add_node(store, "a", title="Cache invalidation")
        add_node(store, "b", title="Cache", content="invalidation strategies and cache keys")
        add_node(store, "c", title="Invalidation only")

        rows = asyncio.run(store.full_text_search(NODES, "cache invalidation", limit=10))
        assert {r["slug"] for r in rows} == {"a", "b"}

    def test_full_text_prefers_title_hits(self, store):
        add_node(store, "body", title="Notes", content="sharding")
        add_node(store, "title", title="Sharding")

        rows = asyncio.run(store.full_text_search(NODES, "sharding", limit=10))
        assert [r["slug"] for r in rows] == ["title", "body"]
