"""Tests for hybrid search: score fusion and the keyword-only fallback."""

import asyncio

import pytest
from conftest import OTHER_USER, USER, FailingEmbedder, FakeEmbedder, node_input

from mos.embeddings import NodeEmbeddingIndexer
from mos.errors import EmbeddingError
from mos.graph import Node
from mos.retrieval import (
    KEYWORD_WEIGHT,
    VECTOR_WEIGHT,
    HybridSearchEngine,
    SearchResult,
    SearchSource,
    merge_results,
)


def make_node(node_id: str) -> Node:
    return Node(id=node_id, user_id=USER, type="concept", slug=node_id, title=node_id.upper())


def vector(node_id: str, score: float) -> SearchResult:
    return SearchResult(node=make_node(node_id), score=score, source=SearchSource.VECTOR)


def keyword(node_id: str, score: float) -> SearchResult:
    return SearchResult(node=make_node(node_id), score=score, source=SearchSource.KEYWORD)


class TestMergeResults:
    """Tests for weighted fusion of vector and keyword hits."""

    def test_weights(self):
        assert VECTOR_WEIGHT == 0.7
        assert KEYWORD_WEIGHT == 0.3

    def test_vector_only(self):
        merged = merge_results([vector("a", 0.9)], [], limit=10)
        assert merged[0].score == pytest.approx(0.9 * 0.7)
        assert merged[0].source is SearchSource.VECTOR

    def test_keyword_only(self):
        merged = merge_results([], [keyword("a", 0.8)], limit=10)
        assert merged[0].score == pytest.approx(0.8 * 0.3)
        assert merged[0].source is SearchSource.KEYWORD

    def test_overlap_is_hybrid(self):
        merged = merge_results([vector("a", 0.9)], [keyword("a", 0.8)], limit=10)

        assert len(merged) == 1
        assert merged[0].score == pytest.approx(0.9 * 0.7 + 0.8 * 0.3)
        assert merged[0].source is SearchSource.HYBRID

    def test_sorted_unique_and_limited(self):
        merged = merge_results(
            [vector("a", 0.9), vector("b", 0.6), vector("c", 0.55)],
            [keyword("b", 1.0), keyword("d", 0.9), keyword("e", 0.8)],
            limit=3,
        )

        assert len(merged) == 3
        scores = [r.score for r in merged]
        assert scores == sorted(scores, reverse=True)
        ids = [r.node.id for r in merged]
        assert len(ids) == len(set(ids))
        assert ids[0] == "a"

    def test_empty_inputs(self):
        assert merge_results([], [], limit=5) == []


def seed(engine, store, embedder):
    """Three nodes for USER, one for OTHER_USER, all embedded."""
    indexer = NodeEmbeddingIndexer(store, embedder)
    nodes = [
        asyncio.run(engine.create_node(node_input("Cache invalidation", content="Cache keys expire"))),
        asyncio.run(engine.create_node(node_input("Message queue", content="Durable queue semantics"))),
        asyncio.run(engine.create_node(node_input("Database sharding", content="Split rows by key"))),
        asyncio.run(engine.create_node(node_input("Cache stampede", user_id=OTHER_USER))),
    ]
    for node in nodes:
        asyncio.run(indexer.index_node(node))
    return nodes


class TestHybridSearchEngine:
    """Tests for HybridSearchEngine against the in-memory store."""

    def test_hybrid_match(self, engine, store):
        embedder = FakeEmbedder()
        cache, queue, db, _ = seed(engine, store, embedder)
        search = HybridSearchEngine(store, embedder=embedder)

        results = asyncio.run(search.hybrid_search("cache", USER, limit=10))

        assert [r.node.id for r in results] == [cache.id]
        assert results[0].source is SearchSource.HYBRID
        assert results[0].score == pytest.approx(1.0 * 0.7 + 1.0 * 0.3)

    def test_vector_only_hit(self, engine, store):
        """Semantic neighbours show up even without a keyword match."""
        embedder = FakeEmbedder()
        cache, queue, db, _ = seed(engine, store, embedder)
        search = HybridSearchEngine(store, embedder=embedder)

        results = asyncio.run(search.hybrid_search("queues", USER, limit=10))

        assert [r.node.id for r in results] == [queue.id]
        assert results[0].source is SearchSource.VECTOR

    def test_scoped_to_user(self, engine, store):
        embedder = FakeEmbedder()
        *_, other = seed(engine, store, embedder)
        search = HybridSearchEngine(store, embedder=embedder)

        results = asyncio.run(search.hybrid_search("cache", USER, limit=10))
        assert other.id not in {r.node.id for r in results}

    def test_falls_back_to_keyword_when_embedding_fails(self, engine, store):
        cache, *_ = seed(engine, store, FakeEmbedder())
        search = HybridSearchEngine(store, embedder=FailingEmbedder())

        results = asyncio.run(search.hybrid_search("cache", USER, limit=10))

        assert [r.node.id for r in results] == [cache.id]
        assert results[0].source is SearchSource.KEYWORD
        assert results[0].score == pytest.approx(1.0 * 0.3)

    def test_falls_back_when_provider_is_unconfigured(self, engine, store):
        seed(engine, store, FakeEmbedder())

        def missing_key():
            raise EmbeddingError("OPENAI_API_KEY not set")

        search = HybridSearchEngine(store, embedder_factory=missing_key)
        results = asyncio.run(search.hybrid_search("database", USER, limit=10))

        assert len(results) == 1
        assert results[0].source is SearchSource.KEYWORD

    def test_keyword_scores_by_rank(self, engine, store):
        asyncio.run(engine.create_node(node_input("Cache cache cache")))
        asyncio.run(engine.create_node(node_input("Cache once")))
        search = HybridSearchEngine(store, embedder=FailingEmbedder())

        results = asyncio.run(search.keyword_search("cache", USER, limit=4))

        assert [r.node.title for r in results] == ["Cache cache cache", "Cache once"]
        assert [r.score for r in results] == [1.0, 0.75]

    def test_search_nodes_never_embeds(self, engine, store):
        seed(engine, store, FakeEmbedder())
        created = []

        def factory():
            created.append(True)
            return FakeEmbedder()

        search = HybridSearchEngine(store, embedder_factory=factory)
        results = asyncio.run(search.search_nodes("sharding", USER))

        assert len(results) == 1
        assert created == []

    def test_no_matches(self, engine, store):
        seed(engine, store, FakeEmbedder())
        search = HybridSearchEngine(store, embedder=FakeEmbedder())
        assert asyncio.run(search.hybrid_search("kubernetes", USER)) == []
