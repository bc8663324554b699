"""Tests for embedding providers and the node embedding index."""

import asyncio
import json
import math

import httpx
import pytest
from conftest import FakeEmbedder, node_input

from mos.embeddings import (
    NodeEmbeddingIndexer,
    OpenAIEmbedder,
    VoyageEmbedder,
    content_hash,
    create_embedder,
    node_embedding_text,
)
from mos.errors import EmbeddingError
from mos.graph import Node
from mos.storage import EMBEDDINGS


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def embeddings_response(request: httpx.Request, dim: int) -> httpx.Response:
    texts = json.loads(request.content)["input"]
    # Return out of order to exercise index sorting
    data = [
        {"index": i, "embedding": [float(i + 1)] * dim}
        for i in reversed(range(len(texts)))
    ]
    return httpx.Response(200, json={"data": data})


class TestOpenAIEmbedder:
    """Tests for the OpenAI-compatible embedder."""

    def test_missing_key_for_public_api(self, monkeypatch):
        monkeypatch.delenv("EMBEDDING_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("EMBEDDING_API_BASE", raising=False)
        monkeypatch.delenv("OPENAI_API_BASE", raising=False)
        with pytest.raises(EmbeddingError):
            OpenAIEmbedder()

    def test_self_hosted_needs_no_key(self, monkeypatch):
        monkeypatch.delenv("EMBEDDING_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        embedder = OpenAIEmbedder(api_base="http://localhost:8080/v1/")
        assert embedder.api_base == "http://localhost:8080/v1"

    def test_batch_preserves_input_order(self):
        embedder = OpenAIEmbedder(
            api_key="k",
            embedding_dim=3,
            client=mock_client(lambda r: embeddings_response(r, 3)),
        )
        vectors = embedder.embed_batch(["a", "b"])
        assert vectors == [[1.0, 1.0, 1.0], [2.0, 2.0, 2.0]]

    def test_truncates_and_normalizes_wider_vectors(self):
        embedder = OpenAIEmbedder(
            api_key="k",
            embedding_dim=2,
            client=mock_client(lambda r: embeddings_response(r, 4)),
        )
        vector = embedder.embed_query("q")
        assert len(vector) == 2
        assert math.sqrt(sum(x * x for x in vector)) == pytest.approx(1.0)

    def test_http_error_becomes_embedding_error(self):
        embedder = OpenAIEmbedder(
            api_key="k",
            client=mock_client(lambda r: httpx.Response(429, json={"error": "quota"})),
        )
        with pytest.raises(EmbeddingError):
            embedder.embed_text("t")

    def test_count_mismatch(self):
        embedder = OpenAIEmbedder(
            api_key="k",
            client=mock_client(lambda r: httpx.Response(200, json={"data": []})),
        )
        with pytest.raises(EmbeddingError):
            embedder.embed_text("t")

    def test_empty_batch_skips_request(self):
        def fail(request):
            raise AssertionError("no request expected")

        embedder = OpenAIEmbedder(api_key="k", client=mock_client(fail))
        assert embedder.embed_batch([]) == []


class TestEmbedderFactory:
    """Tests for create_embedder."""

    def test_voyage_requires_key(self, monkeypatch):
        monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
        with pytest.raises(EmbeddingError):
            VoyageEmbedder()

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            create_embedder(embedder_type="word2vec")


class TestNodeEmbeddingIndexer:
    """Tests for content-hash gated indexing."""

    def test_content_hash(self):
        assert content_hash("abc") == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_embedding_text_skips_blank_parts(self):
        node = Node(id="n", user_id="u", type="concept", slug="s", title="Cache", content="LRU")
        assert node_embedding_text(node) == "Cache\nLRU"

    def test_unchanged_node_is_not_reembedded(self, engine, store):
        embedder = FakeEmbedder()
        indexer = NodeEmbeddingIndexer(store, embedder)
        node = asyncio.run(engine.create_node(node_input("Cache", content="LRU")))

        assert asyncio.run(indexer.index_node(node)) is True
        assert asyncio.run(indexer.index_node(node)) is False
        assert len(embedder.calls) == 1

        changed = asyncio.run(engine.update_node(node.id, content="LFU"))
        assert asyncio.run(indexer.index_node(changed)) is True

        rows = list(store.tables[EMBEDDINGS].values())
        assert len(rows) == 1
        assert rows[0]["content_hash"] == content_hash("Cache\nLFU")
        assert rows[0]["entity_type"] == "mos_node"

    def test_reindex_user(self, engine, store):
        indexer = NodeEmbeddingIndexer(store, FakeEmbedder())
        asyncio.run(engine.create_node(node_input("Cache")))
        asyncio.run(engine.create_node(node_input("Queue")))

        assert asyncio.run(indexer.reindex_user("user-1")) == 2
        assert asyncio.run(indexer.reindex_user("user-1")) == 0
