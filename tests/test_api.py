"""Tests for the HTTP layer using FastAPI's TestClient."""

import pytest
from conftest import OTHER_USER, USER, FailingEmbedder, FakeCompletion, FakeEmbedder
from fastapi.testclient import TestClient

from mos.api.main import build_services, create_app
from mos.errors import CompletionError
from mos.retrieval import HybridSearchEngine
from mos.storage import EMBEDDINGS, MemoryStore

HEADERS = {"X-User-Id": USER}


def make_client(embedder=None, completion=None):
    store = MemoryStore()
    services = build_services(
        store,
        search=HybridSearchEngine(store, embedder=embedder or FakeEmbedder()),
        complete_fn=completion or FakeCompletion(),
    )
    return TestClient(create_app(services)), store


@pytest.fixture
def client():
    test_client, _ = make_client()
    return test_client


def create(client, title, type="concept", headers=HEADERS, **extra):
    response = client.post("/nodes", json={"type": type, "title": title, **extra}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    """Tests for /health."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["store"] == "MemoryStore"


class TestNodeRoutes:
    """Tests for node CRUD routes."""

    def test_requires_user_header(self, client):
        assert client.get("/nodes").status_code == 422

    def test_create_derives_slug_and_indexes(self):
        client, store = make_client()
        node = create(client, "Cache (Redis)", content="In-memory cache")

        assert node["slug"] == "cache-redis"
        assert node["user_id"] == USER
        assert len(store.tables[EMBEDDINGS]) == 1

    def test_create_survives_embedding_failure(self):
        client, store = make_client(embedder=FailingEmbedder())
        create(client, "Cache")
        assert store.tables[EMBEDDINGS] == {}

    def test_unsluggable_title_gets_hashed_slug(self, client):
        node = create(client, "Кэш")
        assert node["slug"].startswith("n-")

    def test_explicit_slug(self, client):
        assert create(client, "Anything", slug="custom-slug")["slug"] == "custom-slug"

    def test_invalid_type(self, client):
        response = client.post("/nodes", json={"type": "widget", "title": "X"}, headers=HEADERS)
        assert response.status_code == 422

    def test_get_update_delete(self, client):
        node = create(client, "Queues")

        detail = client.get(f"/nodes/{node['id']}", headers=HEADERS).json()
        assert detail["node"]["title"] == "Queues"
        assert detail["edges"] == []

        patched = client.patch(
            f"/nodes/{node['id']}", json={"summary": "FIFO"}, headers=HEADERS
        ).json()
        assert patched["summary"] == "FIFO"
        assert patched["title"] == "Queues"

        assert client.delete(f"/nodes/{node['id']}", headers=HEADERS).status_code == 200
        assert client.get(f"/nodes/{node['id']}", headers=HEADERS).status_code == 404

    def test_other_users_nodes_are_hidden(self, client):
        node = create(client, "Private")
        other = {"X-User-Id": OTHER_USER}

        assert client.get(f"/nodes/{node['id']}", headers=other).status_code == 404
        assert client.get("/nodes", headers=other).json()["nodes"] == []

    def test_list_with_search(self, client):
        create(client, "Redis", content="cache server")
        create(client, "Kafka")
        nodes = client.get("/nodes", params={"search": "CACHE"}, headers=HEADERS).json()["nodes"]
        assert [n["title"] for n in nodes] == ["Redis"]


class TestEdgeRoutes:
    """Tests for edges and traversal."""

    def test_edges_and_connections(self, client):
        a = create(client, "A")
        b = create(client, "B")

        response = client.post(
            "/edges",
            json={"source_id": a["id"], "target_id": b["id"], "edge_type": "depends_on", "weight": 0.5},
            headers=HEADERS,
        )
        assert response.status_code == 201
        edge = response.json()

        conns = client.get(
            f"/nodes/{a['id']}/connections",
            params={"depth": 1, "direction": "outgoing"},
            headers=HEADERS,
        ).json()["connections"]
        assert [(c["node"]["id"], c["depth"]) for c in conns] == [(b["id"], 1)]

        assert client.delete(f"/edges/{edge['id']}", headers=HEADERS).status_code == 200
        assert client.delete(f"/edges/{edge['id']}", headers=HEADERS).status_code == 404

    def test_negative_weight_accepted(self, client):
        a = create(client, "A")
        b = create(client, "B")
        response = client.post(
            "/edges",
            json={"source_id": a["id"], "target_id": b["id"], "weight": -0.5},
            headers=HEADERS,
        )
        assert response.status_code == 201
        assert response.json()["weight"] == -0.5

    def test_self_edge_rejected(self, client):
        a = create(client, "A")
        response = client.post(
            "/edges", json={"source_id": a["id"], "target_id": a["id"]}, headers=HEADERS
        )
        assert response.status_code == 422


class TestSearchAndGeneration:
    """Tests for /search, /ask, /crib and /suggestions."""

    def test_search(self, client):
        create(client, "Cache invalidation")
        create(client, "Sharding")

        results = client.post("/search", json={"query": "cache"}, headers=HEADERS).json()["results"]
        assert [r["node"]["title"] for r in results] == ["Cache invalidation"]
        assert results[0]["source"] == "hybrid"

        keyword = client.post(
            "/search", json={"query": "cache", "mode": "keyword"}, headers=HEADERS
        ).json()["results"]
        assert keyword[0]["source"] == "keyword"

    def test_ask_without_nodes(self, client):
        answer = client.post("/ask", json={"topic": "raft"}, headers=HEADERS).json()["answer"]
        assert answer == 'You don\'t have any nodes related to "raft" yet.'

    def test_ask_provider_failure_is_502(self):
        client, _ = make_client(completion=FakeCompletion(error=CompletionError("down")))
        create(client, "Raft consensus")
        response = client.post("/ask", json={"topic": "raft"}, headers=HEADERS)
        assert response.status_code == 502

    def test_crib_sheet(self, client):
        node = create(client, "Interview prep", type="project")
        response = client.get(f"/crib/{node['id']}", headers=HEADERS)
        assert response.json() == {"node_id": node["id"], "crib_sheet": "canned answer"}

    def test_crib_sheet_missing(self, client):
        assert client.get("/crib/missing", headers=HEADERS).status_code == 404

    def test_suggestions(self, client):
        create(client, "Never practiced")
        suggestions = client.get("/suggestions", headers=HEADERS).json()["suggestions"]
        assert [s["title"] for s in suggestions] == ["Never practiced"]
        assert suggestions[0]["days_since_practice"] is None


class TestSyncRoute:
    """Tests for /sync/sessions."""

    PAYLOAD = {
        "session": {
            "id": "5e55a0e1-0000-4000-8000-000000000001",
            "user_id": USER,
            "prompt_id": "p1",
            "mode": "practice",
            "status": "evaluated",
            "started_at": "2024-05-01T10:00:00Z",
        },
        "evaluation": {
            "id": "e1",
            "overall_score": 70,
            "component_score": 80,
            "scaling_score": 60,
            "reliability_score": 65,
            "tradeoff_score": 50,
            "components_found": ["Cache"],
        },
    }

    def test_sync_twice(self, client):
        first = client.post("/sync/sessions", json=self.PAYLOAD).json()
        second = client.post("/sync/sessions", json=self.PAYLOAD).json()

        assert len(first["edge_ids"]) == 1
        assert first["skipped"] == 0
        assert second["session_node_id"] == first["session_node_id"]
        assert second["concept_node_ids"] == first["concept_node_ids"]
        assert second["edge_ids"] == []
        assert second["skipped"] == 2

        nodes = client.get("/nodes", params={"type": "concept"}, headers=HEADERS).json()["nodes"]
        assert nodes[0]["metadata"] == {"source": "sds", "auto_created": True}
