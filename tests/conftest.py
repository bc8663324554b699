"""Shared test fixtures for the knowledge graph.

Everything runs against MemoryStore with fake embedding and completion
providers, so no database or network is needed.
"""

import pytest

from mos.errors import EmbeddingError
from mos.graph import CreateEdgeInput, CreateNodeInput, GraphEngine
from mos.storage import MemoryStore

USER = "user-1"
OTHER_USER = "user-2"

VOCABULARY = ("cache", "queue", "database")


class FakeEmbedder:
    """Bag-of-words embedder over a tiny vocabulary.

    Texts sharing vocabulary words get cosine similarity above zero;
    texts with no vocabulary words get the zero vector.
    """

    model = "fake-embed"
    provider = "openai"
    embedding_dim = len(VOCABULARY)

    def __init__(self):
        self.calls: list[str] = []

    def _vector(self, text: str) -> list[float]:
        self.calls.append(text)
        words = text.lower().split()
        return [float(sum(1 for w in words if w.startswith(v))) for v in VOCABULARY]

    def embed_query(self, query: str) -> list[float]:
        return self._vector(query)

    def embed_text(self, text: str) -> list[float]:
        return self._vector(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(t) for t in texts]


class FailingEmbedder(FakeEmbedder):
    """Embedder whose provider is always down."""

    def _vector(self, text: str) -> list[float]:
        raise EmbeddingError("provider unavailable")


class FakeCompletion:
    """Async completion callable that records prompts and returns a canned answer."""

    def __init__(self, answer: str = "canned answer", error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.error:
            raise self.error
        return self.answer


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(store):
    return GraphEngine(store)


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_completion():
    return FakeCompletion()


def node_input(title: str, type: str = "concept", user_id: str = USER, **kwargs) -> CreateNodeInput:
    """CreateNodeInput with a slug derived from the title."""
    slug = kwargs.pop("slug", title.lower().replace(" ", "-"))
    return CreateNodeInput(user_id=user_id, type=type, slug=slug, title=title, **kwargs)


def edge_input(source, target, edge_type: str = "related_to", user_id: str = USER, **kwargs) -> CreateEdgeInput:
    return CreateEdgeInput(
        user_id=user_id,
        source_id=source.id,
        target_id=target.id,
        edge_type=edge_type,
        **kwargs,
    )
