"""Embedding providers -- factory selects the backend from config."""

from typing import Protocol, runtime_checkable

from .indexer import NodeEmbeddingIndexer, content_hash, node_embedding_text
from .openai_embedder import OpenAIEmbedder
from .voyage_embedder import VoyageEmbedder


@runtime_checkable
class Embedder(Protocol):
    """Interface satisfied by OpenAIEmbedder and VoyageEmbedder.

    Calls are blocking; async callers run them with asyncio.to_thread.
    """

    model: str
    provider: str
    embedding_dim: int

    def embed_query(self, query: str) -> list[float]: ...
    def embed_text(self, text: str) -> list[float]: ...
    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


def create_embedder(
    embedder_type: str | None = None,
    model: str | None = None,
    embedding_dim: int | None = None,
) -> OpenAIEmbedder | VoyageEmbedder:
    """Create an embedder based on configuration.

    Raises EmbeddingError when the selected backend lacks credentials.
    """
    from ..config import (
        EMBEDDER_TYPE,
        EMBEDDING_API_BASE,
        EMBEDDING_API_KEY,
        EMBEDDING_DIM,
        EMBEDDING_MODEL,
    )

    etype = (embedder_type or EMBEDDER_TYPE).lower()
    emodel = model or EMBEDDING_MODEL
    edim = embedding_dim or EMBEDDING_DIM

    if etype == "openai":
        return OpenAIEmbedder(
            model=emodel,
            api_base=EMBEDDING_API_BASE or None,
            api_key=EMBEDDING_API_KEY or None,
            embedding_dim=edim,
        )
    elif etype == "voyage":
        return VoyageEmbedder(model=emodel, embedding_dim=edim)
    else:
        raise ValueError(
            f"Unknown EMBEDDER_TYPE={etype!r}. Expected 'openai' or 'voyage'."
        )


__all__ = [
    "Embedder",
    "NodeEmbeddingIndexer",
    "OpenAIEmbedder",
    "VoyageEmbedder",
    "content_hash",
    "create_embedder",
    "node_embedding_text",
]
