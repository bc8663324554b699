"""Voyage Embedder - Generate embeddings using Voyage AI."""

import os

import structlog
import voyageai

from ..errors import EmbeddingError

logger = structlog.get_logger()


class VoyageEmbedder:
    """Generate embeddings using Voyage AI models.

    voyage-3-large supports output dimensions 256/512/1024/2048; set
    EMBEDDING_DIM to one of those when using this backend.
    """

    provider = "voyage"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "voyage-3-large",
        embedding_dim: int = 1024,
    ):
        self.api_key = api_key or os.environ.get("VOYAGE_API_KEY")
        if not self.api_key:
            raise EmbeddingError("VOYAGE_API_KEY not set")

        self.model = model
        self.embedding_dim = embedding_dim
        self.client = voyageai.Client(api_key=self.api_key)

    def _embed(self, texts: list[str], input_type: str) -> list[list[float]]:
        try:
            result = self.client.embed(
                texts=texts,
                model=self.model,
                input_type=input_type,
                output_dimension=self.embedding_dim,
            )
        except Exception as e:
            raise EmbeddingError(f"Voyage embedding failed: {e}") from e

        if len(result.embeddings) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(result.embeddings)}"
            )
        return result.embeddings

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several document texts in one request."""
        if not texts:
            return []
        return self._embed(texts, input_type="document")

    def embed_query(self, query: str) -> list[float]:
        """Embed a query for search."""
        return self._embed([query], input_type="query")[0]

    def embed_text(self, text: str) -> list[float]:
        """Embed a single document text."""
        return self._embed([text], input_type="document")[0]
