"""OpenAI-compatible Embedder -- works with any /v1/embeddings endpoint.

Points at the public OpenAI API by default; EMBEDDING_API_BASE switches to
vLLM, text-embeddings-inference, a LiteLLM proxy, etc.

If the server returns more dimensions than `embedding_dim`, vectors are
truncated and L2-normalized (Matryoshka truncation) so they fit the
store's vector column.
"""

import math
import os

import httpx
import structlog

from ..errors import EmbeddingError

logger = structlog.get_logger()

OPENAI_API_BASE = "https://api.openai.com/v1"


def _truncate_and_normalize(embedding: list[float], target_dim: int) -> list[float]:
    """Truncate to target dimensions and L2-normalize."""
    vec = embedding[:target_dim]
    norm = math.sqrt(sum(x * x for x in vec))
    if norm > 0:
        vec = [x / norm for x in vec]
    return vec


class OpenAIEmbedder:
    """Generate embeddings via an OpenAI-compatible /v1/embeddings endpoint."""

    provider = "openai"

    def __init__(
        self,
        api_base: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        embedding_dim: int = 1536,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self.api_base = (
            api_base
            or os.environ.get("EMBEDDING_API_BASE")
            or os.environ.get("OPENAI_API_BASE", OPENAI_API_BASE)
        ).rstrip("/")
        self.api_key = (
            api_key
            or os.environ.get("EMBEDDING_API_KEY")
            or os.environ.get("OPENAI_API_KEY", "")
        )
        # Self-hosted servers may run without a key; the public API may not
        if not self.api_key and self.api_base == OPENAI_API_BASE:
            raise EmbeddingError("OPENAI_API_KEY not set")

        self.model = model or os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
        self.embedding_dim = embedding_dim
        self._client = client or httpx.Client(timeout=timeout)

    def _call_api(self, texts: list[str]) -> list[list[float]]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            resp = self._client.post(
                f"{self.api_base}/embeddings",
                json={"model": self.model, "input": texts},
                headers=headers,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        # Sort by index; the API does not promise input order
        items = sorted(data.get("data", []), key=lambda x: x["index"])
        if len(items) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(items)} from {self.model}"
            )
        return [item["embedding"] for item in items]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request."""
        if not texts:
            return []

        raw = self._call_api(texts)
        server_dim = len(raw[0])
        if server_dim > self.embedding_dim:
            logger.debug(
                "matryoshka_truncation",
                server_dim=server_dim,
                target_dim=self.embedding_dim,
            )
            return [_truncate_and_normalize(v, self.embedding_dim) for v in raw]
        if server_dim < self.embedding_dim:
            logger.warning(
                "embedding_dim_mismatch",
                server_dim=server_dim,
                configured_dim=self.embedding_dim,
            )
        return raw

    def embed_query(self, query: str) -> list[float]:
        """Embed a search query."""
        return self.embed_batch([query])[0]

    def embed_text(self, text: str) -> list[float]:
        """Embed a single document text."""
        return self.embed_batch([text])[0]
