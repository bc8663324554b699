"""Hybrid Search - Combine vector similarity and full-text search with weighted fusion."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from ..config import SEARCH_DEFAULT_LIMIT
from ..embeddings import Embedder, create_embedder
from ..graph.models import Node
from ..storage.store import NODES, Store

logger = structlog.get_logger()

VECTOR_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3
VECTOR_MATCH_THRESHOLD = 0.5


class SearchSource(Enum):
    """Which signal(s) produced a result."""

    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


@dataclass
class SearchResult:
    """A ranked node. Built per query and discarded after the response."""

    node: Node
    score: float
    source: SearchSource

    def to_dict(self) -> dict[str, Any]:
        return {"node": self.node.to_dict(), "score": self.score, "source": self.source.value}


def merge_results(
    vector_results: list[SearchResult],
    keyword_results: list[SearchResult],
    limit: int,
) -> list[SearchResult]:
    """Fuse vector and keyword hits into one list ranked by weighted score.

    combined = vector_score * 0.7 + keyword_score * 0.3, where a node missing
    from one source contributes 0 for that source. Each node id appears once.
    """
    entries: dict[str, dict[str, Any]] = {}

    for r in vector_results:
        entries[r.node.id] = {"node": r.node, "vector_score": r.score, "keyword_score": 0.0}

    for r in keyword_results:
        existing = entries.get(r.node.id)
        if existing:
            existing["keyword_score"] = r.score
        else:
            entries[r.node.id] = {"node": r.node, "vector_score": 0.0, "keyword_score": r.score}

    merged = []
    for entry in entries.values():
        has_vector = entry["vector_score"] > 0
        has_keyword = entry["keyword_score"] > 0
        if has_vector and has_keyword:
            source = SearchSource.HYBRID
        elif has_vector:
            source = SearchSource.VECTOR
        else:
            source = SearchSource.KEYWORD

        merged.append(
            SearchResult(
                node=entry["node"],
                score=entry["vector_score"] * VECTOR_WEIGHT
                + entry["keyword_score"] * KEYWORD_WEIGHT,
                source=source,
            )
        )

    merged.sort(key=lambda r: r.score, reverse=True)
    return merged[:limit]


class HybridSearchEngine:
    """Vector + keyword search over a user's nodes.

    The embedder is created lazily so that a missing provider key only
    disables the vector half of hybrid_search instead of failing it.
    """

    def __init__(
        self,
        store: Store,
        embedder: Embedder | None = None,
        embedder_factory: Callable[[], Embedder] = create_embedder,
    ):
        self.store = store
        self._embedder = embedder
        self._embedder_factory = embedder_factory

    def get_embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = self._embedder_factory()
        return self._embedder

    async def vector_search(
        self,
        embedding: list[float],
        user_id: str,
        limit: int,
    ) -> list[SearchResult]:
        """Nearest-neighbour nodes above the fixed similarity threshold."""
        rows = await self.store.nearest_neighbor(
            NODES,
            embedding,
            threshold=VECTOR_MATCH_THRESHOLD,
            limit=limit,
            filters={"user_id": user_id},
        )
        return [
            SearchResult(
                node=Node.from_record(row),
                score=float(row["similarity"]),
                source=SearchSource.VECTOR,
            )
            for row in rows
        ]

    async def keyword_search(
        self,
        query: str,
        user_id: str,
        limit: int,
    ) -> list[SearchResult]:
        """Full-text hits scored by rank position: 1 - i / max(limit, 1)."""
        rows = await self.store.full_text_search(
            NODES,
            query,
            filters={"user_id": user_id},
            limit=limit,
        )
        return [
            SearchResult(
                node=Node.from_record(row),
                score=1 - i / max(limit, 1),
                source=SearchSource.KEYWORD,
            )
            for i, row in enumerate(rows)
        ]

    async def hybrid_search(
        self,
        query: str,
        user_id: str,
        limit: int = SEARCH_DEFAULT_LIMIT,
    ) -> list[SearchResult]:
        """Search with both signals; degrades to keyword-only if embedding fails."""
        vector_results: list[SearchResult] = []
        try:
            embedder = self.get_embedder()
            query_embedding = await asyncio.to_thread(embedder.embed_query, query)
            vector_results = await self.vector_search(query_embedding, user_id, limit)
        except Exception as e:
            # Unconfigured or failing provider: continue with keyword results only
            logger.warning("vector_search_unavailable", error=str(e))

        keyword_results = await self.keyword_search(query, user_id, limit)
        merged = merge_results(vector_results, keyword_results, limit)

        logger.info(
            "hybrid_search",
            query=query[:50],
            vector_count=len(vector_results),
            keyword_count=len(keyword_results),
            returned_count=len(merged),
        )
        return merged

    async def search_nodes(
        self,
        query: str,
        user_id: str,
        limit: int = SEARCH_DEFAULT_LIMIT,
    ) -> list[SearchResult]:
        """Keyword-only search; never touches the embedding provider."""
        return await self.keyword_search(query, user_id, limit)
