"""Node embedding index - keeps one vector per node and model, keyed by content hash."""

import asyncio
import hashlib
from typing import TYPE_CHECKING

import structlog

from ..graph.models import Node
from ..storage.store import EMBEDDING_ENTITY_TYPES, EMBEDDINGS, NODES, Store

if TYPE_CHECKING:
    from . import Embedder

logger = structlog.get_logger()


def content_hash(text: str) -> str:
    """SHA-256 hex digest used to detect unchanged embedding input."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def node_embedding_text(node: Node) -> str:
    """Text embedded for a node: title, summary and content, blanks skipped."""
    return "\n".join(part for part in (node.title, node.summary, node.content) if part)


class NodeEmbeddingIndexer:
    """Embed nodes into the store's embeddings table.

    Re-embedding is skipped when the stored content hash for the same
    node and model is unchanged.
    """

    def __init__(self, store: Store, embedder: "Embedder"):
        self.store = store
        self.embedder = embedder

    async def index_node(self, node: Node) -> bool:
        """Embed one node. Returns True if a new vector was written."""
        text = node_embedding_text(node)
        digest = content_hash(text)
        entity_type = EMBEDDING_ENTITY_TYPES[NODES]

        existing = await self.store.get(
            EMBEDDINGS,
            {"entity_type": entity_type, "entity_id": node.id, "model": self.embedder.model},
            columns=("content_hash",),
        )
        if existing and existing["content_hash"] == digest:
            logger.debug("embedding_up_to_date", node_id=node.id)
            return False

        vector = await asyncio.to_thread(self.embedder.embed_text, text)
        await self.store.upsert(
            EMBEDDINGS,
            {
                "user_id": node.user_id,
                "entity_type": entity_type,
                "entity_id": node.id,
                "content_hash": digest,
                "embedding": vector,
                "model": self.embedder.model,
                "provider": self.embedder.provider,
            },
            conflict_keys=("entity_type", "entity_id", "model"),
        )
        logger.debug("indexed_node_embedding", node_id=node.id, model=self.embedder.model)
        return True

    async def reindex_user(self, user_id: str) -> int:
        """Index every node of a user. Returns how many vectors were written."""
        records = await self.store.scan(NODES, {"user_id": user_id})
        written = 0
        for record in records:
            if await self.index_node(Node.from_record(record)):
                written += 1

        logger.info("reindexed_user_nodes", user_id=user_id, nodes=len(records), written=written)
        return written
