"""Graph Engine - node/edge CRUD and bounded-depth neighbourhood traversal."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from ..errors import NotFoundError, ValidationError
from ..storage.store import EDGES, NODES, AnyOf, Store, TextMatch
from .models import (
    ConnectedNode,
    Connection,
    Edge,
    EdgeType,
    Node,
    NodeType,
    NodeWithEdges,
    TraversalDirection,
    parse_direction,
    parse_edge_type,
    parse_node_type,
    validate_edge_fields,
)

logger = structlog.get_logger()

CONNECTED_NODE_COLUMNS = ("id", "title", "type", "slug")
UPDATABLE_NODE_FIELDS = {"title", "content", "summary", "metadata", "type"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dedupe_edges(edges: list[Edge]) -> list[Edge]:
    """Drop repeated edge ids, keeping first occurrence order."""
    seen: set[str] = set()
    unique = []
    for edge in edges:
        if edge.id not in seen:
            seen.add(edge.id)
            unique.append(edge)
    return unique


@dataclass
class CreateNodeInput:
    """Fields for an upsert keyed by (user_id, slug)."""

    user_id: str
    type: NodeType | str
    slug: str
    title: str
    content: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.type = parse_node_type(self.type)
        if not self.slug:
            raise ValidationError("Node slug must not be empty")
        if not self.title:
            raise ValidationError("Node title must not be empty")


@dataclass
class CreateEdgeInput:
    """Fields for a plain edge insert."""

    user_id: str
    source_id: str
    target_id: str
    edge_type: EdgeType | str
    custom_label: str | None = None
    weight: float = 1.0
    summary: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.edge_type = parse_edge_type(self.edge_type)
        validate_edge_fields(self.source_id, self.target_id, self.edge_type, self.custom_label)


class GraphEngine:
    """Node and edge operations over a Store.

    Lookups return None for missing rows. Store failures propagate as
    StoreError without retries.
    """

    def __init__(self, store: Store):
        self.store = store

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def create_node(self, node_input: CreateNodeInput) -> Node:
        """Upsert a node by (user_id, slug); an existing row is overwritten."""
        record = await self.store.upsert(
            NODES,
            {
                "user_id": node_input.user_id,
                "type": node_input.type.value,
                "slug": node_input.slug,
                "title": node_input.title,
                "content": node_input.content,
                "summary": node_input.summary,
                "metadata": node_input.metadata,
                "updated_at": _utcnow(),
            },
            conflict_keys=("user_id", "slug"),
        )
        node = Node.from_record(record)
        logger.debug("upserted_node", node_id=node.id, slug=node.slug, type=node.type.value)
        return node

    async def update_node(self, node_id: str, **updates: Any) -> Node:
        """Partially update a node; always refreshes updated_at.

        Raises:
            NotFoundError: if no node has this id
        """
        unknown = set(updates) - UPDATABLE_NODE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update node fields: {sorted(unknown)}")
        if "type" in updates:
            updates["type"] = parse_node_type(updates["type"]).value
        if "title" in updates and not updates["title"]:
            raise ValidationError("Node title must not be empty")

        rows = await self.store.update(NODES, {"id": node_id}, {**updates, "updated_at": _utcnow()})
        if not rows:
            raise NotFoundError(f"Node {node_id} not found")
        return Node.from_record(rows[0])

    async def delete_node(self, node_id: str) -> None:
        """Delete a node; the store cascades its edges. Missing ids are ignored."""
        await self.store.delete(NODES, {"id": node_id})
        logger.debug("deleted_node", node_id=node_id)

    async def get_node(self, node_id: str) -> Node | None:
        record = await self.store.get(NODES, {"id": node_id})
        return Node.from_record(record) if record else None

    async def get_node_by_slug(self, user_id: str, slug: str) -> Node | None:
        record = await self.store.get(NODES, {"user_id": user_id, "slug": slug})
        return Node.from_record(record) if record else None

    async def list_nodes(
        self,
        user_id: str | None = None,
        type: NodeType | str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Node]:
        """List nodes newest-updated first.

        Args:
            user_id: Restrict to one owner (omitted when the store is already scoped)
            type: Only nodes of this type
            search: Case-insensitive substring of title or content
            limit: Page size
            offset: Rows to skip
        """
        filters: dict[str, Any] = {}
        if user_id is not None:
            filters["user_id"] = user_id
        if type is not None:
            filters["type"] = parse_node_type(type).value

        records = await self.store.scan(
            NODES,
            filters,
            match=TextMatch(("title", "content"), search) if search else None,
            order_by="updated_at",
            descending=True,
            limit=limit,
            offset=offset,
        )
        return [Node.from_record(r) for r in records]

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    async def create_edge(self, edge_input: CreateEdgeInput) -> Edge:
        """Insert an edge. Edges are not deduplicated here."""
        record = await self.store.insert(
            EDGES,
            {
                "user_id": edge_input.user_id,
                "source_id": edge_input.source_id,
                "target_id": edge_input.target_id,
                "edge_type": edge_input.edge_type.value,
                "custom_label": edge_input.custom_label,
                "weight": edge_input.weight,
                "summary": edge_input.summary,
                "metadata": edge_input.metadata,
            },
        )
        edge = Edge.from_record(record)
        logger.debug(
            "created_edge",
            edge_id=edge.id,
            edge_type=edge.edge_type.value,
            source_id=edge.source_id,
            target_id=edge.target_id,
        )
        return edge

    async def get_edge(self, edge_id: str) -> Edge | None:
        record = await self.store.get(EDGES, {"id": edge_id})
        return Edge.from_record(record) if record else None

    async def delete_edge(self, edge_id: str) -> None:
        await self.store.delete(EDGES, {"id": edge_id})

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    async def get_connections(
        self,
        node_id: str,
        depth: int = 1,
        direction: TraversalDirection | str = TraversalDirection.BOTH,
    ) -> list[Connection]:
        """Breadth-first expansion of a node's neighbourhood.

        Each hop fetches the edges incident to the current frontier, then
        batch-fetches the newly reached nodes. One round trip per hop, so
        depth is expected to stay small (1-2). Results are in discovery
        order, not sorted.
        """
        direction = parse_direction(direction)
        visited = {node_id}
        frontier = [node_id]
        results: list[Connection] = []

        for hop in range(1, depth + 1):
            if not frontier:
                break

            edges = await self._fetch_edges_for_nodes(frontier, direction)
            frontier_set = set(frontier)

            def neighbor_of(edge: Edge) -> str:
                if edge.source_id == node_id or edge.source_id in frontier_set:
                    return edge.target_id
                return edge.source_id

            next_frontier: list[str] = []
            for edge in edges:
                neighbor_id = neighbor_of(edge)
                if neighbor_id not in visited:
                    visited.add(neighbor_id)
                    next_frontier.append(neighbor_id)

            neighbors = await self._fetch_nodes_by_ids(next_frontier)
            node_map = {n.id: n for n in neighbors}

            for edge in edges:
                node = node_map.get(neighbor_of(edge))
                if node:
                    results.append(Connection(edge=edge, node=node, depth=hop))

            frontier = next_frontier

        logger.debug(
            "traversed_connections",
            node_id=node_id,
            depth=depth,
            direction=direction.value,
            connections=len(results),
        )
        return results

    async def _fetch_edges_for_nodes(
        self,
        node_ids: list[str],
        direction: TraversalDirection,
    ) -> list[Edge]:
        queries = []
        if direction in (TraversalDirection.OUTGOING, TraversalDirection.BOTH):
            queries.append(self.store.scan(EDGES, {"source_id": AnyOf.of(node_ids)}))
        if direction in (TraversalDirection.INCOMING, TraversalDirection.BOTH):
            queries.append(self.store.scan(EDGES, {"target_id": AnyOf.of(node_ids)}))

        batches = await asyncio.gather(*queries)
        return _dedupe_edges([Edge.from_record(r) for batch in batches for r in batch])

    async def _fetch_nodes_by_ids(self, node_ids: list[str]) -> list[Node]:
        if not node_ids:
            return []
        records = await self.store.scan(NODES, {"id": AnyOf.of(node_ids)})
        return [Node.from_record(r) for r in records]

    async def get_node_with_edges(self, node_id: str) -> NodeWithEdges | None:
        """Fetch a node, its direct edges and a projection of each neighbour."""
        node = await self.get_node(node_id)
        if node is None:
            return None

        outgoing, incoming = await asyncio.gather(
            self.store.scan(EDGES, {"source_id": node_id}),
            self.store.scan(EDGES, {"target_id": node_id}),
        )
        edges = _dedupe_edges([Edge.from_record(r) for r in [*outgoing, *incoming]])

        connected_ids: list[str] = []
        for edge in edges:
            for endpoint in (edge.source_id, edge.target_id):
                if endpoint != node_id and endpoint not in connected_ids:
                    connected_ids.append(endpoint)

        connected_nodes: list[ConnectedNode] = []
        if connected_ids:
            records = await self.store.scan(
                NODES,
                {"id": AnyOf.of(connected_ids)},
                columns=CONNECTED_NODE_COLUMNS,
            )
            connected_nodes = [ConnectedNode.from_record(r) for r in records]

        return NodeWithEdges(node=node, edges=edges, connected_nodes=connected_nodes)
