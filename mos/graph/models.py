"""Graph records - nodes, edges and the shapes returned by traversal."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ValidationError


class NodeType(Enum):
    """Closed set of node kinds."""

    CONCEPT = "concept"
    PATTERN = "pattern"
    DOMAIN = "domain"
    PERSON = "person"
    ORG = "org"
    PROJECT = "project"
    NOTE = "note"
    ARTIFACT = "artifact"


class EdgeType(Enum):
    """Closed set of edge kinds. CUSTOM edges carry a custom_label."""

    RELATED_TO = "related_to"
    USED_IN = "used_in"
    PRACTICED_AT = "practiced_at"
    KNOWS = "knows"
    PREPARED_FOR = "prepared_for"
    WORKS_AT = "works_at"
    AUTHORED = "authored"
    READ = "read"
    CONNECTED_TO = "connected_to"
    DEPENDS_ON = "depends_on"
    PART_OF = "part_of"
    CUSTOM = "custom"


class TraversalDirection(Enum):
    """Which incident edges a traversal follows."""

    OUTGOING = "outgoing"  # frontier node is the source
    INCOMING = "incoming"  # frontier node is the target
    BOTH = "both"


def parse_node_type(value: "NodeType | str") -> NodeType:
    """Coerce a raw value to NodeType, raising ValidationError if unknown."""
    if isinstance(value, NodeType):
        return value
    try:
        return NodeType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown node type: {value!r}") from e


def parse_edge_type(value: "EdgeType | str") -> EdgeType:
    """Coerce a raw value to EdgeType, raising ValidationError if unknown."""
    if isinstance(value, EdgeType):
        return value
    try:
        return EdgeType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown edge type: {value!r}") from e


def parse_direction(value: "TraversalDirection | str") -> TraversalDirection:
    """Coerce a raw value to TraversalDirection, raising ValidationError if unknown."""
    if isinstance(value, TraversalDirection):
        return value
    try:
        return TraversalDirection(value)
    except ValueError as e:
        raise ValidationError(f"Unknown traversal direction: {value!r}") from e


def validate_edge_fields(
    source_id: str,
    target_id: str,
    edge_type: EdgeType,
    custom_label: str | None,
) -> None:
    """Enforce the no-self-edge and custom-label invariants."""
    if source_id == target_id:
        raise ValidationError(f"Self-edges are not allowed (node {source_id})")
    if edge_type is EdgeType.CUSTOM:
        if not custom_label:
            raise ValidationError("custom edges require a non-empty custom_label")
    elif custom_label is not None:
        raise ValidationError(
            f"custom_label is only allowed on custom edges, got {edge_type.value}"
        )


@dataclass
class Node:
    """A node in a user's knowledge graph. (user_id, slug) is unique."""

    id: str
    user_id: str
    type: NodeType
    slug: str
    title: str
    content: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self):
        self.type = parse_node_type(self.type)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Node":
        return cls(
            id=str(record["id"]),
            user_id=str(record["user_id"]),
            type=record["type"],
            slug=record["slug"],
            title=record["title"],
            content=record.get("content"),
            summary=record.get("summary"),
            metadata=dict(record.get("metadata") or {}),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "slug": self.slug,
            "title": self.title,
            "content": self.content,
            "summary": self.summary,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class Edge:
    """A directed, immutable edge between two nodes of the same user."""

    id: str
    user_id: str
    source_id: str
    target_id: str
    edge_type: EdgeType
    custom_label: str | None = None
    weight: float = 1.0
    summary: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    def __post_init__(self):
        self.edge_type = parse_edge_type(self.edge_type)

    @property
    def label(self) -> str:
        """Display label: the edge type, or the custom label for custom edges."""
        if self.edge_type is EdgeType.CUSTOM:
            return self.custom_label if self.custom_label is not None else "custom"
        return self.edge_type.value

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Edge":
        return cls(
            id=str(record["id"]),
            user_id=str(record["user_id"]),
            source_id=str(record["source_id"]),
            target_id=str(record["target_id"]),
            edge_type=record["edge_type"],
            custom_label=record.get("custom_label"),
            weight=float(record.get("weight", 1.0)),
            summary=record.get("summary"),
            metadata=dict(record.get("metadata") or {}),
            created_at=record.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "edge_type": self.edge_type.value,
            "custom_label": self.custom_label,
            "weight": self.weight,
            "summary": self.summary,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class ConnectedNode:
    """Projection of a neighbour used in the node detail view."""

    id: str
    title: str
    type: NodeType
    slug: str

    def __post_init__(self):
        self.type = parse_node_type(self.type)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ConnectedNode":
        return cls(
            id=str(record["id"]),
            title=record["title"],
            type=record["type"],
            slug=record["slug"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "type": self.type.value, "slug": self.slug}


@dataclass
class NodeWithEdges:
    """A node, its direct edges and the projections of its neighbours."""

    node: Node
    edges: list[Edge]
    connected_nodes: list[ConnectedNode]

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node.to_dict(),
            "edges": [e.to_dict() for e in self.edges],
            "connected_nodes": [n.to_dict() for n in self.connected_nodes],
        }


@dataclass
class Connection:
    """One traversal hit: the edge followed and the node it reached."""

    edge: Edge
    node: Node
    depth: int

    def to_dict(self) -> dict[str, Any]:
        return {"edge": self.edge.to_dict(), "node": self.node.to_dict(), "depth": self.depth}
