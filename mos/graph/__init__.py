"""Graph module - knowledge graph records, engine and practice suggestions."""

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
)
from .slug import node_slug, slugify
from .engine import CreateEdgeInput, CreateNodeInput, GraphEngine
from .suggestions import PracticeSuggester, PracticeSuggestion, rank_practice_suggestions

__all__ = [
    "ConnectedNode",
    "Connection",
    "CreateEdgeInput",
    "CreateNodeInput",
    "Edge",
    "EdgeType",
    "GraphEngine",
    "Node",
    "NodeType",
    "NodeWithEdges",
    "PracticeSuggester",
    "PracticeSuggestion",
    "TraversalDirection",
    "node_slug",
    "parse_direction",
    "rank_practice_suggestions",
    "slugify",
]
