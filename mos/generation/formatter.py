"""Context formatter - renders graph records as plain text for LLM prompts."""

from ..graph.models import Node, NodeWithEdges


def format_weight(weight: float) -> str:
    """Shortest form of a weight: 1.0 -> "1", 0.8 -> "0.8"."""
    if float(weight).is_integer():
        return str(int(weight))
    return repr(float(weight))


def format_node_for_prompt(node: Node) -> str:
    parts = [f"# {node.title} ({node.type.value})"]
    if node.summary:
        parts.append(f"Summary: {node.summary}")
    if node.content:
        parts.append(node.content)
    return "\n".join(parts)


def format_node_with_edges_for_prompt(nwe: NodeWithEdges) -> str:
    """Render a node followed by one line per edge.

    Each edge line shows the arrow relative to this node (-> when it is
    the source), the label and weight, then the other endpoint's title and
    type, or its raw id when the endpoint was not loaded.
    """
    lines = [format_node_for_prompt(nwe.node)]

    if nwe.edges:
        lines.append("\n## Connections:")
        node_map = {n.id: n for n in nwe.connected_nodes}

        for edge in nwe.edges:
            outgoing = edge.source_id == nwe.node.id
            other_id = edge.target_id if outgoing else edge.source_id
            other = node_map.get(other_id)
            direction = "->" if outgoing else "<-"
            other_title = f"{other.title} ({other.type.value})" if other else other_id
            lines.append(
                f"  {direction} [{edge.label}, weight={format_weight(edge.weight)}] {other_title}"
            )

    return "\n".join(lines)
