"""Node Summarizer - LLM summaries, topic recall and crib sheets over the graph."""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from ..errors import NotFoundError
from ..graph import GraphEngine, NodeWithEdges, TraversalDirection
from ..retrieval import HybridSearchEngine
from .completion import complete as default_complete
from .formatter import format_node_for_prompt, format_node_with_edges_for_prompt

logger = structlog.get_logger()

CompleteFn = Callable[[str, str], Awaitable[str]]

RECALL_LIMIT = 15
CRIB_NEIGHBOR_LIMIT = 10

SUMMARY_SYSTEM_PROMPT = " ".join(
    [
        "You are a knowledge-graph summarizer for a personal memory system.",
        "Given a node and its connections, produce a concise 2-4 sentence summary.",
        "Focus on what this node represents, how it relates to connected nodes,",
        "and why it matters in the user's knowledge graph.",
    ]
)

RECALL_SYSTEM_PROMPT = " ".join(
    [
        "You are a personal knowledge assistant. The user wants to know what they",
        "have recorded about a specific topic. Given the relevant nodes from their",
        "knowledge graph, synthesize a clear, structured summary of everything",
        "they know. Use headings, bullet points, and highlight key relationships.",
        "If the data is sparse, acknowledge what is known and suggest what might",
        "be worth adding.",
    ]
)

CRIB_SYSTEM_PROMPT = """You are a personal knowledge assistant creating a preparation document ("crib sheet").
Given a central node and its connected graph neighborhood, produce a structured
document with these sections:

## Overview
Brief description of the central topic.

## Key Concepts
Bullet points of important related concepts and their relationships.

## Key Connections
How different nodes relate to each other and the central topic.

## Quick Reference
Key facts, definitions, or data points worth remembering.

## Gaps & Questions
What seems to be missing or underexplored based on the graph.

Be concise but thorough. Use markdown formatting."""


class NodeSummarizer:
    """Builds prompts from the graph and sends them to the chat model.

    Chat failures are not caught: there is no useful fallback for a
    missing answer.
    """

    def __init__(
        self,
        engine: GraphEngine,
        search: HybridSearchEngine,
        complete: CompleteFn = default_complete,
    ):
        self.engine = engine
        self.search = search
        self.complete = complete

    async def summarize_node(self, node_with_edges: NodeWithEdges) -> str:
        """2-4 sentence summary of a node in the context of its edges."""
        user_prompt = format_node_with_edges_for_prompt(node_with_edges)
        summary = await self.complete(SUMMARY_SYSTEM_PROMPT, user_prompt)
        logger.info("summarized_node", node_id=node_with_edges.node.id)
        return summary

    async def what_do_i_know(self, user_id: str, topic: str) -> str:
        """Answer "what do I know about <topic>?" from the user's own nodes."""
        results = await self.search.hybrid_search(topic, user_id, limit=RECALL_LIMIT)
        if not results:
            return f'You don\'t have any nodes related to "{topic}" yet.'

        user_prompt = "\n".join(
            [
                f"Topic: {topic}",
                "",
                f"Found {len(results)} related nodes:",
                "",
                *(format_node_for_prompt(r.node) for r in results),
            ]
        )
        answer = await self.complete(RECALL_SYSTEM_PROMPT, user_prompt)
        logger.info("answered_topic", user_id=user_id, topic=topic[:50], nodes=len(results))
        return answer

    async def generate_crib_sheet(self, user_id: str, node_id: str) -> str:
        """Preparation document for a node and its 2-hop neighbourhood.

        Raises:
            NotFoundError: if the central node does not exist
        """
        root = await self.engine.get_node_with_edges(node_id)
        if root is None:
            raise NotFoundError(f"Node {node_id} not found.")

        connections = await self.engine.get_connections(
            node_id, depth=2, direction=TraversalDirection.BOTH
        )
        direct_ids = [c.node.id for c in connections if c.depth == 1]
        neighbor_details = await asyncio.gather(
            *(self.engine.get_node_with_edges(nid) for nid in direct_ids[:CRIB_NEIGHBOR_LIMIT])
        )

        sections = [
            "# Central Node",
            format_node_with_edges_for_prompt(root),
            "",
            "# Direct Neighbors (detail)",
        ]
        for detail in neighbor_details:
            if detail:
                sections.append(format_node_with_edges_for_prompt(detail))
                sections.append("")

        extended = [c for c in connections if c.depth == 2]
        if extended:
            sections.append("# Extended Network (2 hops)")
            for conn in extended:
                sections.append(
                    f"- {conn.node.title} ({conn.node.type.value}) via [{conn.edge.edge_type.value}]"
                )

        sheet = await self.complete(CRIB_SYSTEM_PROMPT, "\n".join(sections))
        logger.info(
            "generated_crib_sheet",
            user_id=user_id,
            node_id=node_id,
            direct=len(direct_ids),
            extended=len(extended),
        )
        return sheet
