from .completion import CompletionResponse, call_llm, complete
from .formatter import format_node_for_prompt, format_node_with_edges_for_prompt, format_weight
from .summarizer import NodeSummarizer

__all__ = [
    "CompletionResponse",
    "NodeSummarizer",
    "call_llm",
    "complete",
    "format_node_for_prompt",
    "format_node_with_edges_for_prompt",
    "format_weight",
]
