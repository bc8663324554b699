from .hybrid_search import (
    KEYWORD_WEIGHT,
    VECTOR_MATCH_THRESHOLD,
    VECTOR_WEIGHT,
    HybridSearchEngine,
    SearchResult,
    SearchSource,
    merge_results,
)

__all__ = [
    "KEYWORD_WEIGHT",
    "VECTOR_MATCH_THRESHOLD",
    "VECTOR_WEIGHT",
    "HybridSearchEngine",
    "SearchResult",
    "SearchSource",
    "merge_results",
]
