"""MOS - personal knowledge graph with hybrid search and practice-session sync."""

__version__ = "0.1.0"
