"""HTTP request layer for the knowledge graph."""
