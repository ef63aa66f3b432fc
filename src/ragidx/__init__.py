"""ragidx: local-first RAG index builder with hybrid search."""

__version__ = "0.1.0"
