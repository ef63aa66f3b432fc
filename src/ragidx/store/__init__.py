"""Chunk + vector store backed by ChromaDB persistent storage."""

from ragidx.store.base import BaseStore
from ragidx.store.chroma import ChromaStore

__all__ = ["BaseStore", "ChromaStore"]
