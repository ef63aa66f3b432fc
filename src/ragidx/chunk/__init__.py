"""Chunking engine: strategy dispatch, span splitters and heading trees."""

from ragidx.chunk.base import BaseChunker
from ragidx.chunk.chunker import ChunkBatchResult, Chunker, ChunkStats

__all__ = ["BaseChunker", "ChunkBatchResult", "ChunkStats", "Chunker"]
