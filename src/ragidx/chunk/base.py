"""Abstract base class for chunkers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ragidx.config import ChunkConfig
    from ragidx.types import Chunk, ChunkSource, ChunkStrategy

__all__ = ["BaseChunker"]

logger = logging.getLogger(__name__)


class BaseChunker(ABC):
    """Base class for all chunkers.

    Subclasses split one document's text into a list of ``Chunk`` objects.
    """

    @abstractmethod
    def chunk(
        self,
        text: str,
        config: ChunkConfig,
        *,
        strategy: ChunkStrategy | str | None = None,
        source: ChunkSource | None = None,
        metadata: tuple[tuple[str, str], ...] = (),
    ) -> list[Chunk]:
        """Split a document into chunks.

        Args:
            text: Raw document text; normalized before hashing and splitting.
            config: Chunking parameters.
            strategy: Overrides ``config.strategy`` when given.
            source: Provenance passed through to every chunk.
            metadata: Opaque key/value pairs passed through to every chunk.

        Returns:
            Chunks in document order.

        Raises:
            ConfigError: If the parameters are out of range.
            ChunkError: If chunking fails.
        """
