"""Abstract base class for embedding providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ragidx.types import Vector

if TYPE_CHECKING:
    from ragidx.types import Chunk

__all__ = ["BaseEmbedder"]

logger = logging.getLogger(__name__)


class BaseEmbedder(ABC):
    """Base class for all embedding providers.

    Subclasses implement ``embed_texts`` and ``embed_query``; vectors for
    chunks are derived from ``embed_texts`` in input order.
    """

    model: str = ""

    def __init__(self) -> None:
        self._tokens_used = 0

    @property
    def tokens_used(self) -> int:
        """Tokens reported by the provider since construction (0 if unreported)."""
        return self._tokens_used

    @abstractmethod
    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a list of texts.

        Raises:
            EmbeddingError: If embedding generation fails.
        """

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Generate an embedding for a search query.

        Raises:
            EmbeddingError: If embedding generation fails.
        """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimensionality of the embedding vectors."""

    def embed_chunks(self, chunks: list[Chunk]) -> list[Vector]:
        """Generate one ``Vector`` per chunk, in input order.

        Raises:
            EmbeddingError: If embedding generation fails.
        """
        if not chunks:
            return []
        embeddings = self.embed_texts([c.content.text for c in chunks])
        return [
            Vector(chunk_id=c.chunk_id, embedding=tuple(vec), model=self.model)
            for c, vec in zip(chunks, embeddings, strict=True)
        ]
