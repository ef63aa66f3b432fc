"""Abstract base class for chunk + vector stores."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ragidx.corpus import Corpus
    from ragidx.types import Chunk, Vector

__all__ = ["BaseStore"]

logger = logging.getLogger(__name__)


class BaseStore(ABC):
    """Base class for all stores.

    A store keeps chunks and their vectors keyed by ``chunk_id`` and can
    return one document's chunks in ``chunk_index`` order.
    """

    @abstractmethod
    def add(self, chunks: list[Chunk], vectors: list[Vector]) -> int:
        """Insert or replace chunks together with their vectors.

        Args:
            chunks: Chunks to store.
            vectors: One vector per chunk, matched by ``chunk_id``.

        Returns:
            Number of chunks written.

        Raises:
            StoreError: If storage fails or a chunk has no vector.
        """

    @abstractmethod
    def get(self, chunk_ids: list[str]) -> list[Chunk]:
        """Fetch chunks by id; unknown ids are skipped.

        Raises:
            StoreError: If the query fails.
        """

    @abstractmethod
    def get_document(self, doc_id: str) -> list[Chunk]:
        """All chunks of one document, ordered by ``chunk_index``.

        Raises:
            StoreError: If the query fails.
        """

    @abstractmethod
    def delete(self, doc_id: str) -> int:
        """Delete a document's chunks and, with them, their vectors.

        Returns:
            Number of chunks deleted.

        Raises:
            StoreError: If deletion fails.
        """

    @abstractmethod
    def load_corpus(self) -> Corpus:
        """Load every chunk and vector into an immutable snapshot.

        Raises:
            StoreError: If the read fails.
        """

    @abstractmethod
    def count(self) -> int:
        """Return the total number of chunks in the store."""
