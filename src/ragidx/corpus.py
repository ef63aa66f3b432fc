"""Immutable in-memory snapshot of one run's chunks and vectors.

Ranking and hydration read from a ``Corpus`` and never mutate it, so a
single snapshot can be shared by any number of queries.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from ragidx.types import Chunk, Vector

__all__ = ["Corpus"]

logger = logging.getLogger(__name__)


class Corpus:
    """Arena of chunks indexed by id, with optional vectors.

    Usage::

        corpus = Corpus(chunks, vectors)
        corpus.get(chunk_id)
        corpus.document(doc_id)  # ordered by chunk_index
    """

    def __init__(self, chunks: Iterable[Chunk], vectors: Iterable[Vector] = ()) -> None:
        ordered: list[Chunk] = []
        by_id: dict[str, Chunk] = {}
        for chunk in chunks:
            if chunk.chunk_id in by_id:
                logger.debug("Duplicate chunk id %s ignored in corpus", chunk.chunk_id)
                continue
            by_id[chunk.chunk_id] = chunk
            ordered.append(chunk)

        by_doc: dict[str, list[Chunk]] = {}
        for chunk in ordered:
            by_doc.setdefault(chunk.doc_id, []).append(chunk)

        self._chunks = tuple(ordered)
        self._by_id = by_id
        self._order = {c.chunk_id: i for i, c in enumerate(ordered)}
        self._by_doc = {
            doc_id: tuple(sorted(doc_chunks, key=lambda c: c.chunk_index))
            for doc_id, doc_chunks in by_doc.items()
        }
        self._vectors = {v.chunk_id: v.embedding for v in vectors if v.chunk_id in by_id}

    def __len__(self) -> int:
        return len(self._chunks)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self._chunks)

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self._by_id

    @property
    def chunks(self) -> tuple[Chunk, ...]:
        return self._chunks

    @property
    def has_vectors(self) -> bool:
        return bool(self._vectors)

    def get(self, chunk_id: str) -> Chunk | None:
        return self._by_id.get(chunk_id)

    def vector(self, chunk_id: str) -> tuple[float, ...] | None:
        return self._vectors.get(chunk_id)

    def document(self, doc_id: str) -> tuple[Chunk, ...]:
        """All chunks of one document in ``chunk_index`` order."""
        return self._by_doc.get(doc_id, ())

    def position(self, chunk_id: str) -> int:
        """Insertion order of a chunk, used as the final ranking tie-break."""
        return self._order.get(chunk_id, len(self._chunks))

    def doc_ids(self) -> list[str]:
        return list(self._by_doc)
