"""ChromaDB store using PersistentClient.

Stores chunk text, vectors and flattened chunk fields as metadata.
Uses file-based persistence, no server required.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import chromadb

from ragidx.corpus import Corpus
from ragidx.exceptions import StoreError
from ragidx.store.base import BaseStore
from ragidx.types import Chunk, ChunkContent, ChunkPosition, ChunkSource, Vector

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

__all__ = ["ChromaStore"]

logger = logging.getLogger(__name__)

# Pass-through chunk metadata is stored under prefixed keys
_META_PREFIX = "meta_"


def _chunk_to_metadata(chunk: Chunk, model: str) -> dict[str, str | int]:
    meta: dict[str, str | int] = {
        "doc_id": chunk.doc_id,
        "chunk_index": chunk.chunk_index,
        "hierarchy_level": chunk.hierarchy_level,
        "parent_id": chunk.parent_id or "",
        "parent_context": chunk.parent_context or "",
        "text_hash": chunk.content.text_hash,
        "char_count": chunk.content.char_count,
        "token_count_approx": chunk.content.token_count_approx,
        "byte_start": chunk.position.byte_start,
        "byte_end": chunk.position.byte_end,
        "source_id": chunk.source.source_id,
        "source_type": chunk.source.source_type,
        "content_hash": chunk.source.content_hash,
        "retrieved_at": chunk.source.retrieved_at,
        "model": model,
    }
    for key, value in chunk.metadata:
        meta[f"{_META_PREFIX}{key}"] = value
    return meta


def _int(meta: Mapping[str, object], key: str) -> int:
    value = meta.get(key, 0)
    return int(value) if value is not None else 0  # type: ignore[call-overload]


class ChromaStore(BaseStore):
    """Store backed by ChromaDB with file-based persistence.

    Uses ``chromadb.PersistentClient`` so no external server is needed.
    All data lives in the ``persist_path`` directory. Vectors are always
    supplied by the caller; the collection has no embedding function.

    Usage::

        store = ChromaStore(persist_path=project_root / ".ragidx" / "index")
        store.add(chunks, vectors)
        corpus = store.load_corpus()
    """

    def __init__(self, persist_path: Path, collection_name: str = "ragidx") -> None:
        self._persist_path = persist_path
        self._collection_name = collection_name

        try:
            self._client = chromadb.PersistentClient(path=str(persist_path))
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                embedding_function=None,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as e:
            raise StoreError(f"Failed to initialize ChromaDB at {persist_path}: {e}") from e

        logger.info(
            "ChromaDB store initialized at %s (collection=%s)", persist_path, collection_name
        )

    def add(self, chunks: list[Chunk], vectors: list[Vector]) -> int:
        if not chunks:
            return 0

        by_id = {v.chunk_id: v for v in vectors}
        missing = [c.chunk_id for c in chunks if c.chunk_id not in by_id]
        if missing:
            raise StoreError(f"{len(missing)} chunks have no vector (first: {missing[0]})")

        try:
            self._collection.upsert(
                ids=[c.chunk_id for c in chunks],
                embeddings=[list(by_id[c.chunk_id].embedding) for c in chunks],  # type: ignore[arg-type]
                documents=[c.content.text for c in chunks],
                metadatas=[  # type: ignore[arg-type]
                    _chunk_to_metadata(c, by_id[c.chunk_id].model) for c in chunks
                ],
            )
        except Exception as e:
            raise StoreError(f"Failed to add {len(chunks)} chunks: {e}") from e

        logger.info("Stored %d chunks", len(chunks))
        return len(chunks)

    def get(self, chunk_ids: list[str]) -> list[Chunk]:
        if not chunk_ids:
            return []
        try:
            results = self._collection.get(ids=chunk_ids, include=["documents", "metadatas"])
        except Exception as e:
            raise StoreError(f"Failed to get chunks: {e}") from e
        chunks = self._chunks_from_results(results)
        order = {cid: i for i, cid in enumerate(chunk_ids)}
        return sorted(chunks, key=lambda c: order.get(c.chunk_id, len(order)))

    def get_document(self, doc_id: str) -> list[Chunk]:
        try:
            results = self._collection.get(
                where={"doc_id": doc_id},
                include=["documents", "metadatas"],
            )
        except Exception as e:
            raise StoreError(f"Failed to get chunks for {doc_id}: {e}") from e
        return sorted(self._chunks_from_results(results), key=lambda c: c.chunk_index)

    def delete(self, doc_id: str) -> int:
        try:
            existing = self._collection.get(where={"doc_id": doc_id}, include=[])
            count = len(existing["ids"])
            if count == 0:
                return 0
            self._collection.delete(where={"doc_id": doc_id})
        except Exception as e:
            raise StoreError(f"Failed to delete chunks for {doc_id}: {e}") from e

        logger.info("Deleted %d chunks for doc_id=%s", count, doc_id)
        return count

    def load_corpus(self) -> Corpus:
        try:
            results = self._collection.get(include=["documents", "metadatas", "embeddings"])
        except Exception as e:
            raise StoreError(f"Failed to load corpus: {e}") from e

        chunks = self._chunks_from_results(results)
        raw_embeddings = results.get("embeddings")
        vectors: list[Vector] = []
        if raw_embeddings is not None:
            metas = results.get("metadatas") or []
            for chunk_id, embedding, meta in zip(
                results.get("ids", []), raw_embeddings, metas, strict=True
            ):
                if embedding is None:
                    continue
                model = str(meta.get("model", "")) if meta else ""
                vectors.append(
                    Vector(
                        chunk_id=chunk_id,
                        embedding=tuple(float(x) for x in embedding),
                        model=model,
                    )
                )

        chunks.sort(key=lambda c: (c.source.source_id, c.doc_id, c.chunk_index))
        logger.info("Loaded corpus: %d chunks, %d vectors", len(chunks), len(vectors))
        return Corpus(chunks, vectors)

    def count(self) -> int:
        """Return the total number of chunks in the store."""
        try:
            return self._collection.count()
        except Exception as e:
            raise StoreError(f"Failed to count chunks: {e}") from e

    @classmethod
    def _chunks_from_results(cls, results: Mapping[str, object]) -> list[Chunk]:
        ids = results.get("ids") or []
        documents = results.get("documents") or []
        metadatas = results.get("metadatas") or []
        return [
            cls._chunk_from_record(chunk_id, doc or "", meta or {})  # type: ignore[arg-type]
            for chunk_id, doc, meta in zip(ids, documents, metadatas, strict=True)  # type: ignore[call-overload]
        ]

    @staticmethod
    def _chunk_from_record(chunk_id: str, text: str, meta: Mapping[str, object]) -> Chunk:
        """Reconstruct a Chunk from a ChromaDB document + metadata dict."""
        extra = tuple(
            (key[len(_META_PREFIX) :], str(value))
            for key, value in meta.items()
            if key.startswith(_META_PREFIX)
        )
        return Chunk(
            chunk_id=chunk_id,
            doc_id=str(meta.get("doc_id", "")),
            chunk_index=_int(meta, "chunk_index"),
            hierarchy_level=_int(meta, "hierarchy_level"),
            parent_id=str(meta.get("parent_id") or "") or None,
            parent_context=str(meta.get("parent_context") or "") or None,
            content=ChunkContent(
                text=text,
                text_hash=str(meta.get("text_hash", "")),
                char_count=_int(meta, "char_count"),
                token_count_approx=_int(meta, "token_count_approx"),
            ),
            position=ChunkPosition(
                byte_start=_int(meta, "byte_start"),
                byte_end=_int(meta, "byte_end"),
            ),
            source=ChunkSource(
                source_id=str(meta.get("source_id", "")),
                source_type=str(meta.get("source_type", "")),
                content_hash=str(meta.get("content_hash", "")),
                retrieved_at=str(meta.get("retrieved_at", "")),
            ),
            metadata=extra,
        )
