"""JSON and JSON-lines serialization of chunk records.

Chunk exports are append-friendly line-delimited JSON: one chunk per line,
field names matching the dataclass attributes.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from ragidx.exceptions import InputError
from ragidx.types import Chunk, ChunkContent, ChunkPosition, ChunkSource

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path

__all__ = [
    "chunk_from_dict",
    "chunk_to_dict",
    "read_chunks_jsonl",
    "write_chunks_jsonl",
]

logger = logging.getLogger(__name__)


def chunk_to_dict(chunk: Chunk) -> dict[str, Any]:
    """Serialize a Chunk to a plain dict."""
    d: dict[str, Any] = {
        "chunk_id": chunk.chunk_id,
        "doc_id": chunk.doc_id,
        "chunk_index": chunk.chunk_index,
        "hierarchy_level": chunk.hierarchy_level,
        "content": {
            "text": chunk.content.text,
            "text_hash": chunk.content.text_hash,
            "char_count": chunk.content.char_count,
            "token_count_approx": chunk.content.token_count_approx,
        },
        "position": {
            "byte_start": chunk.position.byte_start,
            "byte_end": chunk.position.byte_end,
        },
        "source": {
            "source_id": chunk.source.source_id,
            "source_type": chunk.source.source_type,
            "content_hash": chunk.source.content_hash,
            "retrieved_at": chunk.source.retrieved_at,
        },
        "metadata": dict(chunk.metadata),
    }
    if chunk.parent_id is not None:
        d["parent_id"] = chunk.parent_id
    if chunk.parent_context is not None:
        d["parent_context"] = chunk.parent_context
    return d


def chunk_from_dict(data: Mapping[str, Any]) -> Chunk:
    """Deserialize a Chunk from a dict produced by :func:`chunk_to_dict`.

    Raises:
        InputError: If a required field is missing or malformed.
    """
    required = ("chunk_id", "doc_id", "chunk_index", "content", "position")
    missing = [k for k in required if k not in data]
    if missing:
        raise InputError(f"Chunk record missing required fields: {missing}")

    try:
        content = data["content"]
        position = data["position"]
        source = data.get("source") or {}
        metadata = data.get("metadata") or {}
        return Chunk(
            chunk_id=str(data["chunk_id"]),
            doc_id=str(data["doc_id"]),
            chunk_index=int(data["chunk_index"]),
            hierarchy_level=int(data.get("hierarchy_level", 0)),
            parent_id=data.get("parent_id"),
            parent_context=data.get("parent_context"),
            content=ChunkContent(
                text=str(content["text"]),
                text_hash=str(content["text_hash"]),
                char_count=int(content["char_count"]),
                token_count_approx=int(content["token_count_approx"]),
            ),
            position=ChunkPosition(
                byte_start=int(position["byte_start"]),
                byte_end=int(position["byte_end"]),
            ),
            source=ChunkSource(
                source_id=str(source.get("source_id", "")),
                source_type=str(source.get("source_type", "")),
                content_hash=str(source.get("content_hash", "")),
                retrieved_at=str(source.get("retrieved_at", "")),
            ),
            metadata=tuple((str(k), str(v)) for k, v in metadata.items()),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise InputError(f"Malformed chunk record {data.get('chunk_id', '?')}: {e}") from e


def write_chunks_jsonl(chunks: Iterable[Chunk], path: Path, *, append: bool = False) -> int:
    """Write chunks as JSON lines. Returns the number of records written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    try:
        with path.open("a" if append else "w", encoding="utf-8") as f:
            for chunk in chunks:
                f.write(json.dumps(chunk_to_dict(chunk), ensure_ascii=False) + "\n")
                count += 1
    except OSError as e:
        raise InputError(f"Failed to write chunks to {path}: {e}") from e
    logger.info("Wrote %d chunks to %s", count, path)
    return count


def read_chunks_jsonl(path: Path) -> list[Chunk]:
    """Read chunks from a JSON-lines file, skipping blank lines.

    Raises:
        InputError: If the file is missing or a line is not a valid chunk record.
    """
    if not path.exists():
        raise InputError(f"Chunk file not found: {path}")

    chunks: list[Chunk] = []
    try:
        with path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    raise InputError(f"{path}:{lineno}: invalid JSON: {e}") from e
                chunks.append(chunk_from_dict(data))
    except OSError as e:
        raise InputError(f"Failed to read chunks from {path}: {e}") from e

    logger.info("Read %d chunks from %s", len(chunks), path)
    return chunks
