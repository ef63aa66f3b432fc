"""Content-addressed chunker with pluggable boundary strategies.

Turns raw document text into ``Chunk`` records:
- Normalizes the text (line endings, tabs, NFC) and hashes it into a doc id
- Dispatches on ``ChunkStrategy`` to a span-producing handler
- Derives UTF-8 byte offsets, chunk ids and parent links in one forward pass
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ragidx.chunk.base import BaseChunker
from ragidx.chunk.hierarchical import HeadingSection, hierarchical_sections
from ragidx.chunk.strategies import (
    apply_overlap,
    by_heading_spans,
    by_page_spans,
    by_paragraph_spans,
    by_sentence_spans,
    fixed_chars_spans,
    recursive_spans,
)
from ragidx.config import validate_chunk_config
from ragidx.exceptions import ChunkError, ConfigError, InputError
from ragidx.hashing import (
    approx_tokens,
    config_hash,
    make_chunk_id,
    make_doc_id,
    normalize_text,
    sha256_hex,
)
from ragidx.types import (
    Chunk,
    ChunkContent,
    ChunkPosition,
    ChunkSource,
    ChunkStrategy,
    ErrorCode,
    ErrorRecord,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from ragidx.chunk.strategies import Span
    from ragidx.config import ChunkConfig
    from ragidx.types import SourceDocument

__all__ = ["ChunkBatchResult", "ChunkStats", "Chunker"]

logger = logging.getLogger(__name__)

# Chunks within this many characters of max_chars count as "at max"
AT_MAX_MARGIN = 10


def _flat(spans: list[Span]) -> list[HeadingSection]:
    return [HeadingSection(start=s, end=e, level=0) for s, e in spans]


def _recursive(text: str, config: ChunkConfig) -> list[HeadingSection]:
    return _flat(apply_overlap(recursive_spans(text, config), config.overlap_chars))


def _by_paragraph(text: str, config: ChunkConfig) -> list[HeadingSection]:
    return _flat(by_paragraph_spans(text, config))


def _by_heading(text: str, config: ChunkConfig) -> list[HeadingSection]:
    return _flat(by_heading_spans(text, config))


def _fixed_chars(text: str, config: ChunkConfig) -> list[HeadingSection]:
    return _flat(fixed_chars_spans(text, config))


def _by_sentence(text: str, config: ChunkConfig) -> list[HeadingSection]:
    return _flat(by_sentence_spans(text, config))


def _by_page(text: str, config: ChunkConfig) -> list[HeadingSection]:
    return _flat(by_page_spans(text, config))


_HANDLERS: dict[ChunkStrategy, Callable[[str, ChunkConfig], list[HeadingSection]]] = {
    ChunkStrategy.RECURSIVE: _recursive,
    ChunkStrategy.BY_PARAGRAPH: _by_paragraph,
    ChunkStrategy.BY_HEADING: _by_heading,
    ChunkStrategy.FIXED_CHARS: _fixed_chars,
    ChunkStrategy.BY_SENTENCE: _by_sentence,
    ChunkStrategy.BY_PAGE: _by_page,
    ChunkStrategy.HIERARCHICAL: hierarchical_sections,
}

_missing = set(ChunkStrategy) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"No chunking handler for strategies: {sorted(s.value for s in _missing)}")


@dataclass
class ChunkStats:
    """Summary statistics for a chunking batch."""

    documents_processed: int = 0
    chunks_created: int = 0
    chunks_below_min: int = 0
    chunks_at_max: int = 0
    avg_chunk_chars: float = 0.0
    total_chars: int = 0


@dataclass
class ChunkBatchResult:
    """Chunks from a batch of documents plus stats, fingerprint and per-document errors."""

    chunks: list[Chunk] = field(default_factory=list)
    stats: ChunkStats = field(default_factory=ChunkStats)
    config_hash: str = ""
    errors: list[ErrorRecord] = field(default_factory=list)


def _byte_offsets(text: str) -> list[int]:
    """Cumulative UTF-8 byte offset of every character boundary."""
    return list(
        itertools.accumulate(
            (len(ch.encode("utf-8", "surrogatepass")) for ch in text),
            initial=0,
        )
    )


class Chunker(BaseChunker):
    """Chunker dispatching on ``ChunkStrategy``.

    Usage::

        chunker = Chunker()
        chunks = chunker.chunk(text, config.chunk)
        batch = chunker.chunk_documents(documents, config.chunk)
    """

    def chunk(
        self,
        text: str,
        config: ChunkConfig,
        *,
        strategy: ChunkStrategy | str | None = None,
        source: ChunkSource | None = None,
        metadata: tuple[tuple[str, str], ...] = (),
    ) -> list[Chunk]:
        """Split one document into content-addressed chunks.

        Empty and whitespace-only documents produce no chunks.

        Raises:
            ConfigError: If the parameters are out of range.
            InputError: If ``text`` is not a string.
            ChunkError: If chunking fails.
        """
        validate_chunk_config(config)
        if not isinstance(text, str):
            raise InputError(f"Document text must be str, got {type(text).__name__}")

        try:
            resolved = ChunkStrategy(strategy or config.strategy)
        except ValueError as e:
            raise ConfigError(f"Unknown chunking strategy: {strategy!r}") from e

        normalized = normalize_text(text)
        if not normalized.strip():
            return []

        try:
            sections = _HANDLERS[resolved](normalized, config)
            chunks = self._build_chunks(normalized, sections, config, source, metadata)
        except ChunkError:
            raise
        except Exception as e:
            raise ChunkError(f"Chunking failed ({resolved.value}): {e}") from e

        logger.debug(
            "Chunked document %s into %d chunks (%s)",
            chunks[0].doc_id[:12] if chunks else "-",
            len(chunks),
            resolved.value,
        )
        return chunks

    @staticmethod
    def _build_chunks(
        text: str,
        sections: list[HeadingSection],
        config: ChunkConfig,
        source: ChunkSource | None,
        metadata: tuple[tuple[str, str], ...],
    ) -> list[Chunk]:
        doc_id = make_doc_id(text)
        offsets = _byte_offsets(text)
        chunk_source = source or ChunkSource(content_hash=doc_id)

        chunks: list[Chunk] = []
        # Section index -> final chunk id; parents always precede children
        real_ids: list[str] = []
        for index, section in enumerate(sections):
            body = text[section.start : section.end]
            byte_start = offsets[section.start]
            byte_end = offsets[section.end]
            chunk_id = make_chunk_id(doc_id, byte_start, byte_end)

            parent_id: str | None = None
            parent_context: str | None = None
            if section.parent is not None:
                if section.parent >= index:
                    raise ChunkError(f"Forward parent reference in section {index}")
                parent_id = real_ids[section.parent]
                if config.parent_context_chars > 0:
                    parent = sections[section.parent]
                    parent_context = text[parent.start : parent.end][: config.parent_context_chars]

            real_ids.append(chunk_id)
            chunks.append(
                Chunk(
                    chunk_id=chunk_id,
                    doc_id=doc_id,
                    chunk_index=index,
                    hierarchy_level=section.level,
                    parent_id=parent_id,
                    parent_context=parent_context,
                    content=ChunkContent(
                        text=body,
                        text_hash=sha256_hex(body),
                        char_count=len(body),
                        token_count_approx=approx_tokens(body),
                    ),
                    position=ChunkPosition(byte_start=byte_start, byte_end=byte_end),
                    source=chunk_source,
                    metadata=metadata,
                )
            )
        return chunks

    def chunk_documents(
        self,
        documents: Iterable[SourceDocument],
        config: ChunkConfig,
    ) -> ChunkBatchResult:
        """Chunk a batch of documents.

        Per-document failures are collected in ``errors``; the batch
        continues. Out-of-range parameters are rejected before any document
        is touched.

        Raises:
            ConfigError: If the parameters are out of range.
        """
        validate_chunk_config(config)
        result = ChunkBatchResult(config_hash=config_hash(config.fingerprint_params()))
        stats = result.stats

        for doc in documents:
            source = ChunkSource(
                source_id=doc.source_id,
                source_type=doc.source_type,
                content_hash=doc.content_hash,
                retrieved_at=doc.retrieved_at,
            )
            try:
                chunks = self.chunk(doc.text, config, source=source, metadata=doc.metadata)
            except InputError as e:
                logger.warning("Skipping %s: %s", doc.source_id, e)
                result.errors.append(ErrorRecord(ErrorCode.INPUT_ERROR, str(e), doc.source_id))
                continue
            except ChunkError as e:
                logger.error("Chunking failed for %s: %s", doc.source_id, e)
                result.errors.append(ErrorRecord(ErrorCode.CHUNK_ERROR, str(e), doc.source_id))
                continue

            stats.documents_processed += 1
            for chunk in chunks:
                stats.chunks_created += 1
                stats.total_chars += chunk.content.char_count
                if chunk.content.char_count < config.min_chars:
                    stats.chunks_below_min += 1
                if chunk.content.char_count >= config.max_chars - AT_MAX_MARGIN:
                    stats.chunks_at_max += 1
            result.chunks.extend(chunks)

        if stats.chunks_created:
            stats.avg_chunk_chars = round(stats.total_chars / stats.chunks_created, 1)

        logger.info(
            "Chunked %d documents into %d chunks (%d errors)",
            stats.documents_processed,
            stats.chunks_created,
            len(result.errors),
        )
        return result
