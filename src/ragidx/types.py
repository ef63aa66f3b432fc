"""Data contracts for ragidx.

Frozen dataclasses shared by every stage:
  SourceDocument → list[Chunk] → DedupeResult → list[Vector] → stored
  query → list[RankedResult] → list[HydratedResult]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "Chunk",
    "ChunkContent",
    "ChunkPosition",
    "ChunkSource",
    "ChunkStrategy",
    "DedupeMethod",
    "DedupeScope",
    "DuplicateGroup",
    "ErrorCode",
    "ErrorRecord",
    "FusionKind",
    "HydrateStrategy",
    "HydratedContext",
    "HydratedResult",
    "RankedResult",
    "SearchMode",
    "SourceDocument",
    "Vector",
]


class ChunkStrategy(str, Enum):
    """Closed set of chunking strategies."""

    RECURSIVE = "recursive"
    BY_PARAGRAPH = "by_paragraph"
    BY_HEADING = "by_heading"
    FIXED_CHARS = "fixed_chars"
    BY_SENTENCE = "by_sentence"
    BY_PAGE = "by_page"
    HIERARCHICAL = "hierarchical"


class DedupeMethod(str, Enum):
    EXACT = "exact"
    NEAR = "near"


class DedupeScope(str, Enum):
    GLOBAL = "global"
    PER_DOCUMENT = "per_document"


class SearchMode(str, Enum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class FusionKind(str, Enum):
    RRF = "rrf"
    ADAPTIVE = "adaptive"


class HydrateStrategy(str, Enum):
    ADJACENT = "adjacent"
    PARENT = "parent"
    BOTH = "both"


class ErrorCode(str, Enum):
    """Codes carried by ``ErrorRecord`` in partial results."""

    INPUT_ERROR = "input_error"
    CHUNK_ERROR = "chunk_error"
    EMBEDDING_ERROR = "embedding_error"
    STORE_ERROR = "store_error"
    DEGRADED_RETRIEVAL = "degraded_retrieval"
    INTEGRITY_ANOMALY = "integrity_anomaly"


@dataclass(frozen=True)
class ErrorRecord:
    """A non-fatal error or warning returned alongside partial results."""

    code: ErrorCode
    message: str
    source: str = ""
    recoverable: bool = True


@dataclass(frozen=True)
class ChunkSource:
    """Provenance of the document a chunk was cut from. Passed through untouched."""

    source_id: str = ""
    source_type: str = ""
    content_hash: str = ""
    retrieved_at: str = ""


@dataclass(frozen=True)
class ChunkContent:
    text: str
    text_hash: str
    char_count: int
    token_count_approx: int


@dataclass(frozen=True)
class ChunkPosition:
    """UTF-8 byte range ``[byte_start, byte_end)`` in the normalized document."""

    byte_start: int
    byte_end: int


@dataclass(frozen=True)
class Chunk:
    """A contiguous, content-addressed unit of document text."""

    chunk_id: str
    doc_id: str
    chunk_index: int
    content: ChunkContent
    position: ChunkPosition
    hierarchy_level: int = 0
    parent_id: str | None = None
    parent_context: str | None = None
    source: ChunkSource = field(default_factory=ChunkSource)
    metadata: tuple[tuple[str, str], ...] = ()

    @property
    def text(self) -> str:
        return self.content.text

    @property
    def metadata_dict(self) -> dict[str, str]:
        return dict(self.metadata)


@dataclass(frozen=True)
class SourceDocument:
    """Normalized-or-raw text handed to the chunker, plus provenance."""

    source_id: str
    text: str
    source_type: str = "file"
    content_hash: str = ""
    retrieved_at: str = ""
    metadata: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Vector:
    """An embedding attached to a surviving chunk."""

    chunk_id: str
    embedding: tuple[float, ...] = field(default_factory=tuple)
    model: str = ""


@dataclass(frozen=True)
class DuplicateGroup:
    """One kept chunk and every chunk removed as its duplicate."""

    kept: str
    removed: tuple[str, ...]
    method: DedupeMethod


@dataclass(frozen=True)
class RankedResult:
    """A search hit as it crosses the serving boundary."""

    chunk_id: str
    score: float
    text: str
    source_id: str
    metadata: tuple[tuple[str, str], ...]
    chunk: Chunk


@dataclass(frozen=True)
class HydratedContext:
    parent: Chunk | None = None
    siblings_before: tuple[Chunk, ...] = ()
    siblings_after: tuple[Chunk, ...] = ()
    hierarchy_path: tuple[str, ...] | None = None

    @property
    def size(self) -> int:
        """Number of context chunks, parent included."""
        return len(self.siblings_before) + len(self.siblings_after) + (1 if self.parent else 0)


@dataclass(frozen=True)
class HydratedResult:
    chunk: Chunk
    context: HydratedContext = field(default_factory=HydratedContext)
    score: float | None = None
