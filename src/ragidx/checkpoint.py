"""Build checkpoint for ragidx.

Tracks completed sources, token spend and dedupe memory so an interrupted
or repeated build only processes sources that are new or have changed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ragidx.dedupe import DedupeState
from ragidx.exceptions import CheckpointError
from ragidx.types import ErrorCode, ErrorRecord

if TYPE_CHECKING:
    from pathlib import Path

__all__ = [
    "BuildCheckpoint",
    "BuildStats",
    "SourceEntry",
    "load_checkpoint",
    "make_source_entry",
    "save_checkpoint",
]

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"


@dataclass(frozen=True)
class SourceEntry:
    """Immutable record of a fully processed source."""

    source_id: str
    content_hash: str
    doc_id: str
    chunks: int = 0
    completed_at: str = ""
    # doc_ids owning chunks this source deduplicated against
    depends_on: tuple[str, ...] = ()


@dataclass
class BuildStats:
    """Cumulative counters across every build run."""

    sources_processed: int = 0
    chunks_created: int = 0
    duplicates_removed: int = 0
    vectors_stored: int = 0


@dataclass
class BuildCheckpoint:
    """Resumable state of a project build.

    Uses a dict internally for O(1) lookups by source ID.
    Serializes to/from a list in JSON for readability.
    """

    config_hash: str = ""
    schema_version: str = SCHEMA_VERSION
    tokens_used: int = 0
    estimated_cost_usd: float = 0.0
    stats: BuildStats = field(default_factory=BuildStats)
    dedupe_state: DedupeState = field(default_factory=DedupeState)
    errors: list[ErrorRecord] = field(default_factory=list)
    _sources: dict[str, SourceEntry] = field(default_factory=dict)

    @property
    def sources(self) -> list[SourceEntry]:
        return list(self._sources.values())

    def get_source(self, source_id: str) -> SourceEntry | None:
        return self._sources.get(source_id)

    def mark_complete(self, entry: SourceEntry) -> None:
        """Add or replace a completed source entry."""
        self._sources[entry.source_id] = entry

    def remove_source(self, source_id: str) -> bool:
        """Remove a source by ID. Returns True if found and removed."""
        if source_id in self._sources:
            del self._sources[source_id]
            return True
        return False

    def is_changed(self, source_id: str, content_hash: str) -> bool:
        """True if the source is new or its content hash differs."""
        existing = self.get_source(source_id)
        if existing is None:
            return True
        return existing.content_hash != content_hash

    def record_error(self, error: ErrorRecord) -> None:
        self.errors.append(error)

    def reset(self, config_hash: str) -> None:
        """Forget all progress; used when the chunking parameters change."""
        self.config_hash = config_hash
        self._sources.clear()
        self.dedupe_state = DedupeState()
        self.stats = BuildStats()
        self.errors.clear()


def make_source_entry(
    source_id: str,
    content_hash: str,
    doc_id: str,
    chunks: int,
    depends_on: tuple[str, ...] = (),
) -> SourceEntry:
    return SourceEntry(
        source_id=source_id,
        content_hash=content_hash,
        doc_id=doc_id,
        chunks=chunks,
        completed_at=datetime.now(UTC).isoformat(),
        depends_on=depends_on,
    )


def _error_to_dict(error: ErrorRecord) -> dict[str, object]:
    return {
        "code": error.code.value,
        "message": error.message,
        "source": error.source,
        "recoverable": error.recoverable,
    }


def _error_from_dict(data: dict[str, Any]) -> ErrorRecord:
    try:
        return ErrorRecord(
            code=ErrorCode(data["code"]),
            message=str(data.get("message", "")),
            source=str(data.get("source", "")),
            recoverable=bool(data.get("recoverable", True)),
        )
    except (KeyError, ValueError) as e:
        raise CheckpointError(f"Invalid error record in checkpoint: {e}") from e


def _entry_from_dict(data: dict[str, Any]) -> SourceEntry:
    required = ("source_id", "content_hash", "doc_id")
    missing = [k for k in required if k not in data]
    if missing:
        raise CheckpointError(f"Source entry missing required fields: {missing}")
    return SourceEntry(
        source_id=str(data["source_id"]),
        content_hash=str(data["content_hash"]),
        doc_id=str(data["doc_id"]),
        chunks=int(data.get("chunks", 0)),
        completed_at=str(data.get("completed_at", "")),
        depends_on=tuple(str(d) for d in data.get("depends_on", [])),
    )


def save_checkpoint(checkpoint: BuildCheckpoint, path: Path) -> None:
    """Save the checkpoint to a JSON file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "schema_version": checkpoint.schema_version,
        "config_hash": checkpoint.config_hash,
        "tokens_used": checkpoint.tokens_used,
        "estimated_cost_usd": checkpoint.estimated_cost_usd,
        "stats": vars(checkpoint.stats).copy(),
        "sources": [asdict(s) for s in checkpoint.sources],
        "dedupe_state": checkpoint.dedupe_state.to_dict(),
        "errors": [_error_to_dict(e) for e in checkpoint.errors],
    }
    try:
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        logger.debug("Saved checkpoint to %s", path)
    except OSError as e:
        logger.error("Failed to save checkpoint to %s: %s", path, e)
        raise CheckpointError(f"Failed to save checkpoint to {path}: {e}") from e


def load_checkpoint(path: Path) -> BuildCheckpoint:
    """Load a checkpoint from a JSON file."""
    if not path.exists():
        raise CheckpointError(f"Checkpoint file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load checkpoint from %s: %s", path, e)
        raise CheckpointError(f"Failed to load checkpoint from {path}: {e}") from e

    if not isinstance(data, dict):
        raise CheckpointError(f"Checkpoint {path} must contain a JSON object")

    try:
        stats = BuildStats(**data.get("stats", {}))
    except TypeError as e:
        raise CheckpointError(f"Invalid stats in checkpoint {path}: {e}") from e

    checkpoint = BuildCheckpoint(
        config_hash=str(data.get("config_hash", "")),
        schema_version=str(data.get("schema_version", SCHEMA_VERSION)),
        tokens_used=int(data.get("tokens_used", 0)),
        estimated_cost_usd=float(data.get("estimated_cost_usd", 0.0)),
        stats=stats,
        dedupe_state=DedupeState.from_dict(data.get("dedupe_state", {})),
        errors=[_error_from_dict(e) for e in data.get("errors", [])],
    )
    for entry_data in data.get("sources", []):
        checkpoint.mark_complete(_entry_from_dict(entry_data))

    logger.info("Loaded checkpoint from %s (%d sources)", path, len(checkpoint.sources))
    return checkpoint
