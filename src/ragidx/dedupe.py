"""Exact and near-duplicate chunk removal.

Exact mode keys chunks by content hash; near mode compares token-set
Jaccard similarity against every chunk kept so far, which is O(n * k) in
the number of surviving chunks. Seen keys and kept token sets live in an
explicit ``DedupeState`` so incremental builds can dedupe against chunks
kept by earlier runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ragidx.config import DedupeConfig, parse_dedupe_method, validate_dedupe_config
from ragidx.types import DedupeMethod, DedupeScope, DuplicateGroup

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ragidx.types import Chunk

__all__ = [
    "DedupeResult",
    "DedupeState",
    "DedupeStats",
    "Deduplicator",
    "jaccard_similarity",
    "token_set",
]

logger = logging.getLogger(__name__)


def token_set(text: str) -> frozenset[str]:
    """Lowercased whitespace-split tokens."""
    return frozenset(text.lower().split())


def jaccard_similarity(a: frozenset[str], b: frozenset[str]) -> float:
    """Jaccard index of two token sets; 0.0 when both are empty."""
    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


@dataclass
class _KeptTokens:
    chunk_id: str
    doc_id: str
    tokens: frozenset[str]


@dataclass
class DedupeState:
    """Cumulative dedupe memory, carried between invocations.

    ``seen`` maps exact-match keys to the id of the chunk kept for them;
    ``kept`` holds token sets of chunks kept by near-duplicate runs.
    """

    seen: dict[str, str] = field(default_factory=dict)
    kept: list[_KeptTokens] = field(default_factory=list)

    def copy(self) -> DedupeState:
        return DedupeState(seen=dict(self.seen), kept=list(self.kept))

    def forget(self, chunk_ids: set[str]) -> None:
        """Drop memory of kept chunks that no longer exist."""
        self.seen = {key: kept for key, kept in self.seen.items() if kept not in chunk_ids}
        self.kept = [k for k in self.kept if k.chunk_id not in chunk_ids]

    def to_dict(self) -> dict[str, Any]:
        return {
            "seen": dict(self.seen),
            "kept": [
                {"chunk_id": k.chunk_id, "doc_id": k.doc_id, "tokens": sorted(k.tokens)}
                for k in self.kept
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DedupeState:
        return cls(
            seen={str(k): str(v) for k, v in data.get("seen", {}).items()},
            kept=[
                _KeptTokens(
                    chunk_id=str(item["chunk_id"]),
                    doc_id=str(item["doc_id"]),
                    tokens=frozenset(item.get("tokens", [])),
                )
                for item in data.get("kept", [])
            ],
        )


@dataclass
class DedupeStats:
    input_chunks: int = 0
    output_chunks: int = 0
    duplicates_removed: int = 0
    duplicate_groups: int = 0


@dataclass
class DedupeResult:
    """Unique chunks in input order, the duplicate report and the updated state."""

    unique: list[Chunk]
    groups: list[DuplicateGroup]
    stats: DedupeStats
    state: DedupeState
    method: DedupeMethod = DedupeMethod.EXACT

    def report(self, *, scope: str, threshold: float) -> dict[str, Any]:
        """Dedupe report as a JSON-ready dict."""
        return {
            "method": self.method.value,
            "scope": scope,
            "threshold": threshold,
            "stats": vars(self.stats).copy(),
            "groups": [
                {"kept": g.kept, "removed": list(g.removed), "method": g.method.value}
                for g in self.groups
            ],
        }


class Deduplicator:
    """Collapses duplicate chunks.

    Usage::

        dedup = Deduplicator(method="near", scope="global", threshold=0.9)
        result = dedup.dedupe(chunks, state=previous_state)
    """

    def __init__(
        self,
        method: DedupeMethod | str = DedupeMethod.EXACT,
        scope: DedupeScope | str = DedupeScope.GLOBAL,
        threshold: float = 0.95,
    ) -> None:
        method_name = method.value if isinstance(method, DedupeMethod) else method
        scope_name = scope.value if isinstance(scope, DedupeScope) else scope
        validate_dedupe_config(
            DedupeConfig(method=method_name, scope=scope_name, threshold=threshold)
        )
        self.method = parse_dedupe_method(method_name)
        self.scope = DedupeScope(scope_name)
        self.threshold = threshold

    @classmethod
    def from_config(cls, config: DedupeConfig) -> Deduplicator:
        return cls(method=config.method, scope=config.scope, threshold=config.threshold)

    def dedupe(self, chunks: Iterable[Chunk], state: DedupeState | None = None) -> DedupeResult:
        """Remove duplicates from ``chunks``.

        Args:
            chunks: Chunks in processing order.
            state: Memory from earlier invocations; a fresh state when omitted.
                The object is updated in place and also returned.

        Returns:
            DedupeResult with unique chunks in input order.
        """
        state = state if state is not None else DedupeState()
        stats = DedupeStats()
        unique: list[Chunk] = []
        removed_by_kept: dict[str, list[str]] = {}

        for chunk in chunks:
            stats.input_chunks += 1
            if self.method is DedupeMethod.EXACT:
                kept_id = self._match_exact(chunk, state)
            else:
                kept_id = self._match_near(chunk, state)

            if kept_id is None:
                unique.append(chunk)
                continue
            removed_by_kept.setdefault(kept_id, []).append(chunk.chunk_id)
            stats.duplicates_removed += 1

        groups = [
            DuplicateGroup(kept=kept, removed=tuple(removed), method=self.method)
            for kept, removed in removed_by_kept.items()
        ]
        stats.output_chunks = len(unique)
        stats.duplicate_groups = len(groups)

        logger.info(
            "Dedupe (%s/%s): %d in, %d out, %d removed",
            self.method.value,
            self.scope.value,
            stats.input_chunks,
            stats.output_chunks,
            stats.duplicates_removed,
        )
        return DedupeResult(
            unique=unique, groups=groups, stats=stats, state=state, method=self.method
        )

    def _exact_key(self, chunk: Chunk) -> str:
        if self.scope is DedupeScope.PER_DOCUMENT:
            return f"{chunk.doc_id}:{chunk.content.text_hash}"
        return chunk.content.text_hash

    def _match_exact(self, chunk: Chunk, state: DedupeState) -> str | None:
        key = self._exact_key(chunk)
        kept_id = state.seen.get(key)
        if kept_id is None:
            state.seen[key] = chunk.chunk_id
        return kept_id

    def _match_near(self, chunk: Chunk, state: DedupeState) -> str | None:
        tokens = token_set(chunk.content.text)
        per_document = self.scope is DedupeScope.PER_DOCUMENT
        for kept in state.kept:
            # an id already kept is a repeat even when it has no tokens
            if kept.chunk_id == chunk.chunk_id:
                return kept.chunk_id
            if per_document and kept.doc_id != chunk.doc_id:
                continue
            if jaccard_similarity(tokens, kept.tokens) >= self.threshold:
                return kept.chunk_id
        state.kept.append(_KeptTokens(chunk.chunk_id, chunk.doc_id, tokens))
        return None
