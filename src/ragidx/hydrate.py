"""Context hydration: sibling and ancestor context for search hits.

Given a hit and the corpus snapshot, collects neighbouring chunks of the
same document and walks the ``parent_id`` chain, then trims the result to
``max_total_chunks``. Parent-chain walks keep a visited set, so a cycle or a
dangling reference ends the walk and is reported as an integrity anomaly
instead of raising.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from ragidx.config import validate_hydrate_config
from ragidx.types import (
    ErrorCode,
    ErrorRecord,
    HydratedContext,
    HydratedResult,
    HydrateStrategy,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ragidx.config import HydrateConfig
    from ragidx.corpus import Corpus
    from ragidx.types import Chunk, RankedResult

__all__ = [
    "find_adjacent",
    "hierarchy_path",
    "hydrate",
    "hydrate_many",
    "resolve_parent",
]

logger = logging.getLogger(__name__)


def _anomaly(message: str, chunk: Chunk, anomalies: list[ErrorRecord] | None) -> None:
    logger.warning("Integrity anomaly: %s", message)
    if anomalies is not None:
        anomalies.append(
            ErrorRecord(ErrorCode.INTEGRITY_ANOMALY, message, source=chunk.source.source_id)
        )


def find_adjacent(
    chunk: Chunk,
    corpus: Corpus,
    before: int,
    after: int,
) -> tuple[tuple[Chunk, ...], tuple[Chunk, ...]]:
    """Up to ``before``/``after`` same-document neighbours, both in index order."""
    doc = corpus.document(chunk.doc_id)
    ids = [c.chunk_id for c in doc]
    try:
        idx = ids.index(chunk.chunk_id)
    except ValueError:
        return (), ()
    return doc[max(0, idx - before) : idx], doc[idx + 1 : idx + 1 + after]


def resolve_parent(
    chunk: Chunk,
    corpus: Corpus,
    anomalies: list[ErrorRecord] | None = None,
) -> Chunk | None:
    """Direct parent lookup. Self-references and dangling ids yield ``None``."""
    if chunk.parent_id is None:
        return None
    if chunk.parent_id == chunk.chunk_id:
        _anomaly(f"chunk {chunk.chunk_id} is its own parent", chunk, anomalies)
        return None
    parent = corpus.get(chunk.parent_id)
    if parent is None:
        _anomaly(
            f"chunk {chunk.chunk_id} references missing parent {chunk.parent_id}",
            chunk,
            anomalies,
        )
    return parent


def hierarchy_path(
    chunk: Chunk,
    corpus: Corpus,
    anomalies: list[ErrorRecord] | None = None,
) -> tuple[str, ...] | None:
    """Chunk ids from the root ancestor down to ``chunk`` itself.

    ``None`` for level-0 chunks with no ancestors. A root at level 1 or
    deeper, or a chunk whose first parent hop is broken, yields a
    single-element path.
    """
    path = [chunk.chunk_id]
    visited = {chunk.chunk_id}
    current = chunk
    while current.parent_id is not None:
        parent_id = current.parent_id
        if parent_id in visited:
            _anomaly(f"parent cycle through {parent_id}", chunk, anomalies)
            break
        parent = corpus.get(parent_id)
        if parent is None:
            _anomaly(f"dangling parent reference {parent_id}", chunk, anomalies)
            break
        visited.add(parent_id)
        path.append(parent_id)
        current = parent

    if len(path) == 1 and chunk.hierarchy_level == 0:
        return None
    path.reverse()
    return tuple(path)


def _apply_budget(
    parent: Chunk | None,
    before: tuple[Chunk, ...],
    after: tuple[Chunk, ...],
    max_total: int,
) -> tuple[tuple[Chunk, ...], tuple[Chunk, ...]]:
    """Trim siblings so parent + siblings fit in ``max_total``, nearest first."""
    remaining = max_total - (1 if parent is not None else 0)
    if remaining <= 0:
        return (), ()

    n_before, n_after = len(before), len(after)
    before_quota = after_quota = remaining // 2
    if remaining % 2:
        if n_before > n_after:
            before_quota += 1
        else:
            after_quota += 1

    take_before = min(n_before, before_quota)
    take_after = min(n_after, after_quota)
    spare = remaining - take_before - take_after
    extra = min(n_before - take_before, spare)
    take_before += extra
    spare -= extra
    take_after += min(n_after - take_after, spare)

    return before[n_before - take_before :], after[:take_after]


def hydrate(
    chunk: Chunk,
    corpus: Corpus,
    options: HydrateConfig,
    score: float | None = None,
    anomalies: list[ErrorRecord] | None = None,
) -> HydratedResult:
    """Attach sibling and ancestor context to one chunk.

    Args:
        chunk: The anchor chunk.
        corpus: Snapshot to read neighbours and ancestors from.
        options: Hydration options; disabled options give an empty context.
        score: Passed through to the result.
        anomalies: Integrity anomalies found while walking parents are appended here.

    Raises:
        ConfigError: If the options are out of range.
    """
    validate_hydrate_config(options)
    if not options.enabled:
        return HydratedResult(chunk=chunk, context=HydratedContext(), score=score)

    strategy = HydrateStrategy(options.strategy)
    parent: Chunk | None = None
    path: tuple[str, ...] | None = None
    before: tuple[Chunk, ...] = ()
    after: tuple[Chunk, ...] = ()

    if strategy in (HydrateStrategy.ADJACENT, HydrateStrategy.BOTH):
        before, after = find_adjacent(
            chunk, corpus, options.adjacent_before, options.adjacent_after
        )

    if strategy in (HydrateStrategy.PARENT, HydrateStrategy.BOTH):
        if options.include_parent:
            parent = resolve_parent(chunk, corpus, anomalies)
        path = hierarchy_path(chunk, corpus, anomalies)

    if parent is not None:
        before = tuple(c for c in before if c.chunk_id != parent.chunk_id)
        after = tuple(c for c in after if c.chunk_id != parent.chunk_id)

    before, after = _apply_budget(parent, before, after, options.max_total_chunks)
    context = HydratedContext(
        parent=parent,
        siblings_before=before,
        siblings_after=after,
        hierarchy_path=path,
    )
    return HydratedResult(chunk=chunk, context=context, score=score)


def _without(chunks: tuple[Chunk, ...], ids: set[str]) -> tuple[Chunk, ...]:
    return tuple(c for c in chunks if c.chunk_id not in ids)


def hydrate_many(
    results: Sequence[RankedResult],
    corpus: Corpus,
    options: HydrateConfig,
    anomalies: list[ErrorRecord] | None = None,
) -> list[HydratedResult]:
    """Hydrate every result, then drop primary results from sibling lists."""
    hydrated = [hydrate(r.chunk, corpus, options, r.score, anomalies) for r in results]
    primary = {r.chunk_id for r in results}

    deduped: list[HydratedResult] = []
    for item in hydrated:
        ctx = replace(
            item.context,
            siblings_before=_without(item.context.siblings_before, primary),
            siblings_after=_without(item.context.siblings_after, primary),
        )
        deduped.append(replace(item, context=ctx))
    return deduped
