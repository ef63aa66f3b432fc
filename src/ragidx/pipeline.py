"""Build pipeline orchestrator for ragidx.

Composes source loading → chunker → deduplicator → embedder → store via
constructor injection, with a checkpoint saved after every source.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ragidx.checkpoint import make_source_entry, save_checkpoint
from ragidx.dedupe import DedupeResult, DedupeStats
from ragidx.exceptions import (
    ChunkError,
    EmbeddingError,
    InputError,
    PipelineError,
    StoreError,
)
from ragidx.hashing import config_hash
from ragidx.serialize import write_chunks_jsonl
from ragidx.sources import load_source
from ragidx.tokens import estimate_cost, total_tokens
from ragidx.types import ChunkSource, ErrorCode, ErrorRecord

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from ragidx.checkpoint import BuildCheckpoint, SourceEntry
    from ragidx.chunk.base import BaseChunker
    from ragidx.config import RagidxConfig
    from ragidx.dedupe import Deduplicator
    from ragidx.embed.base import BaseEmbedder
    from ragidx.store.base import BaseStore
    from ragidx.types import Chunk, DuplicateGroup, SourceDocument, Vector

__all__ = ["BuildPipeline", "BuildResult"]

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Outcome of one build run; ``errors`` holds per-source failures."""

    sources_total: int = 0
    sources_processed: int = 0
    sources_skipped: int = 0
    chunks_created: int = 0
    duplicates_removed: int = 0
    vectors_stored: int = 0
    sources_requeued: int = 0
    tokens_used: int = 0
    estimated_cost_usd: float = 0.0
    errors: list[ErrorRecord] = field(default_factory=list)


class BuildPipeline:
    """Orchestrates an incremental index build.

    All dependencies are injected via the constructor, making the pipeline
    fully testable with fake implementations.

    Usage::

        pipeline = BuildPipeline(
            chunker=Chunker(),
            deduplicator=Deduplicator.from_config(config.dedupe),
            embedder=ollama_embedder,
            store=chroma_store,
            config=config,
            checkpoint=checkpoint,
            checkpoint_path=project.checkpoint_path,
        )
        result = pipeline.build([Path("docs/guide.md")])
    """

    def __init__(
        self,
        chunker: BaseChunker,
        deduplicator: Deduplicator,
        embedder: BaseEmbedder,
        store: BaseStore,
        config: RagidxConfig,
        checkpoint: BuildCheckpoint,
        checkpoint_path: Path | None = None,
        export_path: Path | None = None,
    ) -> None:
        self.chunker = chunker
        self.deduplicator = deduplicator
        self.embedder = embedder
        self.store = store
        self.config = config
        self.checkpoint = checkpoint
        self.checkpoint_path = checkpoint_path
        self.export_path = export_path
        self._invalidated: set[str] = set()

    def build(self, paths: Iterable[Path]) -> BuildResult:
        """Process every new or changed source in ``paths``.

        Unchanged sources recorded as complete are skipped. A changed
        source replaces its previous chunks. Failures of one source are
        recorded and the build continues.

        Returns:
            BuildResult for this run.

        Raises:
            PipelineError: If the build fails outside per-source processing.
        """
        paths = list(paths)
        result = BuildResult(sources_total=len(paths))
        self._invalidated = set()
        try:
            self._check_config_hash()
            documents = self._load_sources(paths, result)
            for doc in documents:
                self._process(doc, result)
            for doc in documents:
                if doc.source_id in self._invalidated:
                    self._process(doc, result)
            if self.export_path is not None and result.sources_processed:
                self._export(self.export_path)
        except PipelineError:
            raise
        except Exception as e:
            raise PipelineError(f"Build failed: {e}") from e

        logger.info(
            "Build finished: %d processed, %d skipped, %d errors, %d tokens ($%.6f)",
            result.sources_processed,
            result.sources_skipped,
            len(result.errors),
            result.tokens_used,
            result.estimated_cost_usd,
        )
        return result

    def _check_config_hash(self) -> None:
        """Start over when the chunking parameters differ from the checkpoint's."""
        current = config_hash(self.config.chunk.fingerprint_params())
        checkpoint = self.checkpoint
        if checkpoint.config_hash == current:
            return
        if checkpoint.sources:
            logger.warning("Chunking parameters changed; rebuilding all sources")
            for entry in checkpoint.sources:
                self.store.delete(entry.doc_id)
        checkpoint.reset(current)
        self._save()

    def _load_sources(self, paths: list[Path], result: BuildResult) -> list[SourceDocument]:
        workers = max(1, min(self.config.build.fetch_concurrency, len(paths) or 1))
        documents: list[SourceDocument] = []
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [(path, pool.submit(load_source, path)) for path in paths]
            for path, future in futures:
                try:
                    documents.append(future.result())
                except InputError as e:
                    logger.warning("Skipping %s: %s", path, e)
                    self._record(result, ErrorRecord(ErrorCode.INPUT_ERROR, str(e), str(path)))
        return documents

    def _process(self, doc: SourceDocument, result: BuildResult) -> None:
        checkpoint = self.checkpoint
        if not checkpoint.is_changed(doc.source_id, doc.content_hash):
            logger.info("Unchanged, skipping: %s", doc.source_id)
            result.sources_skipped += 1
            return
        self._invalidated.discard(doc.source_id)

        previous = checkpoint.get_source(doc.source_id)
        if previous is not None:
            self._replace(previous, result)

        source = ChunkSource(
            source_id=doc.source_id,
            source_type=doc.source_type,
            content_hash=doc.content_hash,
            retrieved_at=doc.retrieved_at,
        )
        try:
            chunks = self.chunker.chunk(
                doc.text, self.config.chunk, source=source, metadata=doc.metadata
            )
        except (InputError, ChunkError) as e:
            code = ErrorCode.INPUT_ERROR if isinstance(e, InputError) else ErrorCode.CHUNK_ERROR
            logger.error("Chunking failed for %s: %s", doc.source_id, e)
            self._record(result, ErrorRecord(code, str(e), doc.source_id))
            return

        outcome = self._dedupe(chunks)
        unique = outcome.unique
        removed = outcome.stats.duplicates_removed

        try:
            vectors, tokens = self._embed(unique)
        except EmbeddingError as e:
            logger.error("Embedding failed for %s: %s", doc.source_id, e)
            self._record(result, ErrorRecord(ErrorCode.EMBEDDING_ERROR, str(e), doc.source_id))
            return

        try:
            stored = self.store.add(unique, vectors)
            depends_on = self._dependencies(chunks, outcome.groups)
        except StoreError as e:
            logger.error("Storing failed for %s: %s", doc.source_id, e)
            self._record(result, ErrorRecord(ErrorCode.STORE_ERROR, str(e), doc.source_id))
            return

        doc_id = chunks[0].doc_id if chunks else ""
        cost = estimate_cost(tokens, self.config.embedding.cost_per_million_tokens)
        entry = make_source_entry(
            doc.source_id, doc.content_hash, doc_id, stored, depends_on=depends_on
        )
        checkpoint.dedupe_state = outcome.state
        checkpoint.mark_complete(entry)
        checkpoint.tokens_used += tokens
        checkpoint.estimated_cost_usd += cost
        checkpoint.stats.sources_processed += 1
        checkpoint.stats.chunks_created += len(chunks)
        checkpoint.stats.duplicates_removed += removed
        checkpoint.stats.vectors_stored += stored
        self._save()

        result.sources_processed += 1
        result.chunks_created += len(chunks)
        result.duplicates_removed += removed
        result.vectors_stored += stored
        result.tokens_used += tokens
        result.estimated_cost_usd += cost
        logger.info(
            "Indexed %s: %d chunks, %d duplicates, %d stored",
            doc.source_id,
            len(chunks),
            removed,
            stored,
        )

    def _replace(self, previous: SourceEntry, result: BuildResult) -> None:
        """Drop a changed source's entry and release the chunks it owned."""
        self.checkpoint.remove_source(previous.source_id)
        self._release(previous.doc_id, result)

    def _release(self, doc_id: str, result: BuildResult) -> None:
        """Delete a document's chunks unless another source still holds them.

        Sources that deduplicated against the deleted chunks lose content
        they never stored, so they are dropped from the checkpoint and
        requeued.
        """
        if not doc_id:
            return
        checkpoint = self.checkpoint
        if any(entry.doc_id == doc_id for entry in checkpoint.sources):
            logger.info("Document %s is shared with another source; keeping its chunks", doc_id)
            return

        old_ids = {c.chunk_id for c in self.store.get_document(doc_id)}
        checkpoint.dedupe_state.forget(old_ids)
        deleted = self.store.delete(doc_id)
        logger.info("Removed %d chunks of document %s", deleted, doc_id)

        for entry in checkpoint.sources:
            if doc_id not in entry.depends_on or checkpoint.get_source(entry.source_id) is None:
                continue
            logger.warning("Requeuing %s: it shared chunks with %s", entry.source_id, doc_id)
            checkpoint.remove_source(entry.source_id)
            self._invalidated.add(entry.source_id)
            result.sources_requeued += 1
            self._release(entry.doc_id, result)

    def _dedupe(self, chunks: list[Chunk]) -> DedupeResult:
        """Dedupe against a copy of the state; the build commits it once stored."""
        state = self.checkpoint.dedupe_state
        if not self.config.dedupe.enabled or not chunks:
            stats = DedupeStats(input_chunks=len(chunks), output_chunks=len(chunks))
            return DedupeResult(unique=chunks, groups=[], stats=stats, state=state)
        return self.deduplicator.dedupe(chunks, state=state.copy())

    def _dependencies(self, chunks: list[Chunk], groups: list[DuplicateGroup]) -> tuple[str, ...]:
        """Documents owning the kept copies of this source's removed chunks."""
        own = {c.chunk_id for c in chunks}
        external = [g.kept for g in groups if g.kept not in own]
        if not external:
            return ()
        doc_ids = {c.doc_id for c in self.store.get(external)}
        doc_ids.discard(chunks[0].doc_id)
        return tuple(sorted(doc_ids))

    def _embed(self, chunks: list[Chunk]) -> tuple[list[Vector], int]:
        """Embed chunks; token count is provider-reported, else counted locally."""
        if not chunks:
            return [], 0
        before = self.embedder.tokens_used
        vectors = self.embedder.embed_chunks(chunks)
        reported = self.embedder.tokens_used - before
        tokens = reported if reported > 0 else total_tokens(c.content.text for c in chunks)
        return vectors, tokens

    def _export(self, path: Path) -> None:
        corpus = self.store.load_corpus()
        count = write_chunks_jsonl(corpus.chunks, path)
        logger.info("Exported %d chunks to %s", count, path)

    def _record(self, result: BuildResult, error: ErrorRecord) -> None:
        result.errors.append(error)
        self.checkpoint.record_error(error)
        self._save()

    def _save(self) -> None:
        if self.checkpoint_path is not None:
            save_checkpoint(self.checkpoint, self.checkpoint_path)
