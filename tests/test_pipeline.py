"""Tests for ragidx.pipeline module: incremental build orchestration.

Uses the real chunker and deduplicator with an in-memory store and a
deterministic fake embedder.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ragidx.checkpoint import BuildCheckpoint, load_checkpoint
from ragidx.chunk import Chunker
from ragidx.config import RagidxConfig
from ragidx.corpus import Corpus
from ragidx.dedupe import Deduplicator
from ragidx.embed.base import BaseEmbedder
from ragidx.exceptions import EmbeddingError, PipelineError, StoreError
from ragidx.pipeline import BuildPipeline, BuildResult
from ragidx.serialize import read_chunks_jsonl
from ragidx.store.base import BaseStore
from ragidx.types import ErrorCode, Vector

if TYPE_CHECKING:
    from pathlib import Path

    from ragidx.types import Chunk


# --- Fakes ---


class _FakeEmbedder(BaseEmbedder):
    """Deterministic two-dimensional vectors; reports one token per text."""

    model = "fake-embed"

    def __init__(self, report_tokens: bool = True) -> None:
        super().__init__()
        self.report_tokens = report_tokens
        self.calls: list[list[str]] = []
        self.fail = False

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if self.fail:
            raise EmbeddingError("provider unavailable")
        self.calls.append(texts)
        if self.report_tokens:
            self._tokens_used += len(texts)
        return [[float(len(t)), 1.0] for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return [float(len(text)), 1.0]

    @property
    def dimension(self) -> int:
        return 2


class _MemoryStore(BaseStore):
    def __init__(self) -> None:
        self.chunks: dict[str, Chunk] = {}
        self.vectors: dict[str, Vector] = {}
        self.deleted: list[str] = []
        self.fail = False

    def add(self, chunks: list[Chunk], vectors: list[Vector]) -> int:
        if self.fail:
            raise StoreError("disk full")
        by_id = {v.chunk_id: v for v in vectors}
        for chunk in chunks:
            self.chunks[chunk.chunk_id] = chunk
            self.vectors[chunk.chunk_id] = by_id[chunk.chunk_id]
        return len(chunks)

    def get(self, chunk_ids: list[str]) -> list[Chunk]:
        return [self.chunks[cid] for cid in chunk_ids if cid in self.chunks]

    def get_document(self, doc_id: str) -> list[Chunk]:
        return sorted(
            (c for c in self.chunks.values() if c.doc_id == doc_id),
            key=lambda c: c.chunk_index,
        )

    def delete(self, doc_id: str) -> int:
        self.deleted.append(doc_id)
        doomed = [cid for cid, c in self.chunks.items() if c.doc_id == doc_id]
        for cid in doomed:
            del self.chunks[cid]
            self.vectors.pop(cid, None)
        return len(doomed)

    def load_corpus(self) -> Corpus:
        return Corpus(self.chunks.values(), self.vectors.values())

    def count(self) -> int:
        return len(self.chunks)


# --- Helpers ---


def _make_config() -> RagidxConfig:
    config = RagidxConfig()
    config.chunk.strategy = "by_paragraph"
    config.chunk.max_chars = 100
    config.chunk.min_chars = 0
    config.chunk.overlap_chars = 0
    return config


def _make_pipeline(
    tmp_path: Path,
    config: RagidxConfig | None = None,
    checkpoint: BuildCheckpoint | None = None,
    embedder: _FakeEmbedder | None = None,
    store: _MemoryStore | None = None,
    export: bool = False,
) -> BuildPipeline:
    config = config or _make_config()
    return BuildPipeline(
        chunker=Chunker(),
        deduplicator=Deduplicator.from_config(config.dedupe),
        embedder=embedder or _FakeEmbedder(),
        store=store or _MemoryStore(),
        config=config,
        checkpoint=checkpoint or BuildCheckpoint(),
        checkpoint_path=tmp_path / "state" / "checkpoint.json",
        export_path=tmp_path / "state" / "chunks.jsonl" if export else None,
    )


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


TWO_PARAGRAPHS = (
    "First paragraph about caching layers, eviction and warmup.\n\n"
    "Second paragraph about indexing pipelines and their checkpoints.\n"
)
SHARED = "Shared paragraph that appears in both files and is long enough.\n\n"
ALPHA = SHARED + "Alpha only paragraph with distinct wording for file a."
BETA = SHARED + "Beta only paragraph with distinct wording for file b."


# --- Tests ---


class TestBuild:
    def test_processes_all_sources(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        b = _write(tmp_path, "b.txt", "Only one paragraph here.")
        pipeline = _make_pipeline(tmp_path)

        result = pipeline.build([a, b])

        assert isinstance(result, BuildResult)
        assert result.sources_total == 2
        assert result.sources_processed == 2
        assert result.chunks_created == 3
        assert result.vectors_stored == 3
        assert result.errors == []
        assert pipeline.store.count() == 3

    def test_checkpoint_saved(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        _make_pipeline(tmp_path).build([a])

        saved = load_checkpoint(tmp_path / "state" / "checkpoint.json")
        assert [s.source_id for s in saved.sources] == [str(a.resolve())]
        assert saved.sources[0].chunks == 2
        assert saved.stats.vectors_stored == 2
        assert saved.config_hash

    def test_chunks_carry_provenance(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        pipeline = _make_pipeline(tmp_path)
        pipeline.build([a])

        chunk = next(iter(pipeline.store.chunks.values()))
        assert chunk.source.source_id == str(a.resolve())
        assert chunk.source.source_type == "markdown"
        assert chunk.source.content_hash.startswith("sha256:")
        assert chunk.metadata_dict["filename"] == "a.md"

    def test_empty_input(self, tmp_path: Path):
        result = _make_pipeline(tmp_path).build([])
        assert result.sources_total == 0
        assert result.sources_processed == 0


class TestIncremental:
    def test_unchanged_sources_skipped(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        embedder = _FakeEmbedder()
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        _make_pipeline(tmp_path, checkpoint=checkpoint, embedder=embedder, store=store).build([a])
        calls_after_first = len(embedder.calls)

        pipeline = _make_pipeline(tmp_path, checkpoint=checkpoint, embedder=embedder, store=store)
        result = pipeline.build([a])

        assert result.sources_skipped == 1
        assert result.sources_processed == 0
        assert len(embedder.calls) == calls_after_first

    def test_changed_source_replaces_chunks(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a])
        old_doc = checkpoint.sources[0].doc_id

        a.write_text("Rewritten content entirely.", encoding="utf-8")
        result = _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a])

        assert result.sources_processed == 1
        assert old_doc in store.deleted
        assert [c.content.text for c in store.chunks.values()] == ["Rewritten content entirely."]
        assert checkpoint.sources[0].doc_id != old_doc

    def test_replaced_chunks_released_from_dedupe(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", ALPHA)
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a])

        a.write_text("Alpha changed.", encoding="utf-8")
        _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a])

        b = _write(tmp_path, "b.md", BETA)
        result = _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([b])
        assert result.duplicates_removed == 0
        assert result.vectors_stored == 2

    def test_identical_sources_share_chunks(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        b = _write(tmp_path, "b.md", TWO_PARAGRAPHS)
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        result = _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a, b])

        assert result.sources_processed == 2
        assert result.duplicates_removed == 2
        assert store.count() == 2
        assert len({e.doc_id for e in checkpoint.sources}) == 1

    def test_changing_one_identical_source_keeps_the_other(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        b = _write(tmp_path, "b.md", TWO_PARAGRAPHS)
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a, b])
        shared_doc = checkpoint.sources[0].doc_id

        a.write_text("Rewritten content entirely.", encoding="utf-8")
        result = _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a, b])

        assert result.sources_processed == 1
        assert result.sources_skipped == 1
        assert shared_doc not in store.deleted
        assert len(store.get_document(shared_doc)) == 2
        assert store.count() == 3

    def test_dependent_source_requeued_when_kept_copy_changes(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", ALPHA)
        b = _write(tmp_path, "b.md", BETA)
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a, b])
        alpha_doc = next(e.doc_id for e in checkpoint.sources if not e.depends_on)
        assert [e.depends_on for e in checkpoint.sources if e.depends_on] == [(alpha_doc,)]

        a.write_text("Alpha rewritten as a single new paragraph.", encoding="utf-8")
        result = _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([b, a])

        assert result.sources_requeued == 1
        assert result.errors == []
        assert store.count() == 3
        texts = [c.content.text for c in store.chunks.values()]
        assert any("Shared paragraph" in t for t in texts)
        assert len(checkpoint.sources) == 2
        assert all(e.depends_on == () for e in checkpoint.sources)

    def test_dependent_left_pending_when_not_in_build(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", ALPHA)
        b = _write(tmp_path, "b.md", BETA)
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a, b])

        a.write_text("Alpha rewritten as a single new paragraph.", encoding="utf-8")
        result = _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a])

        assert result.sources_requeued == 1
        assert len(checkpoint.sources) == 1
        assert store.count() == 1

        again = _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a, b])
        assert again.sources_processed == 1
        assert again.sources_skipped == 1
        assert store.count() == 3

    def test_chunk_config_change_rebuilds(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a])
        old_doc = checkpoint.sources[0].doc_id

        config = _make_config()
        config.chunk.max_chars = 200
        result = _make_pipeline(tmp_path, config, checkpoint=checkpoint, store=store).build([a])

        assert old_doc in store.deleted
        assert result.sources_processed == 1
        assert result.sources_skipped == 0
        assert store.count() == 1


class TestDedupeInBuild:
    def test_cross_source_duplicates_removed(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", ALPHA)
        b = _write(tmp_path, "b.md", BETA)
        result = _make_pipeline(tmp_path).build([a, b])

        assert result.chunks_created == 4
        assert result.duplicates_removed == 1
        assert result.vectors_stored == 3

    def test_dedupe_disabled(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", ALPHA)
        b = _write(tmp_path, "b.md", BETA)
        config = _make_config()
        config.dedupe.enabled = False
        result = _make_pipeline(tmp_path, config).build([a, b])

        assert result.duplicates_removed == 0
        assert result.vectors_stored == 4


class TestTokens:
    def test_provider_reported_tokens(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        result = _make_pipeline(tmp_path).build([a])
        assert result.tokens_used == 2
        assert result.estimated_cost_usd == pytest.approx(2 / 1_000_000 * 0.02)

    def test_local_count_when_unreported(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        checkpoint = BuildCheckpoint()
        embedder = _FakeEmbedder(report_tokens=False)
        result = _make_pipeline(tmp_path, checkpoint=checkpoint, embedder=embedder).build([a])
        assert result.tokens_used > 2
        assert checkpoint.tokens_used == result.tokens_used


class TestErrors:
    def test_missing_file_recorded(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        result = _make_pipeline(tmp_path).build([tmp_path / "missing.md", a])

        assert result.sources_processed == 1
        assert len(result.errors) == 1
        assert result.errors[0].code is ErrorCode.INPUT_ERROR

    def test_embedding_failure_leaves_source_pending(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        checkpoint = BuildCheckpoint()
        embedder = _FakeEmbedder()
        embedder.fail = True
        store = _MemoryStore()
        result = _make_pipeline(
            tmp_path, checkpoint=checkpoint, embedder=embedder, store=store
        ).build([a])

        assert result.errors[0].code is ErrorCode.EMBEDDING_ERROR
        assert checkpoint.sources == []
        assert checkpoint.errors[0].code is ErrorCode.EMBEDDING_ERROR

        embedder.fail = False
        retry = _make_pipeline(
            tmp_path, checkpoint=checkpoint, embedder=embedder, store=store
        ).build([a])
        assert retry.sources_processed == 1
        assert retry.vectors_stored == 2

    def test_failed_embedding_does_not_claim_dedupe_keys(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", ALPHA)
        b = _write(tmp_path, "b.md", BETA)
        checkpoint = BuildCheckpoint()
        embedder = _FakeEmbedder()
        embedder.fail = True
        store = _MemoryStore()
        _make_pipeline(tmp_path, checkpoint=checkpoint, embedder=embedder, store=store).build([a])
        assert checkpoint.dedupe_state.seen == {}

        embedder.fail = False
        result = _make_pipeline(
            tmp_path, checkpoint=checkpoint, embedder=embedder, store=store
        ).build([b])
        assert result.duplicates_removed == 0
        assert result.vectors_stored == 2

    def test_failed_store_does_not_claim_dedupe_keys(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", ALPHA)
        b = _write(tmp_path, "b.md", BETA)
        checkpoint = BuildCheckpoint()
        store = _MemoryStore()
        store.fail = True
        _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([a])

        store.fail = False
        result = _make_pipeline(tmp_path, checkpoint=checkpoint, store=store).build([b])
        assert result.duplicates_removed == 0
        assert store.count() == 2
        assert any("Shared paragraph" in c.content.text for c in store.chunks.values())

    def test_store_failure_recorded(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        store = _MemoryStore()
        store.fail = True
        result = _make_pipeline(tmp_path, store=store).build([a])
        assert result.errors[0].code is ErrorCode.STORE_ERROR
        assert result.sources_processed == 0

    def test_unexpected_error_wrapped(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        pipeline = _make_pipeline(tmp_path)
        pipeline.store.add = None  # type: ignore[assignment,method-assign]
        with pytest.raises(PipelineError, match="Build failed"):
            pipeline.build([a])


class TestExport:
    def test_export_written_after_build(self, tmp_path: Path):
        a = _write(tmp_path, "a.md", TWO_PARAGRAPHS)
        _make_pipeline(tmp_path, export=True).build([a])
        chunks = read_chunks_jsonl(tmp_path / "state" / "chunks.jsonl")
        assert len(chunks) == 2

    def test_no_export_when_nothing_processed(self, tmp_path: Path):
        _make_pipeline(tmp_path, export=True).build([tmp_path / "missing.md"])
        assert not (tmp_path / "state" / "chunks.jsonl").exists()
