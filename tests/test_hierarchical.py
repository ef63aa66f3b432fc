"""Tests for heading-tree sectioning and parent links."""

from __future__ import annotations

import pytest

from ragidx.chunk import Chunker
from ragidx.chunk.hierarchical import hierarchical_sections
from ragidx.config import ChunkConfig
from ragidx.types import ChunkStrategy

NESTED = "# A\nx\n## B\ny\n### C\nz"


def _config(**kwargs) -> ChunkConfig:
    defaults = {"strategy": "hierarchical", "max_chars": 200, "min_chars": 0, "overlap_chars": 0}
    defaults.update(kwargs)
    return ChunkConfig(**defaults)


@pytest.fixture
def chunker() -> Chunker:
    return Chunker()


class TestHierarchicalSections:
    def test_levels_and_parents(self):
        sections = hierarchical_sections(NESTED, _config())
        assert [(s.start, s.end, s.level, s.parent) for s in sections] == [
            (0, 6, 1, None),
            (6, 13, 2, 0),
            (13, 20, 3, 1),
        ]

    def test_preamble_is_level_zero(self):
        sections = hierarchical_sections("intro text\n# A\nbody\n", _config())
        assert sections[0].level == 0
        assert sections[0].parent is None
        assert sections[1].parent is None

    def test_skipped_level_links_to_nearest_ancestor(self):
        sections = hierarchical_sections("# A\nx\n### C\nz\n", _config())
        assert sections[1].level == 3
        assert sections[1].parent == 0

    def test_sibling_resets_deeper_levels(self):
        text = "# A\nx\n## B\ny\n### C\nz\n## D\nw\n### E\nv\n"
        sections = hierarchical_sections(text, _config())
        assert [s.parent for s in sections] == [None, 0, 1, 0, 3]

    @pytest.mark.parametrize("line", ["#Title", "####### seven", "##"])
    def test_non_headings_stay_content(self, line: str):
        sections = hierarchical_sections(f"{line}\nbody\n", _config())
        assert len(sections) == 1
        assert sections[0].level == 0

    def test_small_sections_absorbed(self):
        sections = hierarchical_sections(NESTED, _config(min_chars=10))
        assert len(sections) == 1
        assert (sections[0].start, sections[0].end) == (0, len(NESTED))

    def test_parent_links_disabled(self):
        sections = hierarchical_sections(NESTED, _config(create_parent_chunks=False))
        assert [s.parent for s in sections] == [None, None, None]
        assert [s.level for s in sections] == [1, 2, 3]

    def test_oversized_section_not_split(self):
        text = "# Big\n" + "word " * 100
        sections = hierarchical_sections(text, _config(max_chars=100))
        assert len(sections) == 1
        assert sections[0].end == len(text)


class TestHierarchicalChunks:
    def test_parent_ids_point_backwards(self, chunker: Chunker):
        chunks = chunker.chunk(NESTED, _config(), strategy=ChunkStrategy.HIERARCHICAL)
        assert len(chunks) == 3
        a, b, c = chunks
        assert a.parent_id is None
        assert b.parent_id == a.chunk_id
        assert c.parent_id == b.chunk_id
        assert [ch.hierarchy_level for ch in chunks] == [1, 2, 3]

    def test_parent_context_truncated(self, chunker: Chunker):
        chunks = chunker.chunk(NESTED, _config(parent_context_chars=3))
        assert chunks[0].parent_context is None
        assert chunks[1].parent_context == "# A"
        assert chunks[2].parent_context == "## "

    def test_parent_context_disabled(self, chunker: Chunker):
        chunks = chunker.chunk(NESTED, _config(parent_context_chars=0))
        assert chunks[1].parent_id is not None
        assert chunks[1].parent_context is None

    def test_markdown_file_tree(self, chunker: Chunker, markdown_file):
        text = markdown_file.read_text(encoding="utf-8")
        chunks = chunker.chunk(text, _config())
        by_heading = {c.content.text.splitlines()[0]: c for c in chunks}
        guide = by_heading["# Guide"]
        install = by_heading["## Install"]
        linux = by_heading["### Linux"]
        usage = by_heading["## Usage"]
        assert install.parent_id == guide.chunk_id
        assert linux.parent_id == install.chunk_id
        assert usage.parent_id == guide.chunk_id
