"""Heading-tree sectioning for the hierarchical strategy.

Sections run from one ATX heading line to the next. Each section carries
its heading depth and the index of its parent section, resolved with a
seven-slot parent stack while walking the document once, top to bottom.
Parents therefore always precede their children.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ragidx.config import ChunkConfig

__all__ = ["HEADING_RE", "HeadingSection", "hierarchical_sections"]

logger = logging.getLogger(__name__)

# "#Title", "## " and "####### x" do not match and stay ordinary content
HEADING_RE = re.compile(r"^(#{1,6})[ \t]+\S", re.MULTILINE)

MAX_LEVEL = 6


@dataclass
class HeadingSection:
    """A span of the document tagged with heading depth and parent index."""

    start: int
    end: int
    level: int
    parent: int | None = None


def _raw_sections(text: str) -> list[tuple[int, int, int]]:
    headings = [(m.start(), len(m.group(1))) for m in HEADING_RE.finditer(text)]
    raw: list[tuple[int, int, int]] = []
    first_heading = headings[0][0] if headings else len(text)
    if first_heading > 0:
        raw.append((0, first_heading, 0))
    for i, (start, level) in enumerate(headings):
        end = headings[i + 1][0] if i + 1 < len(headings) else len(text)
        raw.append((start, end, level))
    return raw


def hierarchical_sections(text: str, config: ChunkConfig) -> list[HeadingSection]:
    """Split text into heading sections with parent links.

    Whitespace-only sections and sections shorter than ``min_chars`` are
    folded into the previously emitted section so the document stays fully
    covered; the first non-blank section is always emitted.
    """
    stack: list[int | None] = [None] * (MAX_LEVEL + 1)
    sections: list[HeadingSection] = []
    carry_start: int | None = None

    for start, end, level in _raw_sections(text):
        if carry_start is not None:
            start, carry_start = carry_start, None

        blank = not text[start:end].strip()
        if sections and (blank or end - start < config.min_chars):
            sections[-1].end = end
            continue
        if blank:
            carry_start = start
            continue

        parent: int | None = None
        for ancestor_level in range(level - 1, 0, -1):
            if stack[ancestor_level] is not None:
                parent = stack[ancestor_level]
                break

        index = len(sections)
        sections.append(HeadingSection(start=start, end=end, level=level, parent=parent))

        if level > 0 and config.create_parent_chunks:
            stack[level] = index
            for deeper in range(level + 1, MAX_LEVEL + 1):
                stack[deeper] = None

    if carry_start is not None:
        if sections:
            sections[-1].end = len(text)
        else:
            sections.append(HeadingSection(start=carry_start, end=len(text), level=0))

    logger.debug("Hierarchical sectioning produced %d sections", len(sections))
    return sections
