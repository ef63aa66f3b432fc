"""Span-producing splitters for the flat chunking strategies.

Every splitter returns character spans ``(start, end)`` over the normalized
document text. Non-overlapping splitters return contiguous spans whose union
is the whole text; chunk text is always an exact slice of the document, so
byte offsets can be derived from the spans without searching.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ragidx.config import ChunkConfig

__all__ = [
    "Span",
    "SpanSink",
    "apply_overlap",
    "by_heading_spans",
    "by_page_spans",
    "by_paragraph_spans",
    "by_sentence_spans",
    "fixed_chars_spans",
    "recursive_spans",
]

logger = logging.getLogger(__name__)

Span = tuple[int, int]

_PARAGRAPH_BREAK_RE = re.compile(r"\n{2,}")
_SENTENCE_END_RE = re.compile(r"[.!?]\s+")
_PAGE_BREAK_RE = re.compile(r"\f|\n{4,}")
_HEADING_LINE_RE = re.compile(r"^#{1,6}[ \t]+\S", re.MULTILINE)


class SpanSink:
    """Collects emitted spans and applies the merge-small rule.

    A span shorter than ``min_chars`` (or holding only whitespace) is folded
    into the previously emitted span. The very first span is kept standalone
    unless it is whitespace-only, in which case it is carried forward into
    the next emitted span.
    """

    def __init__(self, text: str, min_chars: int) -> None:
        self._text = text
        self._min_chars = min_chars
        self._pending: Span | None = None
        self.spans: list[Span] = []

    def emit(self, start: int, end: int) -> None:
        if end <= start:
            return
        if self._pending is not None:
            start = self._pending[0]
            self._pending = None

        blank = not self._text[start:end].strip()
        if self.spans and (blank or end - start < self._min_chars):
            prev_start, _ = self.spans[-1]
            self.spans[-1] = (prev_start, end)
            return
        if blank:
            self._pending = (start, end)
            return
        self.spans.append((start, end))

    def finish(self) -> list[Span]:
        if self._pending is not None:
            if self.spans:
                prev_start, _ = self.spans[-1]
                self.spans[-1] = (prev_start, self._pending[1])
            else:
                self.spans.append(self._pending)
            self._pending = None
        return self.spans


# --- Part splitting ---


def _split_on(text: str, start: int, end: int, sep: str) -> list[Span]:
    """Split ``text[start:end]`` on a literal separator; parts keep their trailing separator."""
    parts: list[Span] = []
    pos = start
    while pos < end:
        idx = text.find(sep, pos, end)
        if idx == -1:
            break
        cut = idx + len(sep)
        parts.append((pos, cut))
        pos = cut
    if pos < end:
        parts.append((pos, end))
    return parts


def _split_after(text: str, start: int, end: int, pattern: re.Pattern[str]) -> list[Span]:
    """Split ``text[start:end]`` after every regex match."""
    parts: list[Span] = []
    pos = start
    for m in pattern.finditer(text, start, end):
        if m.end() <= pos:
            continue
        parts.append((pos, m.end()))
        pos = m.end()
    if pos < end:
        parts.append((pos, end))
    return parts


def _hard_split(start: int, end: int, width: int) -> list[Span]:
    width = max(1, width)
    return [(s, min(s + width, end)) for s in range(start, end, width)]


def _accumulate(parts: Sequence[Span], max_chars: int, sink: SpanSink) -> None:
    """Greedily pack consecutive parts into spans of at most ``max_chars``."""
    buf_start: int | None = None
    buf_end = 0
    for part_start, part_end in parts:
        if part_end - part_start > max_chars:
            if buf_start is not None:
                sink.emit(buf_start, buf_end)
                buf_start = None
            for s, e in _hard_split(part_start, part_end, max_chars):
                sink.emit(s, e)
            continue
        if buf_start is not None and part_end - buf_start > max_chars:
            sink.emit(buf_start, buf_end)
            buf_start = None
        if buf_start is None:
            buf_start = part_start
        buf_end = part_end
    if buf_start is not None:
        sink.emit(buf_start, buf_end)


# --- Strategies ---


def _recurse(
    text: str,
    start: int,
    end: int,
    separators: Sequence[str],
    config: ChunkConfig,
    sink: SpanSink,
) -> None:
    if end - start <= config.max_chars:
        sink.emit(start, end)
        return

    for i, sep in enumerate(separators):
        parts = _split_on(text, start, end, sep)
        if len(parts) < 2:
            continue

        narrower = separators[i + 1 :]
        buf_start: int | None = None
        buf_end = 0
        for part_start, part_end in parts:
            if buf_start is not None and part_end - buf_start > config.max_chars:
                sink.emit(buf_start, buf_end)
                buf_start = None
            if part_end - part_start > config.max_chars:
                _recurse(text, part_start, part_end, narrower, config, sink)
                continue
            if buf_start is None:
                buf_start = part_start
            buf_end = part_end
        if buf_start is not None:
            sink.emit(buf_start, buf_end)
        return

    # No separator splits this range
    for s, e in _hard_split(start, end, config.max_chars - config.overlap_chars):
        sink.emit(s, e)


def recursive_spans(text: str, config: ChunkConfig) -> list[Span]:
    """Priority-separator recursive split, before overlap is applied."""
    sink = SpanSink(text, config.min_chars)
    _recurse(text, 0, len(text), list(config.separators), config, sink)
    return sink.finish()


def apply_overlap(spans: Sequence[Span], overlap_chars: int) -> list[Span]:
    """Prefix every span but the first with the tail of its predecessor."""
    if overlap_chars <= 0 or len(spans) < 2:
        return list(spans)
    result = [spans[0]]
    for (prev_start, _), (start, end) in zip(spans, spans[1:]):
        result.append((max(prev_start, start - overlap_chars), end))
    return result


def by_paragraph_spans(text: str, config: ChunkConfig) -> list[Span]:
    sink = SpanSink(text, config.min_chars)
    _accumulate(_split_after(text, 0, len(text), _PARAGRAPH_BREAK_RE), config.max_chars, sink)
    return sink.finish()


def by_sentence_spans(text: str, config: ChunkConfig) -> list[Span]:
    sink = SpanSink(text, config.min_chars)
    _accumulate(_split_after(text, 0, len(text), _SENTENCE_END_RE), config.max_chars, sink)
    return sink.finish()


def by_heading_spans(text: str, config: ChunkConfig) -> list[Span]:
    """One span per ATX heading section; oversized sections split at paragraphs."""
    starts = [m.start() for m in _HEADING_LINE_RE.finditer(text)]
    if not starts or starts[0] != 0:
        starts.insert(0, 0)
    bounds = [*starts[1:], len(text)]

    sink = SpanSink(text, config.min_chars)
    for start, end in zip(starts, bounds):
        if end - start > config.max_chars:
            parts = _split_after(text, start, end, _PARAGRAPH_BREAK_RE)
            _accumulate(parts, config.max_chars, sink)
        else:
            sink.emit(start, end)
    return sink.finish()


def by_page_spans(text: str, config: ChunkConfig) -> list[Span]:
    """One span per page, pages delimited by form feeds or runs of 4+ newlines."""
    sink = SpanSink(text, config.min_chars)
    for start, end in _split_after(text, 0, len(text), _PAGE_BREAK_RE):
        if end - start > config.max_chars:
            for s, e in _hard_split(start, end, config.max_chars):
                sink.emit(s, e)
        else:
            sink.emit(start, end)
    return sink.finish()


def fixed_chars_spans(text: str, config: ChunkConfig) -> list[Span]:
    """Windows of ``max_chars`` advancing by ``max_chars - overlap_chars``."""
    n = len(text)
    step = config.max_chars - config.overlap_chars
    sink = SpanSink(text, config.min_chars)
    start = 0
    while start < n:
        end = min(start + config.max_chars, n)
        sink.emit(start, end)
        if end >= n:
            break
        start += step
    return sink.finish()
