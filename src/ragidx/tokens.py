"""Token accounting for embedding cost estimates."""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING

import tiktoken

if TYPE_CHECKING:
    from collections.abc import Iterable

__all__ = ["count_tokens", "estimate_cost", "total_tokens"]

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=1)
def _get_encoding() -> tiktoken.Encoding:
    """Get the tiktoken encoding, lazily initialized and thread-safe."""
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Count tokens in text using cl100k_base encoding."""
    if not text:
        return 0
    return len(_get_encoding().encode(text, disallowed_special=()))


def total_tokens(texts: Iterable[str]) -> int:
    return sum(count_tokens(t) for t in texts)


def estimate_cost(tokens: int, cost_per_million: float) -> float:
    """Dollar cost for ``tokens`` at ``cost_per_million`` per 1M tokens."""
    return tokens / 1_000_000 * cost_per_million
