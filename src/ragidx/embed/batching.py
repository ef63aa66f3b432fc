"""Batch scheduling for embedding calls.

Splits inputs into fixed-size batches, sleeps a fixed delay between
batches, and retries a batch once after a cooldown when the provider
signals rate limiting.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from ragidx.exceptions import EmbeddingError, RateLimitError

if TYPE_CHECKING:
    from collections.abc import Callable

__all__ = ["BatchRunner"]

logger = logging.getLogger(__name__)


class BatchRunner:
    """Runs an embedding call over batches with pacing and one rate-limit retry.

    ``call`` takes a batch of texts and returns ``(vectors, tokens_used)``.
    """

    def __init__(
        self,
        batch_size: int,
        delay_s: float = 0.1,
        cooldown_s: float = 60.0,
    ) -> None:
        if batch_size < 1:
            raise EmbeddingError(f"batch_size must be >= 1, got {batch_size}")
        self.batch_size = batch_size
        self.delay_s = delay_s
        self.cooldown_s = cooldown_s

    def run(
        self,
        texts: list[str],
        call: Callable[[list[str]], tuple[list[list[float]], int]],
    ) -> tuple[list[list[float]], int]:
        """Embed all texts; returns vectors in input order and total tokens."""
        vectors: list[list[float]] = []
        tokens = 0
        for batch_start in range(0, len(texts), self.batch_size):
            if batch_start > 0 and self.delay_s > 0:
                time.sleep(self.delay_s)
            batch = texts[batch_start : batch_start + self.batch_size]
            try:
                batch_vectors, batch_tokens = call(batch)
            except RateLimitError:
                logger.warning(
                    "Rate limited at batch %d; retrying once after %.0fs",
                    batch_start // self.batch_size,
                    self.cooldown_s,
                )
                time.sleep(self.cooldown_s)
                batch_vectors, batch_tokens = call(batch)
            vectors.extend(batch_vectors)
            tokens += batch_tokens
        return vectors, tokens
