"""Ollama embedding provider using the /api/embed endpoint.

Default provider for ragidx: a locally running Ollama with nomic-embed-text.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ragidx.embed.base import BaseEmbedder
from ragidx.embed.batching import BatchRunner
from ragidx.exceptions import EmbeddingError, RateLimitError

if TYPE_CHECKING:
    from ragidx.config import RagidxConfig

__all__ = ["OllamaEmbedder"]

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaEmbedder(BaseEmbedder):
    """Embedding provider using a local Ollama instance.

    Config fields used::

        [embedding]
        model = "nomic-embed-text"
        provider = "ollama"
        base_url = ""           # empty = http://localhost:11434
        batch_size = 50
        batch_delay_s = 0.1
        rate_limit_cooldown_s = 60.0
    """

    _DEFAULT_TIMEOUT = 120  # seconds

    def __init__(self, config: RagidxConfig) -> None:
        super().__init__()
        self.model = config.embedding.model
        self._base_url = (config.embedding.base_url or _DEFAULT_BASE_URL).rstrip("/")
        self._runner = BatchRunner(
            config.embedding.batch_size,
            delay_s=config.embedding.batch_delay_s,
            cooldown_s=config.embedding.rate_limit_cooldown_s,
        )
        self._dimension: int | None = None

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed texts via Ollama in batches of ``batch_size``.

        Raises:
            EmbeddingError: If Ollama is not reachable or returns an error.
        """
        if not texts:
            return []
        vectors, tokens = self._runner.run(texts, self._call_embed)
        self._tokens_used += tokens
        logger.info("Embedded %d texts via Ollama (%s)", len(vectors), self.model)
        return vectors

    def embed_query(self, text: str) -> list[float]:
        vectors, tokens = self._call_embed([text])
        self._tokens_used += tokens
        return vectors[0]

    @property
    def dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Warning:
            First access embeds a sample query to learn the size.
        """
        if self._dimension is None:
            self._dimension = len(self.embed_query("dimension check"))
        return self._dimension

    def _call_embed(self, texts: list[str]) -> tuple[list[list[float]], int]:
        """Call the Ollama /api/embed endpoint.

        Returns:
            Embedding vectors and the prompt token count Ollama reports.

        Raises:
            RateLimitError: On HTTP 429.
            EmbeddingError: On connection or API errors.
        """
        url = f"{self._base_url}/api/embed"
        payload = json.dumps({"model": self.model, "input": texts}).encode("utf-8")
        req = Request(url, data=payload, headers={"Content-Type": "application/json"})

        try:
            with urlopen(req, timeout=self._DEFAULT_TIMEOUT) as resp:
                body = resp.read()
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise EmbeddingError(f"Ollama returned invalid JSON from {url}") from e
        except HTTPError as e:
            if e.code == 429:
                raise RateLimitError(f"Ollama rate limited the request: {e.reason}") from e
            raise EmbeddingError(f"Ollama API error (HTTP {e.code}): {e.reason}") from e
        except (ConnectionError, URLError) as e:
            raise EmbeddingError(
                f"Ollama not reachable at {self._base_url}. Is Ollama running? Error: {e}"
            ) from e

        embeddings: list[list[float]] = data.get("embeddings", [])
        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"Ollama returned {len(embeddings)} embeddings for {len(texts)} inputs"
            )

        if embeddings and self._dimension is None:
            self._dimension = len(embeddings[0])

        return embeddings, int(data.get("prompt_eval_count", 0) or 0)
