"""OpenAI-compatible embedding provider.

Works with any server implementing the OpenAI /v1/embeddings API:
OpenAI, LiteLLM proxy, vLLM, Ollama (OpenAI-compat mode), etc.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ragidx.embed.base import BaseEmbedder
from ragidx.embed.batching import BatchRunner
from ragidx.exceptions import EmbeddingError, RateLimitError

if TYPE_CHECKING:
    from ragidx.config import RagidxConfig

__all__ = ["OpenAICompatEmbedder"]

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatEmbedder(BaseEmbedder):
    """Embedding provider using any OpenAI-compatible /v1/embeddings endpoint.

    Config fields used::

        [embedding]
        model = "text-embedding-3-small"
        provider = "openai"
        api_key_env = "OPENAI_API_KEY"   # env var name; empty = no auth
        base_url = ""                     # empty = https://api.openai.com/v1
        batch_size = 50
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

        self._api_key: str | None = None
        if config.embedding.api_key_env:
            self._api_key = os.environ.get(config.embedding.api_key_env)
            if not self._api_key:
                logger.warning(
                    "API key env var %s is not set; requests may fail",
                    config.embedding.api_key_env,
                )

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in batches of ``batch_size``.

        Raises:
            EmbeddingError: If the API returns an error.
        """
        if not texts:
            return []
        vectors, tokens = self._runner.run(texts, self._call_embeddings)
        self._tokens_used += tokens
        logger.info(
            "Embedded %d texts via OpenAI-compatible API (%s)", len(vectors), self.model
        )
        return vectors

    def embed_query(self, text: str) -> list[float]:
        vectors, tokens = self._call_embeddings([text])
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

    def _call_embeddings(self, texts: list[str]) -> tuple[list[list[float]], int]:
        """Call the /v1/embeddings endpoint.

        Returns:
            Embedding vectors ordered by input index, and ``usage.total_tokens``.

        Raises:
            RateLimitError: On HTTP 429.
            EmbeddingError: On connection or API errors.
        """
        url = f"{self._base_url}/embeddings"
        payload = json.dumps({"model": self.model, "input": texts}).encode("utf-8")

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        req = Request(url, data=payload, headers=headers)

        try:
            with urlopen(req, timeout=self._DEFAULT_TIMEOUT) as resp:
                body = resp.read()
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise EmbeddingError(f"Embedding API returned invalid JSON from {url}") from e
        except HTTPError as e:
            if e.code == 429:
                raise RateLimitError(f"Embedding API rate limited the request: {e.reason}") from e
            raise EmbeddingError(f"Embedding API error (HTTP {e.code}): {e.reason}") from e
        except (ConnectionError, URLError) as e:
            raise EmbeddingError(
                f"Embedding API not reachable at {self._base_url}. Error: {e}"
            ) from e

        raw_items = data.get("data", [])
        if raw_items and all("index" in item for item in raw_items):
            raw_items = sorted(raw_items, key=lambda x: x["index"])

        try:
            embeddings: list[list[float]] = [item["embedding"] for item in raw_items]
        except (KeyError, TypeError) as e:
            raise EmbeddingError(
                f"Unexpected response format from {url}: missing 'embedding' field"
            ) from e

        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"API returned {len(embeddings)} embeddings for {len(texts)} inputs"
            )

        if embeddings and self._dimension is None:
            self._dimension = len(embeddings[0])

        usage = data.get("usage") or {}
        return embeddings, int(usage.get("total_tokens", 0) or 0)
