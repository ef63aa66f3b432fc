"""Tests for ragidx.embed: batching, OllamaEmbedder and OpenAICompatEmbedder."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError

import pytest

from ragidx.config import RagidxConfig
from ragidx.embed.base import BaseEmbedder
from ragidx.embed.batching import BatchRunner
from ragidx.embed.ollama import OllamaEmbedder
from ragidx.embed.openai_compat import OpenAICompatEmbedder
from ragidx.exceptions import EmbeddingError, RateLimitError
from ragidx.types import Chunk, ChunkContent, ChunkPosition

# --- Helpers ---

_FAKE_VECTOR = [0.1, 0.2, 0.3, 0.4, 0.5]


def _make_chunk(chunk_id: str, text: str = "test content") -> Chunk:
    return Chunk(
        chunk_id=chunk_id,
        doc_id="doc1",
        chunk_index=0,
        content=ChunkContent(text=text, text_hash="", char_count=len(text), token_count_approx=3),
        position=ChunkPosition(byte_start=0, byte_end=len(text)),
    )


def _make_config(provider: str = "ollama", batch_size: int = 50, **kwargs) -> RagidxConfig:
    config = RagidxConfig()
    config.embedding.provider = provider
    config.embedding.batch_size = batch_size
    for key, value in kwargs.items():
        setattr(config.embedding, key, value)
    return config


def _ollama_response(embeddings: list[list[float]], tokens: int = 0) -> bytes:
    """Build a mock Ollama /api/embed response body."""
    return json.dumps({"embeddings": embeddings, "prompt_eval_count": tokens}).encode("utf-8")


def _openai_response(embeddings: list[list[float]], tokens: int = 0) -> bytes:
    """Build a mock OpenAI /v1/embeddings response body."""
    data = [{"object": "embedding", "index": i, "embedding": e} for i, e in enumerate(embeddings)]
    body = {"object": "list", "data": data, "model": "test", "usage": {"total_tokens": tokens}}
    return json.dumps(body).encode("utf-8")


def _http_error(code: int, reason: str = "error") -> HTTPError:
    return HTTPError("http://localhost/api", code, reason, {}, None)  # type: ignore[arg-type]


class _FakeResponse:
    """Minimal mock for urllib.request.urlopen return value."""

    def __init__(self, data: bytes, status: int = 200) -> None:
        self._data = data
        self.status = status

    def read(self) -> bytes:
        return self._data

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *args: object) -> None:
        pass


# --- BatchRunner ---


class TestBatchRunner:
    def test_batches_in_order(self):
        seen: list[list[str]] = []

        def call(batch: list[str]) -> tuple[list[list[float]], int]:
            seen.append(batch)
            return [[float(len(t))] for t in batch], len(batch)

        runner = BatchRunner(2, delay_s=0.5)
        with patch("ragidx.embed.batching.time.sleep") as sleep:
            vectors, tokens = runner.run(["a", "bb", "ccc", "dddd", "e"], call)

        assert seen == [["a", "bb"], ["ccc", "dddd"], ["e"]]
        assert vectors == [[1.0], [2.0], [3.0], [4.0], [1.0]]
        assert tokens == 5
        assert sleep.call_count == 2
        sleep.assert_called_with(0.5)

    def test_rate_limit_retried_once(self):
        call = MagicMock(side_effect=[RateLimitError("429"), ([[1.0]], 7)])
        with patch("ragidx.embed.batching.time.sleep") as sleep:
            vectors, tokens = BatchRunner(10, cooldown_s=60.0).run(["a"], call)

        assert vectors == [[1.0]]
        assert tokens == 7
        assert call.call_count == 2
        sleep.assert_called_once_with(60.0)

    def test_second_rate_limit_propagates(self):
        call = MagicMock(side_effect=RateLimitError("429"))
        with (
            patch("ragidx.embed.batching.time.sleep"),
            pytest.raises(RateLimitError),
        ):
            BatchRunner(10).run(["a"], call)
        assert call.call_count == 2

    def test_other_errors_not_retried(self):
        call = MagicMock(side_effect=EmbeddingError("boom"))
        with pytest.raises(EmbeddingError, match="boom"):
            BatchRunner(10).run(["a"], call)
        assert call.call_count == 1

    def test_invalid_batch_size(self):
        with pytest.raises(EmbeddingError, match="batch_size"):
            BatchRunner(0)


# --- OllamaEmbedder ---


class TestOllamaEmbedder:
    def test_is_base_embedder(self):
        assert isinstance(OllamaEmbedder(_make_config()), BaseEmbedder)

    def test_embed_texts(self):
        embedder = OllamaEmbedder(_make_config())
        response = _FakeResponse(_ollama_response([_FAKE_VECTOR, _FAKE_VECTOR], tokens=12))
        with patch("ragidx.embed.ollama.urlopen", return_value=response):
            result = embedder.embed_texts(["hello", "world"])

        assert result == [_FAKE_VECTOR, _FAKE_VECTOR]
        assert embedder.tokens_used == 12
        assert embedder.dimension == 5

    def test_empty_input_makes_no_request(self):
        embedder = OllamaEmbedder(_make_config())
        with patch("ragidx.embed.ollama.urlopen") as mock_urlopen:
            assert embedder.embed_texts([]) == []
        mock_urlopen.assert_not_called()

    def test_request_payload(self):
        embedder = OllamaEmbedder(_make_config(base_url="http://gpu-box:11434/"))
        response = _FakeResponse(_ollama_response([_FAKE_VECTOR]))
        with patch("ragidx.embed.ollama.urlopen", return_value=response) as mock_urlopen:
            embedder.embed_query("what is D40")

        req = mock_urlopen.call_args[0][0]
        assert req.full_url == "http://gpu-box:11434/api/embed"
        assert json.loads(req.data) == {"model": "nomic-embed-text", "input": ["what is D40"]}

    def test_batches_requests(self):
        embedder = OllamaEmbedder(_make_config(batch_size=2))
        calls: list[list[str]] = []

        def mock_urlopen(req, timeout=None):
            texts = json.loads(req.data)["input"]
            calls.append(texts)
            return _FakeResponse(_ollama_response([_FAKE_VECTOR] * len(texts), tokens=1))

        with (
            patch("ragidx.embed.ollama.urlopen", side_effect=mock_urlopen),
            patch("ragidx.embed.batching.time.sleep"),
        ):
            result = embedder.embed_texts(["a", "b", "c"])

        assert len(result) == 3
        assert calls == [["a", "b"], ["c"]]
        assert embedder.tokens_used == 2

    def test_rate_limit_then_success(self):
        embedder = OllamaEmbedder(_make_config())
        responses = [
            _http_error(429, "Too Many Requests"),
            _FakeResponse(_ollama_response([_FAKE_VECTOR])),
        ]
        with (
            patch("ragidx.embed.ollama.urlopen", side_effect=responses),
            patch("ragidx.embed.batching.time.sleep") as sleep,
        ):
            result = embedder.embed_texts(["a"])

        assert result == [_FAKE_VECTOR]
        sleep.assert_called_once_with(60.0)

    def test_connection_error(self):
        embedder = OllamaEmbedder(_make_config())
        with (
            patch("ragidx.embed.ollama.urlopen", side_effect=ConnectionError("refused")),
            pytest.raises(EmbeddingError, match="not reachable"),
        ):
            embedder.embed_texts(["a"])

    def test_http_error(self):
        embedder = OllamaEmbedder(_make_config())
        with (
            patch("ragidx.embed.ollama.urlopen", side_effect=_http_error(500, "Server Error")),
            pytest.raises(EmbeddingError, match="HTTP 500"),
        ):
            embedder.embed_texts(["a"])

    def test_invalid_json(self):
        embedder = OllamaEmbedder(_make_config())
        with (
            patch("ragidx.embed.ollama.urlopen", return_value=_FakeResponse(b"not json")),
            pytest.raises(EmbeddingError, match="invalid JSON"),
        ):
            embedder.embed_texts(["a"])

    def test_count_mismatch(self):
        embedder = OllamaEmbedder(_make_config())
        response = _FakeResponse(_ollama_response([_FAKE_VECTOR]))
        with (
            patch("ragidx.embed.ollama.urlopen", return_value=response),
            pytest.raises(EmbeddingError, match="1 embeddings for 2 inputs"),
        ):
            embedder.embed_texts(["a", "b"])

    def test_embed_chunks(self):
        embedder = OllamaEmbedder(_make_config())
        response = _FakeResponse(_ollama_response([[1.0, 0.0], [0.0, 1.0]]))
        with patch("ragidx.embed.ollama.urlopen", return_value=response):
            vectors = embedder.embed_chunks([_make_chunk("c1"), _make_chunk("c2")])

        assert [v.chunk_id for v in vectors] == ["c1", "c2"]
        assert vectors[1].embedding == (0.0, 1.0)
        assert vectors[0].model == "nomic-embed-text"

    def test_embed_chunks_empty(self):
        assert OllamaEmbedder(_make_config()).embed_chunks([]) == []


# --- OpenAICompatEmbedder ---


class TestOpenAICompatEmbedder:
    def test_orders_by_index(self):
        embedder = OpenAICompatEmbedder(_make_config("openai"))
        body = {
            "data": [
                {"index": 1, "embedding": [0.0, 1.0]},
                {"index": 0, "embedding": [1.0, 0.0]},
            ],
            "usage": {"total_tokens": 9},
        }
        response = _FakeResponse(json.dumps(body).encode("utf-8"))
        with patch("ragidx.embed.openai_compat.urlopen", return_value=response):
            result = embedder.embed_texts(["first", "second"])

        assert result == [[1.0, 0.0], [0.0, 1.0]]
        assert embedder.tokens_used == 9

    def test_auth_header_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("RAGIDX_TEST_KEY", "sk-test")
        embedder = OpenAICompatEmbedder(_make_config("openai", api_key_env="RAGIDX_TEST_KEY"))
        response = _FakeResponse(_openai_response([_FAKE_VECTOR]))
        with patch("ragidx.embed.openai_compat.urlopen", return_value=response) as mock_urlopen:
            embedder.embed_query("q")

        req = mock_urlopen.call_args[0][0]
        assert req.get_header("Authorization") == "Bearer sk-test"
        assert req.full_url == "https://api.openai.com/v1/embeddings"

    def test_no_key_no_header(self):
        embedder = OpenAICompatEmbedder(_make_config("openai", base_url="http://proxy:4000/v1"))
        response = _FakeResponse(_openai_response([_FAKE_VECTOR]))
        with patch("ragidx.embed.openai_compat.urlopen", return_value=response) as mock_urlopen:
            embedder.embed_query("q")

        req = mock_urlopen.call_args[0][0]
        assert req.get_header("Authorization") is None
        assert req.full_url == "http://proxy:4000/v1/embeddings"

    def test_missing_usage_counts_zero(self):
        embedder = OpenAICompatEmbedder(_make_config("openai"))
        body = json.dumps({"data": [{"index": 0, "embedding": _FAKE_VECTOR}]}).encode("utf-8")
        with patch("ragidx.embed.openai_compat.urlopen", return_value=_FakeResponse(body)):
            embedder.embed_texts(["a"])
        assert embedder.tokens_used == 0

    def test_missing_embedding_field(self):
        embedder = OpenAICompatEmbedder(_make_config("openai"))
        body = json.dumps({"data": [{"index": 0}]}).encode("utf-8")
        with (
            patch("ragidx.embed.openai_compat.urlopen", return_value=_FakeResponse(body)),
            pytest.raises(EmbeddingError, match="missing 'embedding'"),
        ):
            embedder.embed_texts(["a"])

    def test_rate_limit_twice_fails(self):
        embedder = OpenAICompatEmbedder(_make_config("openai"))
        with (
            patch("ragidx.embed.openai_compat.urlopen", side_effect=_http_error(429)),
            patch("ragidx.embed.batching.time.sleep"),
            pytest.raises(RateLimitError),
        ):
            embedder.embed_texts(["a"])
