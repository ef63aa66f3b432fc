"""Search entry point and query engine.

Selects a ranking path from the requested mode, embeds the query when an
embedder is available and turns ``ScoredChunk`` lists into ``RankedResult``
records. Embedding failures and missing vectors never abort a search: the
query drops to the lexical path and a ``degraded_retrieval`` warning is
returned with the results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ragidx.config import SearchConfig, validate_hydrate_config, validate_search_config
from ragidx.exceptions import ConfigError, EmbeddingError
from ragidx.hydrate import hydrate_many
from ragidx.search.fusion import AdaptiveFusion, FusionConfig, RrfFusion, ScoredChunk
from ragidx.search.scoring import cosine_similarity
from ragidx.types import ErrorCode, ErrorRecord, FusionKind, RankedResult, SearchMode

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ragidx.config import HydrateConfig, RagidxConfig
    from ragidx.corpus import Corpus
    from ragidx.embed.base import BaseEmbedder
    from ragidx.search.fusion import FusionPolicy
    from ragidx.store.base import BaseStore
    from ragidx.types import HydratedResult

__all__ = ["QueryEngine", "SearchResponse", "make_policy", "search"]

logger = logging.getLogger(__name__)

MIN_TOP_K = 1
MAX_TOP_K = 100


@dataclass
class SearchResponse:
    """Ranked results, the mode actually used and any degradation warnings."""

    results: list[RankedResult] = field(default_factory=list)
    mode: SearchMode = SearchMode.HYBRID
    warnings: list[ErrorRecord] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return any(w.code is ErrorCode.DEGRADED_RETRIEVAL for w in self.warnings)


def make_policy(kind: FusionKind | str, config: FusionConfig | None = None) -> FusionPolicy:
    """Create the fusion policy for ``kind``.

    Raises:
        ConfigError: If ``kind`` is not a known fusion policy.
    """
    try:
        resolved = FusionKind(kind)
    except ValueError as e:
        raise ConfigError(f"Unknown fusion policy: {kind!r}") from e
    if resolved is FusionKind.ADAPTIVE:
        return AdaptiveFusion(config)
    return RrfFusion(config)


def _degraded(message: str, warnings: list[ErrorRecord]) -> None:
    logger.warning("Degraded retrieval: %s", message)
    warnings.append(ErrorRecord(ErrorCode.DEGRADED_RETRIEVAL, message))


def _semantic_only(query_vector: Sequence[float], corpus: Corpus) -> list[ScoredChunk]:
    scored = []
    for chunk in corpus:
        vector = corpus.vector(chunk.chunk_id)
        if vector is None:
            continue
        scored.append(ScoredChunk(chunk, cosine_similarity(query_vector, vector), 0))
    scored.sort(key=lambda s: (-s.score, corpus.position(s.chunk.chunk_id)))
    return scored


def _to_result(scored: ScoredChunk) -> RankedResult:
    chunk = scored.chunk
    return RankedResult(
        chunk_id=chunk.chunk_id,
        score=scored.score,
        text=chunk.content.text,
        source_id=chunk.source.source_id,
        metadata=chunk.metadata,
        chunk=chunk,
    )


def search(
    query: str,
    corpus: Corpus,
    mode: SearchMode | str = SearchMode.HYBRID,
    top_k: int = 10,
    query_vector: Sequence[float] | None = None,
    embedder: BaseEmbedder | None = None,
    fusion: FusionKind | str = FusionKind.RRF,
    fusion_config: FusionConfig | None = None,
) -> SearchResponse:
    """Rank ``corpus`` against ``query``.

    Args:
        query: Raw query text.
        corpus: Snapshot to search.
        mode: ``keyword``, ``semantic`` or ``hybrid``.
        top_k: Number of results to return (1-100).
        query_vector: Precomputed query embedding.
        embedder: Used to embed the query when no vector is given.
        fusion: Fusion policy for hybrid mode and for the lexical fallback.
        fusion_config: Fusion constants; defaults when omitted.

    Returns:
        SearchResponse whose ``mode`` is the mode actually used.

    Raises:
        ConfigError: If ``mode``, ``fusion`` or ``top_k`` is invalid.
    """
    try:
        requested = SearchMode(mode)
    except ValueError as e:
        raise ConfigError(f"Unknown search mode: {mode!r}") from e
    if isinstance(top_k, bool) or not MIN_TOP_K <= top_k <= MAX_TOP_K:
        raise ConfigError(f"top_k must be between {MIN_TOP_K} and {MAX_TOP_K}, got {top_k}")
    policy = make_policy(fusion, fusion_config)

    response = SearchResponse(mode=requested)
    if not query.strip() or len(corpus) == 0:
        return response

    vector: Sequence[float] | None = None
    if query_vector is not None and len(query_vector) > 0:
        vector = query_vector
    if requested is not SearchMode.KEYWORD:
        if vector is None and embedder is not None:
            try:
                vector = embedder.embed_query(query)
            except EmbeddingError as e:
                _degraded(f"query embedding failed: {e}", response.warnings)
                vector = None
        elif vector is None:
            _degraded("no query vector and no embedder available", response.warnings)
        if vector is not None and not corpus.has_vectors:
            _degraded("corpus has no vectors", response.warnings)
            vector = None

    if requested is SearchMode.SEMANTIC and vector is not None:
        scored = _semantic_only(vector, corpus)
    elif requested is SearchMode.HYBRID and vector is not None:
        scored = policy.rank(query, corpus, vector)
    else:
        if requested is not SearchMode.KEYWORD:
            response.mode = SearchMode.KEYWORD
        scored = policy.rank(query, corpus, None)

    response.results = [_to_result(s) for s in scored[:top_k]]
    logger.info(
        "Search '%s' (%s/%s): %d results",
        query,
        response.mode.value,
        policy.name,
        len(response.results),
    )
    return response


class QueryEngine:
    """Binds a corpus snapshot, an optional embedder and config for repeated queries.

    Usage::

        engine = QueryEngine.from_store(store, embedder, config)
        response = engine.search("What is D40?")
        response, hydrated = engine.search_and_hydrate("D40", config.hydrate)
    """

    def __init__(
        self,
        corpus: Corpus,
        embedder: BaseEmbedder | None = None,
        config: SearchConfig | None = None,
    ) -> None:
        self.corpus = corpus
        self.embedder = embedder
        self.config = config or SearchConfig()
        validate_search_config(self.config)

    @classmethod
    def from_store(
        cls,
        store: BaseStore,
        embedder: BaseEmbedder | None = None,
        config: RagidxConfig | None = None,
    ) -> QueryEngine:
        corpus = store.load_corpus()
        return cls(corpus, embedder, config.search if config is not None else None)

    def search(
        self,
        query: str,
        *,
        mode: SearchMode | str | None = None,
        top_k: int | None = None,
        fusion: FusionKind | str | None = None,
        query_vector: Sequence[float] | None = None,
    ) -> SearchResponse:
        cfg = self.config
        return search(
            query,
            self.corpus,
            mode=mode or cfg.mode,
            top_k=top_k if top_k is not None else cfg.top_k,
            query_vector=query_vector,
            embedder=self.embedder,
            fusion=fusion or cfg.fusion,
            fusion_config=FusionConfig.from_search_config(cfg),
        )

    def search_and_hydrate(
        self,
        query: str,
        options: HydrateConfig,
        **kwargs: object,
    ) -> tuple[SearchResponse, list[HydratedResult]]:
        """Search, then hydrate every hit.

        Integrity anomalies found while hydrating are appended to the
        response warnings.
        """
        validate_hydrate_config(options)
        response = self.search(query, **kwargs)  # type: ignore[arg-type]
        hydrated = hydrate_many(response.results, self.corpus, options, response.warnings)
        return response, hydrated
