"""Fusion policies combining lexical and semantic relevance.

Two interchangeable implementations of ``FusionPolicy``:
- ``RrfFusion``: weighted Reciprocal Rank Fusion over a keyword list and a
  cosine list
- ``AdaptiveFusion``: linear interpolation with query-adaptive weights and
  identifier (anchor) boosting

Both degrade to lexical ranking when no query vector is available.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from ragidx.search.scoring import (
    ANCHOR_EXACT_BOOST,
    ANCHOR_PARTIAL_BOOST,
    adaptive_weights,
    anchor_boost,
    cosine_similarity,
    detect_anchor_terms,
    keyword_match_ratio,
    normalize_cosine,
    query_specificity,
    query_terms,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ragidx.config import SearchConfig
    from ragidx.corpus import Corpus
    from ragidx.types import Chunk

__all__ = [
    "AdaptiveFusion",
    "FusionConfig",
    "FusionPolicy",
    "RrfFusion",
    "ScoredChunk",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FusionConfig:
    """Tunable fusion constants; defaults reproduce the reference rankings."""

    rrf_k: int = 60
    keyword_weight: float = 0.3
    semantic_weight: float = 0.7
    anchor_exact_boost: float = ANCHOR_EXACT_BOOST
    anchor_partial_boost: float = ANCHOR_PARTIAL_BOOST

    @classmethod
    def from_search_config(cls, config: SearchConfig) -> FusionConfig:
        return cls(
            rrf_k=config.rrf_k,
            keyword_weight=config.keyword_weight,
            semantic_weight=config.semantic_weight,
            anchor_exact_boost=config.anchor_exact_boost,
            anchor_partial_boost=config.anchor_partial_boost,
        )


@dataclass(frozen=True)
class ScoredChunk:
    chunk: Chunk
    score: float
    keyword_rank: int


class FusionPolicy(ABC):
    """Ranks a corpus against a query, optionally using a query vector."""

    name: ClassVar[str]

    def __init__(self, config: FusionConfig | None = None) -> None:
        self.config = config or FusionConfig()

    @abstractmethod
    def rank(
        self,
        query: str,
        corpus: Corpus,
        query_vector: Sequence[float] | None = None,
    ) -> list[ScoredChunk]:
        """Score and sort candidate chunks, best first.

        Args:
            query: Raw query text.
            corpus: Snapshot to rank.
            query_vector: Query embedding; ``None`` selects the lexical path.

        Returns:
            All candidates sorted by score descending, ties broken by keyword
            rank then corpus order. Callers truncate to ``top_k``.
        """

    # --- Shared helpers ---

    @staticmethod
    def _keyword_ranking(query: str, corpus: Corpus) -> tuple[dict[str, float], dict[str, int]]:
        """Keyword ratios for matching chunks and their 0-based ranks."""
        terms = query_terms(query)
        ratios: dict[str, float] = {}
        for chunk in corpus:
            ratio = keyword_match_ratio(terms, chunk.content.text)
            if ratio > 0:
                ratios[chunk.chunk_id] = ratio
        ordered = sorted(ratios, key=lambda cid: (-ratios[cid], corpus.position(cid)))
        return ratios, {cid: rank for rank, cid in enumerate(ordered)}

    @staticmethod
    def _semantic_scores(query_vector: Sequence[float], corpus: Corpus) -> dict[str, float]:
        """Raw cosine similarity for every chunk that has a vector."""
        scores: dict[str, float] = {}
        for chunk in corpus:
            vector = corpus.vector(chunk.chunk_id)
            if vector is not None:
                scores[chunk.chunk_id] = cosine_similarity(query_vector, vector)
        return scores

    @staticmethod
    def _sorted(
        scores: dict[str, float],
        keyword_ranks: dict[str, int],
        corpus: Corpus,
    ) -> list[ScoredChunk]:
        unranked = len(keyword_ranks)
        results: list[ScoredChunk] = []
        for cid, score in scores.items():
            chunk = corpus.get(cid)
            if chunk is None:
                continue
            results.append(ScoredChunk(chunk, score, keyword_ranks.get(cid, unranked)))
        results.sort(key=lambda r: (-r.score, r.keyword_rank, corpus.position(r.chunk.chunk_id)))
        return results


class RrfFusion(FusionPolicy):
    """Weighted Reciprocal Rank Fusion.

    Each list contributes ``weight / (k + rank + 1)`` per chunk, rank 0-based.
    Only chunks with a keyword ratio above zero enter the keyword list; only
    chunks with a vector enter the semantic list.
    """

    name = "rrf"

    def rank(
        self,
        query: str,
        corpus: Corpus,
        query_vector: Sequence[float] | None = None,
    ) -> list[ScoredChunk]:
        cfg = self.config
        ratios, keyword_ranks = self._keyword_ranking(query, corpus)

        if query_vector:
            keyword_weight, semantic_weight = cfg.keyword_weight, cfg.semantic_weight
            semantic = self._semantic_scores(query_vector, corpus)
        else:
            keyword_weight, semantic_weight = 1.0, 0.0
            semantic = {}

        fused: dict[str, float] = {}
        for cid, rank in keyword_ranks.items():
            fused[cid] = fused.get(cid, 0.0) + keyword_weight / (cfg.rrf_k + rank + 1)

        semantic_order = sorted(semantic, key=lambda cid: (-semantic[cid], corpus.position(cid)))
        for rank, cid in enumerate(semantic_order):
            fused[cid] = fused.get(cid, 0.0) + semantic_weight / (cfg.rrf_k + rank + 1)

        logger.debug(
            "RRF: %d keyword hits, %d semantic candidates", len(ratios), len(semantic_order)
        )
        return self._sorted(fused, keyword_ranks, corpus)


class AdaptiveFusion(FusionPolicy):
    """Linear fusion with query-adaptive weights and anchor boosting.

    With a query vector: ``semantic01 * w_sem + keyword * w_kw + boost``.
    Without one: ``keyword + boost``.
    """

    name = "adaptive"

    def rank(
        self,
        query: str,
        corpus: Corpus,
        query_vector: Sequence[float] | None = None,
    ) -> list[ScoredChunk]:
        cfg = self.config
        anchors = detect_anchor_terms(query)
        specificity = query_specificity(query, anchors)
        keyword_weight, semantic_weight = adaptive_weights(len(anchors), specificity)
        logger.debug(
            "Adaptive fusion: anchors=%s specificity=%.2f kw=%.2f sem=%.2f",
            anchors,
            specificity,
            keyword_weight,
            semantic_weight,
        )

        ratios, keyword_ranks = self._keyword_ranking(query, corpus)
        semantic = self._semantic_scores(query_vector, corpus) if query_vector else {}

        scores: dict[str, float] = {}
        for chunk in corpus:
            cid = chunk.chunk_id
            boost = anchor_boost(
                anchors,
                chunk.content.text,
                exact_boost=cfg.anchor_exact_boost,
                partial_boost=cfg.anchor_partial_boost,
            )
            keyword = ratios.get(cid, 0.0)
            if query_vector:
                if keyword <= 0 and boost <= 0 and cid not in semantic:
                    continue
                score = keyword * keyword_weight + boost
                if cid in semantic:
                    score += normalize_cosine(semantic[cid]) * semantic_weight
            else:
                if keyword <= 0 and boost <= 0:
                    continue
                score = keyword + boost
            scores[cid] = score

        return self._sorted(scores, keyword_ranks, corpus)
