"""Hybrid lexical + semantic search over a corpus snapshot."""

from ragidx.search.engine import QueryEngine, SearchResponse, make_policy, search
from ragidx.search.fusion import AdaptiveFusion, FusionConfig, FusionPolicy, RrfFusion, ScoredChunk

__all__ = [
    "AdaptiveFusion",
    "FusionConfig",
    "FusionPolicy",
    "QueryEngine",
    "RrfFusion",
    "ScoredChunk",
    "SearchResponse",
    "make_policy",
    "search",
]
