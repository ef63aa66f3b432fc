"""Scoring primitives shared by the fusion policies.

All functions here are pure and independently testable. The numeric
thresholds are empirically chosen constants; ranking expectations are
pinned to them, so change them through ``FusionConfig`` rather than here.
"""

from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = [
    "ANCHOR_PATTERNS",
    "BROAD_WORDS",
    "adaptive_weights",
    "anchor_boost",
    "cosine_similarity",
    "detect_anchor_terms",
    "keyword_match_ratio",
    "normalize_cosine",
    "query_specificity",
    "query_terms",
]

# Letter + 1-3 digits (D40, A108), 2-3 letters + 1-4 digits (SRD52),
# bare numbers of 3+ digits, and "quoted phrases"
ANCHOR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b([A-Z]\d{1,3})\b"),
    re.compile(r"\b([A-Z]{2,3}\d{1,4})\b"),
    re.compile(r"\b(\d{3,})\b"),
    re.compile(r'"([^"]+)"'),
)

BROAD_WORDS: frozenset[str] = frozenset(
    {"what", "how", "tell", "about", "explain", "describe", "overview"}
)

# Specificity contributions
ANCHOR_SPECIFICITY_STEP = 0.2
ANCHOR_SPECIFICITY_CAP = 0.5
SHORT_QUERY_WORDS = 3
SHORT_QUERY_BONUS = 0.2
MEDIUM_QUERY_WORDS = 6
MEDIUM_QUERY_BONUS = 0.1
BROAD_WORD_PENALTY = 0.2
SIGNIFICANT_WORD_MIN_LEN = 3

# Adaptive keyword weight
ANCHOR_KEYWORD_BASE = 0.3
ANCHOR_KEYWORD_STEP = 0.2
ANCHOR_KEYWORD_CAP = 0.7
PLAIN_KEYWORD_BASE = 0.5
PLAIN_KEYWORD_SLOPE = 0.3
PLAIN_KEYWORD_FLOOR = 0.2

ANCHOR_EXACT_BOOST = 0.4
ANCHOR_PARTIAL_BOOST = 0.15


def query_terms(query: str) -> list[str]:
    """Lowercased whitespace-split terms with surrounding double quotes removed."""
    terms = []
    for raw in query.lower().split():
        term = raw.strip('"')
        if term:
            terms.append(term)
    return terms


def keyword_match_ratio(terms: Sequence[str], text: str) -> float:
    """Fraction of query terms found as substrings of the lowercased text."""
    if not terms:
        return 0.0
    lowered = text.lower()
    matched = sum(1 for term in terms if term in lowered)
    return matched / len(terms)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for empty, mismatched or zero vectors."""
    if not a or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def normalize_cosine(similarity: float) -> float:
    """Map a cosine similarity from [-1, 1] to [0, 1]."""
    return (similarity + 1.0) / 2.0


def detect_anchor_terms(query: str) -> list[str]:
    """Identifier-like terms in the query, first occurrence order, no repeats."""
    anchors: list[str] = []
    for pattern in ANCHOR_PATTERNS:
        for match in pattern.finditer(query):
            term = match.group(1)
            if term not in anchors:
                anchors.append(term)
    return anchors


def query_specificity(query: str, anchors: Sequence[str]) -> float:
    """Heuristic [0, 1] score of how narrow and identifier-like a query is."""
    words = [w for w in query.lower().split() if len(w) >= SIGNIFICANT_WORD_MIN_LEN]

    specificity = min(ANCHOR_SPECIFICITY_CAP, len(anchors) * ANCHOR_SPECIFICITY_STEP)
    if len(words) <= SHORT_QUERY_WORDS:
        specificity += SHORT_QUERY_BONUS
    elif len(words) <= MEDIUM_QUERY_WORDS:
        specificity += MEDIUM_QUERY_BONUS
    if any(w in BROAD_WORDS for w in words):
        specificity -= BROAD_WORD_PENALTY

    return max(0.0, min(1.0, specificity))


def adaptive_weights(anchor_count: int, specificity: float) -> tuple[float, float]:
    """Return ``(keyword_weight, semantic_weight)``; the two always sum to 1."""
    if anchor_count > 0:
        keyword = min(ANCHOR_KEYWORD_CAP, ANCHOR_KEYWORD_BASE + anchor_count * ANCHOR_KEYWORD_STEP)
    else:
        keyword = max(PLAIN_KEYWORD_FLOOR, PLAIN_KEYWORD_BASE - specificity * PLAIN_KEYWORD_SLOPE)
    return keyword, 1.0 - keyword


def _exact_reference(anchor: str) -> re.Pattern[str]:
    prefix = r"\b" if re.match(r"\w", anchor) else ""
    return re.compile(prefix + re.escape(anchor) + r"\s*[.:)]", re.IGNORECASE)


def anchor_boost(
    anchors: Sequence[str],
    text: str,
    *,
    exact_boost: float = ANCHOR_EXACT_BOOST,
    partial_boost: float = ANCHOR_PARTIAL_BOOST,
) -> float:
    """Sum of per-anchor boosts for anchors that occur in ``text``.

    An anchor followed by ``.``, ``:`` or ``)`` counts as an exact reference
    and earns ``exact_boost``; any other case-insensitive occurrence earns
    ``partial_boost``.
    """
    if not anchors:
        return 0.0
    lowered = text.lower()
    boost = 0.0
    for anchor in anchors:
        if anchor.lower() not in lowered:
            continue
        boost += exact_boost if _exact_reference(anchor).search(text) else partial_boost
    return boost
