"""
Reranking of fused search results.

A single pass over the incoming order computes three adjustments per
result (diversity, recency, length) and blends them with the fused score.
Membership never changes; only order and ``score`` do.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .types import RerankOptions, SearchResult

SAME_DOCUMENT_PENALTY = 0.3
MAX_DIVERSITY_PENALTY = 0.9
RECENCY_DECAY_DAYS = 30.0
NEUTRAL_RECENCY = 0.5
LENGTH_WEIGHT = 0.1


def diversity_scores(results: Sequence[SearchResult]) -> List[float]:
    """1 - min(0.3 * earlier results from the same document, 0.9), per result."""
    seen: Dict[str, int] = {}
    scores: List[float] = []
    for result in results:
        doc_id = result.chunk.document_id
        penalty = SAME_DOCUMENT_PENALTY * seen.get(doc_id, 0)
        scores.append(1.0 - min(penalty, MAX_DIVERSITY_PENALTY))
        seen[doc_id] = seen.get(doc_id, 0) + 1
    return scores


def recency_score(uploaded_at: Optional[datetime], now: datetime) -> float:
    if uploaded_at is None:
        return NEUTRAL_RECENCY
    days = (now - uploaded_at).total_seconds() / 86400.0
    return math.exp(-max(days, 0.0) / RECENCY_DECAY_DAYS)


def length_score(length: int, preference: str) -> float:
    if preference == "short":
        return math.exp(-length / 200)
    if preference == "long":
        return min(length / 500, 1.0)
    return math.exp(-abs(length - 300) / 200)


def rerank(
    results: Sequence[SearchResult],
    query: str,
    options: Optional[RerankOptions] = None,
    now: Optional[datetime] = None,
) -> List[SearchResult]:
    """
    Reorder results by diversity, recency and length preference.

    Args:
        results: Fused results in their pre-rerank order
        query: The query (unused by the current adjustments, kept for the contract)
        options: Rerank weights; defaults to RerankOptions()
        now: Reference time for recency; defaults to the current UTC time

    Returns:
        New SearchResults with overwritten ``score`` and component scores,
        sorted by final score
    """
    options = options or RerankOptions()
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    fused_weight = 1.0 - options.diversity_weight - options.recency_weight
    diversity = diversity_scores(results)

    reranked: List[SearchResult] = []
    for result, div in zip(results, diversity):
        rec = recency_score(result.chunk.metadata.uploaded_at, now)
        length = length_score(len(result.chunk.text), options.length_preference)
        final = (
            result.score * fused_weight
            + div * options.diversity_weight
            + rec * options.recency_weight
            + length * LENGTH_WEIGHT
        )
        reranked.append(replace(
            result,
            score=final,
            diversity_score=div,
            recency_score=rec,
            length_score=length,
        ))

    return sorted(reranked, key=lambda r: r.score, reverse=True)
