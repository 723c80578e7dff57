"""
Hybrid fusion of semantic and lexical scores.

fused = semantic * w + keyword * (1 - w)

By default the two signals are combined as-is even though BM25 and cosine
similarity live on different scales. ``normalization="minmax"`` rescales
each signal to [0, 1] across the candidate set first.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from ..infra.logging import get_logger
from .errors import ConfigError, EmptyCorpusError, MalformedQueryError
from .lexical import bm25_scores
from .semantic import SemanticScorer
from .types import Chunk, SearchResult

logger = get_logger(__name__)

NORMALIZATIONS = ("none", "minmax")


@dataclass
class FusionOutcome:
    """Fused results plus what went missing on the semantic side."""
    results: List[SearchResult]
    failed_chunk_ids: List[str] = field(default_factory=list)
    candidate_count: int = 0

    @property
    def degraded(self) -> bool:
        return bool(self.failed_chunk_ids)


def minmax_normalize(values: Sequence[float]) -> List[float]:
    """Scale values to [0, 1]; a constant sequence maps to all zeros."""
    if not values:
        return []
    lo, hi = min(values), max(values)
    if hi == lo:
        return [0.0] * len(values)
    span = hi - lo
    return [(v - lo) / span for v in values]


def validate_fusion_params(top_k: int, semantic_weight: float, normalization: str) -> None:
    if top_k <= 0:
        raise ConfigError(f"top_k must be positive, got {top_k}")
    if not 0.0 <= semantic_weight <= 1.0:
        raise ConfigError(f"semantic_weight must be in [0, 1], got {semantic_weight}")
    if normalization not in NORMALIZATIONS:
        raise ConfigError(f"normalization must be one of {NORMALIZATIONS}, got {normalization!r}")


def fuse_scores(
    chunks: Sequence[Chunk],
    semantic_scores: Dict[str, float],
    keyword_scores: Sequence[float],
    top_k: int,
    semantic_weight: float = 0.7,
    normalization: str = "none",
    failed: Iterable[str] = (),
    embeddings: Optional[Dict[str, List[float]]] = None,
) -> List[SearchResult]:
    """
    Combine per-chunk scores and return the best ``top_k``.

    Args:
        chunks: Candidate chunks
        semantic_scores: Cosine score per chunk id (missing ids score 0)
        keyword_scores: BM25 score per chunk, in ``chunks`` order
        top_k: Number of results to return
        semantic_weight: Weight of the semantic signal in [0, 1]
        normalization: "none" or "minmax"
        failed: Chunk ids whose embedding was unavailable
        embeddings: Chunk embeddings to attach to results

    Returns:
        SearchResults sorted by fused score, highest first
    """
    validate_fusion_params(top_k, semantic_weight, normalization)
    if len(keyword_scores) != len(chunks):
        raise ValueError(f"got {len(keyword_scores)} keyword scores for {len(chunks)} chunks")

    failed_ids = set(failed)
    embeddings = embeddings or {}
    semantic = [semantic_scores.get(c.id, 0.0) for c in chunks]
    keyword = list(keyword_scores)

    if normalization == "minmax":
        sem_in, kw_in = minmax_normalize(semantic), minmax_normalize(keyword)
    else:
        sem_in, kw_in = semantic, keyword

    keyword_weight = 1.0 - semantic_weight
    results = [
        SearchResult(
            chunk=chunk,
            semantic_score=semantic[i],
            keyword_score=keyword[i],
            score=sem_in[i] * semantic_weight + kw_in[i] * keyword_weight,
            embedding=embeddings.get(chunk.id),
            semantic_missing=chunk.id in failed_ids,
        )
        for i, chunk in enumerate(chunks)
    ]
    # sorted() is stable, so ties keep candidate order
    results = sorted(results, key=lambda r: r.score, reverse=True)
    return results[:top_k]


def hybrid_search_with_report(
    query: str,
    chunks: Sequence[Chunk],
    top_k: int,
    semantic_weight: float = 0.7,
    *,
    scorer: SemanticScorer,
    normalization: str = "none",
    cancel_event: Optional[threading.Event] = None,
) -> FusionOutcome:
    """
    Score chunks lexically and semantically and fuse the results.

    BM25 runs while the embedding requests are in flight.

    Raises:
        MalformedQueryError: Empty or whitespace-only query
        EmptyCorpusError: No candidate chunks
        ConfigError: Invalid top_k, semantic_weight or normalization
        EmbeddingProviderError: Provider unreachable for this query
        QueryCancelledError: ``cancel_event`` set while waiting
    """
    if not query or not query.strip():
        raise MalformedQueryError("query must not be empty")
    validate_fusion_params(top_k, semantic_weight, normalization)
    if not chunks:
        raise EmptyCorpusError("no chunks available to search")

    pending = scorer.submit(query, chunks)
    keyword = bm25_scores(query, chunks)
    semantic = pending.result(cancel_event)

    results = fuse_scores(
        chunks,
        semantic.scores,
        keyword,
        top_k,
        semantic_weight=semantic_weight,
        normalization=normalization,
        failed=semantic.failed,
        embeddings=semantic.embeddings,
    )
    logger.debug(
        "hybrid_search_complete",
        candidates=len(chunks),
        returned=len(results),
        semantic_weight=semantic_weight,
        normalization=normalization,
        degraded=semantic.degraded,
    )
    return FusionOutcome(results=results, failed_chunk_ids=list(semantic.failed), candidate_count=len(chunks))


def hybrid_search(
    query: str,
    chunks: Sequence[Chunk],
    top_k: int = 5,
    semantic_weight: float = 0.7,
    *,
    scorer: SemanticScorer,
    normalization: str = "none",
    cancel_event: Optional[threading.Event] = None,
) -> List[SearchResult]:
    """Hybrid search returning only the fused results."""
    return hybrid_search_with_report(
        query,
        chunks,
        top_k,
        semantic_weight,
        scorer=scorer,
        normalization=normalization,
        cancel_event=cancel_event,
    ).results
