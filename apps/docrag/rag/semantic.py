"""
Semantic scoring: cosine similarity between a query embedding and chunk
embeddings obtained from the embedding provider.

All embeddings needed for one query are requested concurrently. Results
are tied back to chunks through an explicit future -> key mapping, so a
slow or failed request can never shift another chunk's vector.
"""

from __future__ import annotations

import concurrent.futures
import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..infra.logging import get_logger
from .embeddings import EmbeddingProvider
from .errors import EmbeddingProviderError, QueryCancelledError
from .types import Chunk

logger = get_logger(__name__)

_QUERY_KEY = "__query__"


def cosine_similarity(a: Any, b: Any) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 (and logs a warning) when either vector has zero norm.

    Raises:
        ValueError: If the vectors have different dimensions
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"dimension mismatch: {va.shape} vs {vb.shape}")
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        logger.warning("zero_norm_vector", norm_a=norm_a, norm_b=norm_b)
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _is_empty(vector: Any) -> bool:
    return vector is None or len(vector) == 0


class EmbeddingCache:
    """
    Memo of chunk embeddings keyed by the hash of the chunk text.

    Bounded; the oldest entry is evicted first. Thread-safe. Vectors are
    stored as tuples and handed out as fresh lists, so callers cannot alter
    cached values.
    """

    def __init__(self, max_size: int = 10_000):
        self._entries: "OrderedDict[str, Tuple[float, ...]]" = OrderedDict()
        self._max_size = max(1, max_size)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, text: str) -> Optional[List[float]]:
        key = content_hash(text)
        with self._lock:
            vec = self._entries.get(key)
            if vec is None:
                self._misses += 1
                return None
            self._hits += 1
            return list(vec)

    def set(self, text: str, vector: List[float]) -> None:
        key = content_hash(text)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._entries.popitem(last=False)
            self._entries[key] = tuple(vector)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self._max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0.0,
            }


@dataclass
class SemanticScores:
    """Per-chunk cosine scores for one query, keyed by chunk id."""
    scores: Dict[str, float]
    embeddings: Dict[str, List[float]]
    failed: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.failed)


class PendingSemanticScores:
    """
    Embedding requests in flight for one query.

    Call ``result()`` to wait for them and compute the scores.
    """

    def __init__(
        self,
        executor: concurrent.futures.ThreadPoolExecutor,
        futures: Dict[concurrent.futures.Future, str],
        chunks: Sequence[Chunk],
        known: Dict[str, List[float]],
        text_keys: Dict[str, str],
        cache: Optional[EmbeddingCache],
        timeout_s: float,
        poll_interval_s: float,
        emit: Callable[[str, str], None],
    ):
        self._executor = executor
        self._futures = futures
        self._chunks = list(chunks)
        self._known = known
        self._text_keys = text_keys
        self._cache = cache
        self._deadline = time.monotonic() + timeout_s
        self._poll = poll_interval_s
        self._emit = emit

    def _collect(self, cancel_event: Optional[threading.Event]) -> Dict[str, Any]:
        """Wait for futures; return key -> vector or the exception raised."""
        outcomes: Dict[str, Any] = {}
        pending = set(self._futures)
        try:
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    raise QueryCancelledError("query cancelled while embeddings were in flight")
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, pending = concurrent.futures.wait(
                    pending,
                    timeout=min(self._poll, remaining),
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in done:
                    key = self._futures[future]
                    try:
                        outcomes[key] = future.result()
                    except Exception as e:
                        outcomes[key] = e
            for future in pending:
                outcomes[self._futures[future]] = TimeoutError("embedding request timed out")
        finally:
            self._executor.shutdown(wait=False, cancel_futures=True)
        return outcomes

    def result(self, cancel_event: Optional[threading.Event] = None) -> SemanticScores:
        """
        Wait for all embeddings and score every chunk.

        Raises:
            QueryCancelledError: If ``cancel_event`` is set before completion
            EmbeddingProviderError: If the query embedding failed, or every
                requested chunk embedding failed with nothing cached
        """
        outcomes = self._collect(cancel_event)

        query_vec = outcomes.pop(_QUERY_KEY, None)
        if isinstance(query_vec, BaseException) or _is_empty(query_vec):
            raise EmbeddingProviderError(f"query embedding failed: {query_vec!r}") from (
                query_vec if isinstance(query_vec, BaseException) else None
            )

        fetched: Dict[str, List[float]] = {}
        errors: Dict[str, BaseException] = {}
        for text_key, value in outcomes.items():
            if isinstance(value, BaseException):
                errors[text_key] = value
            elif _is_empty(value):
                errors[text_key] = ValueError("provider returned an empty vector")
            else:
                fetched[text_key] = list(value)

        if outcomes and not fetched and not self._known:
            first = next(iter(errors.values()))
            raise EmbeddingProviderError(
                f"all {len(outcomes)} chunk embedding requests failed: {first}"
            ) from first

        scores: Dict[str, float] = {}
        embeddings: Dict[str, List[float]] = {}
        failed: List[str] = []
        for chunk in self._chunks:
            vec = self._known.get(chunk.id)
            if vec is None:
                vec = fetched.get(self._text_keys.get(chunk.id, ""))
                if vec is not None and self._cache is not None:
                    self._cache.set(chunk.text, vec)
            if vec is None:
                failed.append(chunk.id)
                scores[chunk.id] = 0.0
                continue
            try:
                scores[chunk.id] = cosine_similarity(query_vec, vec)
            except ValueError as e:
                logger.warning("embedding_dimension_mismatch", chunk_id=chunk.id, error=str(e))
                failed.append(chunk.id)
                scores[chunk.id] = 0.0
                continue
            embeddings[chunk.id] = vec

        if failed:
            logger.warning(
                "semantic_scores_degraded",
                failed=len(failed),
                total=len(self._chunks),
                errors=[str(e)[:120] for e in list(errors.values())[:3]],
            )
            self._emit("semantic_degraded", f"{len(failed)}/{len(self._chunks)} chunks scored on keywords only")
        return SemanticScores(scores=scores, embeddings=embeddings, failed=failed)


class SemanticScorer:
    """
    Scores chunks by cosine similarity to the query.

    Embeddings already attached to a chunk or present in the cache are
    reused; everything else is fetched concurrently, one request per
    distinct chunk text plus one for the query.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        cache: Optional[EmbeddingCache] = None,
        max_workers: int = 8,
        timeout_s: float = 60.0,
        poll_interval_s: float = 0.05,
        thinking_callback: Optional[Callable[[str, str], None]] = None,
    ):
        """
        Args:
            embedder: Embedding provider
            cache: Embedding memo; None re-embeds every chunk on every query
            max_workers: Concurrent embedding requests per query
            timeout_s: Overall deadline for one query's embeddings
            poll_interval_s: How often cancellation is checked while waiting
            thinking_callback: Optional callback for progress events
        """
        self.embedder = embedder
        self.cache = cache
        self.max_workers = max(1, max_workers)
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self._emit = thinking_callback or (lambda s, c: None)

    def submit(self, query: str, chunks: Sequence[Chunk]) -> PendingSemanticScores:
        """Start embedding requests for the query and any uncached chunks."""
        known: Dict[str, List[float]] = {}
        text_keys: Dict[str, str] = {}
        to_fetch: Dict[str, str] = {}  # text hash -> text

        for chunk in chunks:
            if not _is_empty(chunk.embedding):
                known[chunk.id] = list(chunk.embedding)
                continue
            if self.cache is not None:
                cached = self.cache.get(chunk.text)
                if cached is not None:
                    known[chunk.id] = cached
                    continue
            key = content_hash(chunk.text)
            text_keys[chunk.id] = key
            to_fetch.setdefault(key, chunk.text)

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(to_fetch) + 1),
            thread_name_prefix="docrag-embed",
        )
        futures: Dict[concurrent.futures.Future, str] = {
            executor.submit(self.embedder.embed, query): _QUERY_KEY,
        }
        for key, text in to_fetch.items():
            futures[executor.submit(self.embedder.embed, text)] = key

        self._emit(
            "semantic_submit",
            f"Embedding {len(to_fetch)} chunk texts ({len(known)} reused) for {len(chunks)} chunks",
        )
        return PendingSemanticScores(
            executor=executor,
            futures=futures,
            chunks=chunks,
            known=known,
            text_keys=text_keys,
            cache=self.cache,
            timeout_s=self.timeout_s,
            poll_interval_s=self.poll_interval_s,
            emit=self._emit,
        )

    def score(
        self,
        query: str,
        chunks: Sequence[Chunk],
        cancel_event: Optional[threading.Event] = None,
    ) -> SemanticScores:
        return self.submit(query, chunks).result(cancel_event)
