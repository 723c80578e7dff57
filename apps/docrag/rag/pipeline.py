"""
Advanced RAG query pipeline.

Composes chunking, hybrid search, reranking and citation assembly into one
request/response cycle over an agent's documents:

    request -> documents -> chunks (cached) -> hybrid search (2 * top_k)
            -> rerank -> top_k -> citations + context

The document store and the semantic scorer are passed in; nothing here is
process-global.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, Field

from ..infra.env import RetrievalSettings
from ..infra.logging import get_logger
from .chunker import chunk
from .citations import generate_citations, validate_citation_format
from .embeddings import EmbeddingProvider, OpenAIEmbedder
from .errors import EmptyCorpusError
from .fusion import hybrid_search_with_report
from .reranker import rerank
from .semantic import EmbeddingCache, SemanticScorer
from .types import Chunk, ChunkOptions, Citation, Document, RerankOptions, SearchResult

logger = get_logger(__name__)

NO_DOCUMENTS_MESSAGE = "No documents found for this agent"


class DocumentStore(Protocol):
    """Read-only view of stored documents."""

    def list_documents(self, agent_id: str) -> List[Document]:
        ...


class InMemoryDocumentStore:
    """Document store backed by a dict, keyed by agent id."""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Document]] = {}
        self._lock = threading.Lock()

    def add(self, agent_id: str, document: Document) -> None:
        with self._lock:
            self._docs.setdefault(agent_id, {})[document.id] = document

    def remove(self, agent_id: str, document_id: str) -> bool:
        with self._lock:
            return self._docs.get(agent_id, {}).pop(document_id, None) is not None

    def list_documents(self, agent_id: str) -> List[Document]:
        with self._lock:
            return list(self._docs.get(agent_id, {}).values())


class ChunkCache:
    """
    Chunks per document, reused across queries.

    Keyed by document id, a fingerprint of content and metadata, and the
    chunk options, so re-ingested or edited documents are re-chunked.
    Holds at most ``max_documents`` entries; the least recently used one is
    evicted first, so documents removed from the store age out.
    """

    def __init__(self, max_documents: int = 1000):
        self._entries: "OrderedDict[Tuple[str, str, ChunkOptions], Tuple[Chunk, ...]]" = OrderedDict()
        self._max_documents = max(1, max_documents)
        self._lock = threading.Lock()

    @staticmethod
    def _fingerprint(document: Document) -> str:
        payload = json.dumps(
            {"content": document.content, "metadata": document.metadata, "created_at": document.created_at},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def get_or_create(self, document: Document, options: ChunkOptions) -> Tuple[Chunk, ...]:
        key = (document.id, self._fingerprint(document), options)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self._entries.move_to_end(key)
                return cached
        chunks = tuple(chunk(document, options))
        with self._lock:
            # Drop stale entries for the same document
            for stale in [k for k in self._entries if k[0] == document.id and k != key]:
                del self._entries[stale]
            self._entries[key] = chunks
            while len(self._entries) > self._max_documents:
                self._entries.popitem(last=False)
        return chunks

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RerankOptionsModel(BaseModel):
    diversity_weight: float = 0.2
    recency_weight: float = 0.1
    length_preference: str = "medium"

    def to_options(self) -> RerankOptions:
        return RerankOptions(
            diversity_weight=self.diversity_weight,
            recency_weight=self.recency_weight,
            length_preference=self.length_preference,
        )


class RAGQueryRequest(BaseModel):
    query: str
    agent_id: str
    top_k: int = 5
    semantic_weight: float = 0.7
    citation_format: str = "simple"
    normalization: str = "none"
    rerank_options: RerankOptionsModel = Field(default_factory=RerankOptionsModel)


class ChunkView(BaseModel):
    id: str
    document_id: str
    filename: str
    chunk_index: int
    text: str
    start_index: int
    end_index: int
    page_number: Optional[int] = None
    section: Optional[str] = None
    score: float
    semantic_score: float
    keyword_score: float
    diversity_score: Optional[float] = None
    recency_score: Optional[float] = None
    length_score: Optional[float] = None
    semantic_missing: bool = False

    @classmethod
    def from_result(cls, result: SearchResult) -> "ChunkView":
        c = result.chunk
        return cls(
            id=c.id,
            document_id=c.document_id,
            filename=c.filename,
            chunk_index=c.chunk_index,
            text=c.text,
            start_index=c.start_index,
            end_index=c.end_index,
            page_number=c.metadata.page_number,
            section=c.metadata.section,
            score=result.score,
            semantic_score=result.semantic_score,
            keyword_score=result.keyword_score,
            diversity_score=result.diversity_score,
            recency_score=result.recency_score,
            length_score=result.length_score,
            semantic_missing=result.semantic_missing,
        )


class RetrievalStats(BaseModel):
    total_documents: int = 0
    total_chunks: int = 0
    searched_chunks: int = 0
    returned_chunks: int = 0
    failed_embeddings: int = 0
    latency_ms: float = 0.0


class RAGQueryResponse(BaseModel):
    context: str = ""
    citations: List[Citation] = Field(default_factory=list)
    chunks: List[ChunkView] = Field(default_factory=list)
    stats: RetrievalStats = Field(default_factory=RetrievalStats)
    degraded: bool = False
    warnings: List[str] = Field(default_factory=list)
    message: Optional[str] = None


def format_context(results: Sequence[SearchResult], max_length: Optional[int] = None) -> str:
    """
    Join ranked chunk texts as "[1] ...\\n\\n[2] ...".

    With ``max_length`` set, entries are added until the limit is reached and
    the last one is truncated to fit.
    """
    parts: List[str] = []
    for i, result in enumerate(results, 1):
        entry = f"[{i}] {result.chunk.text}"
        if max_length is not None:
            used = sum(len(p) for p in parts) + 2 * len(parts)
            remaining = max_length - used
            if remaining <= 0:
                break
            entry = entry[:remaining].rstrip()
        parts.append(entry)
    return "\n\n".join(parts)


class RAGPipeline:
    """
    End-to-end retrieval for one agent's documents.

    Errors that make the query meaningless (bad parameters, empty query,
    provider outage, cancellation) propagate. An agent with no documents
    gets an empty response instead.
    """

    def __init__(
        self,
        store: DocumentStore,
        scorer: SemanticScorer,
        chunk_options: Optional[ChunkOptions] = None,
        chunk_cache: Optional[ChunkCache] = None,
        thinking_callback: Optional[Callable[[str, str], None]] = None,
    ):
        """
        Args:
            store: Document store collaborator
            scorer: Semantic scorer wrapping the embedding provider
            chunk_options: Chunking parameters for every document
            chunk_cache: Chunk reuse across queries; a private cache if None
            thinking_callback: Optional callback for progress events
        """
        self.store = store
        self.scorer = scorer
        self.chunk_options = chunk_options or ChunkOptions()
        self.chunk_cache = chunk_cache if chunk_cache is not None else ChunkCache()
        self._emit = thinking_callback or (lambda s, c: None)

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        settings: Optional[RetrievalSettings] = None,
        embedder: Optional[EmbeddingProvider] = None,
        thinking_callback: Optional[Callable[[str, str], None]] = None,
    ) -> "RAGPipeline":
        """Build a pipeline from RetrievalSettings (read from the environment if None)."""
        settings = settings or RetrievalSettings.from_env()
        if embedder is None:
            embedder = OpenAIEmbedder(
                batch_size=settings.embed_batch_size,
                request_timeout=settings.embed_timeout_s,
                max_retries=settings.embed_max_retries,
            )
        scorer = SemanticScorer(
            embedder,
            cache=EmbeddingCache(settings.cache_max_size) if settings.cache_embeddings else None,
            max_workers=settings.max_workers,
            timeout_s=settings.query_timeout_s,
            thinking_callback=thinking_callback,
        )
        chunk_options = ChunkOptions(
            max_chunk_size=settings.max_chunk_size,
            min_chunk_size=settings.min_chunk_size,
            overlap_size=settings.overlap_size,
            split_by=settings.split_by,
        )
        return cls(
            store,
            scorer,
            chunk_options=chunk_options,
            chunk_cache=ChunkCache(settings.chunk_cache_max_documents),
            thinking_callback=thinking_callback,
        )

    def collect_chunks(self, documents: Sequence[Document]) -> List[Chunk]:
        all_chunks: List[Chunk] = []
        for doc in documents:
            all_chunks.extend(self.chunk_cache.get_or_create(doc, self.chunk_options))
        return all_chunks

    def query(
        self,
        request: RAGQueryRequest,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> RAGQueryResponse:
        """
        Run one retrieval request.

        Args:
            request: Query parameters
            cancel_event: Set by the caller to abandon in-flight embedding calls
            now: Reference time for recency scoring (defaults to now)

        Returns:
            Context, citations, ranked chunks and per-stage counts
        """
        start = time.perf_counter()
        rerank_options = request.rerank_options.to_options()
        validate_citation_format(request.citation_format)

        documents = self.store.list_documents(request.agent_id)
        all_chunks = self.collect_chunks(documents)
        stats = RetrievalStats(total_documents=len(documents), total_chunks=len(all_chunks))
        self._emit(
            "retrieval_start",
            f"Query '{request.query[:100]}' over {len(documents)} documents / {len(all_chunks)} chunks",
        )

        try:
            outcome = hybrid_search_with_report(
                request.query,
                all_chunks,
                request.top_k * 2,
                request.semantic_weight,
                scorer=self.scorer,
                normalization=request.normalization,
                cancel_event=cancel_event,
            )
        except EmptyCorpusError:
            logger.info("empty_corpus", agent_id=request.agent_id, documents=len(documents))
            stats.latency_ms = (time.perf_counter() - start) * 1000.0
            return RAGQueryResponse(stats=stats, message=NO_DOCUMENTS_MESSAGE)

        reranked = rerank(outcome.results, request.query, rerank_options, now=now)[: request.top_k]
        citations = generate_citations(reranked, request.citation_format)

        warnings: List[str] = []
        if outcome.degraded:
            warnings.append(
                f"Semantic scores unavailable for {len(outcome.failed_chunk_ids)} of "
                f"{outcome.candidate_count} chunks; those were ranked on keywords only."
            )

        stats.searched_chunks = len(outcome.results)
        stats.returned_chunks = len(reranked)
        stats.failed_embeddings = len(outcome.failed_chunk_ids)
        stats.latency_ms = (time.perf_counter() - start) * 1000.0

        logger.info(
            "rag_query_complete",
            agent_id=request.agent_id,
            documents=stats.total_documents,
            chunks=stats.total_chunks,
            searched=stats.searched_chunks,
            returned=stats.returned_chunks,
            degraded=outcome.degraded,
            latency_ms=round(stats.latency_ms, 1),
            embedding_cache=self.scorer.cache.stats() if self.scorer.cache is not None else None,
        )
        self._emit("retrieval_complete", f"Returned {len(reranked)} chunks")

        return RAGQueryResponse(
            context=format_context(reranked),
            citations=citations,
            chunks=[ChunkView.from_result(r) for r in reranked],
            stats=stats,
            degraded=outcome.degraded,
            warnings=warnings,
        )
