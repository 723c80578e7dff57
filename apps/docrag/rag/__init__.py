"""
RAG retrieval and ranking engine.

This module provides:
- Semantic chunking of documents along paragraph/sentence boundaries
- Lexical scoring via BM25 over the candidate chunk set
- Semantic scoring via embedding cosine similarity
- Hybrid fusion, reranking and citation assembly
"""

from .chunker import chunk, chunk_document
from .citations import generate_citations
from .embeddings import EmbeddingProvider, OpenAIEmbedder
from .errors import (
    ConfigError,
    EmbeddingProviderError,
    EmptyCorpusError,
    MalformedQueryError,
    QueryCancelledError,
    RetrievalError,
)
from .fusion import fuse_scores, hybrid_search, hybrid_search_with_report
from .lexical import bm25_scores, tokenize
from .pipeline import InMemoryDocumentStore, RAGPipeline, RAGQueryRequest, RAGQueryResponse
from .reranker import rerank
from .semantic import EmbeddingCache, SemanticScorer, cosine_similarity
from .types import Chunk, ChunkMetadata, ChunkOptions, Citation, Document, RerankOptions, SearchResult

__all__ = [
    "chunk",
    "chunk_document",
    "generate_citations",
    "EmbeddingProvider",
    "OpenAIEmbedder",
    "ConfigError",
    "EmbeddingProviderError",
    "EmptyCorpusError",
    "MalformedQueryError",
    "QueryCancelledError",
    "RetrievalError",
    "fuse_scores",
    "hybrid_search",
    "hybrid_search_with_report",
    "bm25_scores",
    "tokenize",
    "InMemoryDocumentStore",
    "RAGPipeline",
    "RAGQueryRequest",
    "RAGQueryResponse",
    "rerank",
    "EmbeddingCache",
    "SemanticScorer",
    "cosine_similarity",
    "Chunk",
    "ChunkMetadata",
    "ChunkOptions",
    "Citation",
    "Document",
    "RerankOptions",
    "SearchResult",
]
