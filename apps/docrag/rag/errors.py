"""
Typed errors raised by the retrieval engine.

Per-chunk embedding problems never surface here; they degrade the chunk's
semantic contribution instead. These errors are for conditions that make
the whole query invalid or impossible.
"""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for retrieval engine errors."""


class ConfigError(RetrievalError, ValueError):
    """Invalid chunking, fusion, rerank or citation parameters."""


class MalformedQueryError(RetrievalError, ValueError):
    """Query string is empty or whitespace only."""


class EmptyCorpusError(RetrievalError):
    """No chunks are available to search."""


class EmbeddingProviderError(RetrievalError):
    """The embedding provider is unreachable for this query."""


class QueryCancelledError(RetrievalError):
    """The caller abandoned the query while embeddings were in flight."""
