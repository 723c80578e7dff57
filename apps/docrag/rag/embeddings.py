"""
Embedding provider contract and an OpenAI-compatible client.

The retrieval engine only depends on ``embed(text) -> List[float]``. The
default client talks to any server exposing the OpenAI ``/embeddings``
route; out of the box that is a local Ollama instance serving
``nomic-embed-text``.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from openai import (
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    OpenAI,
    RateLimitError,
)
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..infra.env import get_embedding_api_key, get_embedding_base_url, get_embedding_model, load_env
from ..infra.logging import get_logger

logger = get_logger(__name__)

# Transient failures only; 4xx responses other than 429 fail on the first attempt
RETRYABLE_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that can turn one text into a vector."""

    def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbedder:
    """
    Embedding client for OpenAI-compatible endpoints.

    Each ``embed`` call is one request, retried with exponential backoff on
    transport, rate-limit and server errors. ``embed_documents`` batches requests
    for bulk use.
    """

    MAX_BATCH_SIZE = 64
    MAX_INPUT_CHARS = 8192 * 4  # rough estimate: 4 chars per token

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        batch_size: int = 32,
        request_timeout: float = 30.0,
        max_retries: int = 3,
        client: Optional[OpenAI] = None,
    ):
        """
        Initialize the embedder.

        Args:
            model: Embedding model name. If None, reads DOCRAG_EMBEDDING_MODEL.
            api_key: API key. If None, reads from environment.
            base_url: OpenAI-compatible base URL. If None, reads from environment.
            batch_size: Number of texts per request in embed_documents.
            request_timeout: Timeout in seconds for each request.
            max_retries: Attempts per request before giving up.
            client: Pre-built OpenAI client (mainly for tests).
        """
        load_env()
        self.model = model or get_embedding_model()
        if client is None:
            # The SDK's own retry loop is disabled; tenacity owns retries.
            client = OpenAI(
                api_key=(api_key or get_embedding_api_key()).strip(),
                base_url=base_url or get_embedding_base_url(),
                max_retries=0,
            )
        self.client = client
        self.batch_size = max(1, min(batch_size, self.MAX_BATCH_SIZE))
        self.request_timeout = request_timeout
        self.max_retries = max(1, max_retries)

    def _retrying(self) -> Retrying:
        return Retrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
        )

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts in one request.

        Returns:
            One vector per input, in input order
        """
        truncated = [t[: self.MAX_INPUT_CHARS] for t in texts]
        for attempt in self._retrying():
            with attempt:
                response = self.client.embeddings.create(
                    model=self.model,
                    input=truncated,
                    timeout=self.request_timeout,
                )
        # Providers may return items out of order; index is authoritative
        return [list(item.embedding) for item in sorted(response.data, key=lambda x: x.index)]

    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Returns:
            The embedding vector, or an empty list for blank input
        """
        if not text or not text.strip():
            return []
        return self._embed_batch([text.strip()])[0]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """
        Embed multiple texts with automatic batching.

        Blank texts map to empty vectors without being sent.
        """
        results: List[List[float]] = [[] for _ in texts]
        non_empty = [(i, t.strip()) for i, t in enumerate(texts) if t and t.strip()]
        for start in range(0, len(non_empty), self.batch_size):
            batch = non_empty[start:start + self.batch_size]
            vectors = self._embed_batch([t for _, t in batch])
            for (idx, _), vec in zip(batch, vectors):
                results[idx] = vec
        logger.debug("embedded_documents", count=len(non_empty), model=self.model)
        return results
