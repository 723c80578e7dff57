"""
Core data types for the retrieval engine.

Documents belong to the document store. Chunks are derived from them once
and never mutated. SearchResults and Citations exist only while a single
query is being handled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigError


SPLIT_MODES = ("paragraph", "sentence")
LENGTH_PREFERENCES = ("short", "medium", "long")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce an ISO-8601 string or datetime to an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None for missing or
    unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        # fromisoformat() before 3.11 rejects the "Z" suffix
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Document:
    """A document as exposed by the document store."""
    id: str
    filename: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChunkMetadata:
    """Known optional chunk attributes plus an open extension map."""
    page_number: Optional[int] = None
    section: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict, hash=False)

    _KNOWN_KEYS = {
        "page_number": ("page_number", "pageNumber"),
        "section": ("section",),
        "uploaded_at": ("uploaded_at", "uploadedAt"),
    }

    @classmethod
    def from_mapping(
        cls,
        data: Optional[Mapping[str, Any]],
        default_uploaded_at: Optional[datetime] = None,
    ) -> "ChunkMetadata":
        """
        Build metadata from a document's free-form metadata map.

        Both camelCase and snake_case spellings of the known keys are
        accepted; every other key lands in ``extra``.
        """
        data = dict(data or {})
        consumed = set()

        def pick(name: str) -> Any:
            for key in cls._KNOWN_KEYS[name]:
                if key in data:
                    consumed.add(key)
                    value = data[key]
                    if value is not None:
                        return value
            return None

        page = pick("page_number")
        if page is not None:
            try:
                page = int(page)
            except (TypeError, ValueError):
                page = None

        section = pick("section")
        uploaded_at = parse_timestamp(pick("uploaded_at")) or parse_timestamp(default_uploaded_at)

        extra = {k: v for k, v in data.items() if k not in consumed}
        return cls(
            page_number=page,
            section=str(section) if section is not None else None,
            uploaded_at=uploaded_at,
            extra=extra,
        )


@dataclass(frozen=True)
class Chunk:
    """
    A bounded span of a document's text, the unit of retrieval.

    ``start_index``/``end_index`` are character offsets into the owning
    document's content. ``text`` is the assembled chunk text and may
    normalize whitespace between the units it was built from.
    """
    id: str
    text: str
    start_index: int
    end_index: int
    document_id: str
    filename: str
    chunk_index: int
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)
    embedding: Optional[List[float]] = field(default=None, compare=False, repr=False)

    def __repr__(self) -> str:
        return f"Chunk(id='{self.id}', span=[{self.start_index}, {self.end_index}), len={len(self.text)})"


@dataclass(frozen=True)
class SearchResult:
    """A chunk scored against one query."""
    chunk: Chunk
    semantic_score: float
    keyword_score: float
    score: float
    embedding: Optional[List[float]] = field(default=None, compare=False, repr=False)
    semantic_missing: bool = False
    diversity_score: Optional[float] = None
    recency_score: Optional[float] = None
    length_score: Optional[float] = None

    def __repr__(self) -> str:
        return (
            f"SearchResult(chunk='{self.chunk.id}', score={self.score:.4f}, "
            f"semantic={self.semantic_score:.4f}, keyword={self.keyword_score:.4f})"
        )


@dataclass(frozen=True)
class Citation:
    """An attributed, style-formatted reference to a ranked chunk."""
    index: int
    chunk_id: str
    document_id: str
    filename: str
    text: str
    confidence: float
    format: str
    page_number: Optional[int] = None
    section: Optional[str] = None


@dataclass(frozen=True)
class ChunkOptions:
    """Chunker parameters; sizes are in characters."""
    max_chunk_size: int = 512
    min_chunk_size: int = 100
    overlap_size: int = 50
    split_by: str = "paragraph"

    def __post_init__(self) -> None:
        if self.max_chunk_size <= 0 or self.min_chunk_size <= 0:
            raise ConfigError(
                f"chunk sizes must be positive (max={self.max_chunk_size}, min={self.min_chunk_size})"
            )
        if self.overlap_size < 0:
            raise ConfigError(f"overlap_size must be >= 0, got {self.overlap_size}")
        if self.min_chunk_size > self.max_chunk_size:
            raise ConfigError(
                f"min_chunk_size ({self.min_chunk_size}) exceeds max_chunk_size ({self.max_chunk_size})"
            )
        if self.split_by not in SPLIT_MODES:
            raise ConfigError(f"split_by must be one of {SPLIT_MODES}, got {self.split_by!r}")


@dataclass(frozen=True)
class RerankOptions:
    """Weights and length preference for the reranker."""
    diversity_weight: float = 0.2
    recency_weight: float = 0.1
    length_preference: str = "medium"

    def __post_init__(self) -> None:
        for name in ("diversity_weight", "recency_weight"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be in [0, 1], got {value}")
        if self.diversity_weight + self.recency_weight > 1.0:
            raise ConfigError(
                "diversity_weight + recency_weight must not exceed 1 "
                f"(got {self.diversity_weight} + {self.recency_weight})"
            )
        if self.length_preference not in LENGTH_PREFERENCES:
            raise ConfigError(
                f"length_preference must be one of {LENGTH_PREFERENCES}, got {self.length_preference!r}"
            )
