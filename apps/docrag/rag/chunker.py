"""
Text chunking for RAG ingestion.

Splits a document along natural boundaries (paragraphs or sentences) and
packs the pieces into overlapping, bounded-size chunks. Chunk offsets
always point back into the source text.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from ..infra.logging import get_logger
from .types import Chunk, ChunkMetadata, ChunkOptions, Document

logger = get_logger(__name__)

# Runs of text not containing a blank line
_PARAGRAPH_RE = re.compile(r"(?:[^\n]|\n(?![ \t]*\n))+")
# Sentence body plus its terminal punctuation, or a trailing unterminated fragment
_SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)|[.!?]+")
_WORD_RE = re.compile(r"\S+")

# Approximate characters per word used to turn overlap_size into a word count
CHARS_PER_WORD = 5

Unit = Tuple[str, int, int]


def split_units(text: str, split_by: str = "paragraph") -> List[Unit]:
    """
    Split text into trimmed units with their source offsets.

    Returns:
        List of (unit_text, start, end) with ``text[start:end] == unit_text``
    """
    pattern = _PARAGRAPH_RE if split_by == "paragraph" else _SENTENCE_RE
    units: List[Unit] = []
    for match in pattern.finditer(text):
        raw = match.group(0)
        stripped = raw.strip()
        if not stripped:
            continue
        start = match.start() + (len(raw) - len(raw.lstrip()))
        units.append((stripped, start, start + len(stripped)))
    return units


class _Buffer:
    """Running chunk buffer that remembers which source span it covers."""

    def __init__(self, separator: str):
        self.separator = separator
        self.text = ""
        self.start = 0
        self.end = 0

    def __len__(self) -> int:
        return len(self.text)

    def projected_length(self, unit: str) -> int:
        if not self.text:
            return len(unit)
        return len(self.text) + len(self.separator) + len(unit)

    def append(self, unit: str, start: int, end: int) -> None:
        if not self.text:
            self.text = unit
            self.start = start
        else:
            self.text = f"{self.text}{self.separator}{unit}"
        self.end = end

    def seed(self, overlap_words: List[Tuple[str, int]], unit: str, start: int, end: int) -> None:
        if overlap_words:
            self.text = " ".join(w for w, _ in overlap_words) + " " + unit
            self.start = overlap_words[0][1]
        else:
            self.text = unit
            self.start = start
        self.end = end


def _overlap_words(
    source: str,
    start: int,
    end: int,
    overlap_size: int,
    unit: str,
    max_chunk_size: int,
) -> List[Tuple[str, int]]:
    """
    Trailing words of ``source[start:end]`` to carry into the next chunk.

    Words are dropped from the front until the seeded buffer fits within
    ``max_chunk_size``.
    """
    count = overlap_size // CHARS_PER_WORD
    if count <= 0:
        return []
    words = [(m.group(0), m.start()) for m in _WORD_RE.finditer(source, start, end)]
    words = words[-count:]
    while words and len(" ".join(w for w, _ in words)) + 1 + len(unit) > max_chunk_size:
        words = words[1:]
    return words


def chunk_document(
    text: str,
    document_id: str,
    filename: str,
    options: Optional[ChunkOptions] = None,
    metadata: Optional[ChunkMetadata] = None,
) -> List[Chunk]:
    """
    Split a document's text into overlapping chunks.

    Args:
        text: Document content
        document_id: Owning document id, used to derive chunk ids
        filename: Document filename carried on every chunk
        options: Chunking parameters (validated on construction)
        metadata: Metadata shared by every chunk of the document

    Returns:
        Chunks in document order with sequential ``chunk_index``
    """
    options = options or ChunkOptions()
    metadata = metadata or ChunkMetadata()
    separator = "\n\n" if options.split_by == "paragraph" else " "

    chunks: List[Chunk] = []
    buffer = _Buffer(separator)

    def emit() -> None:
        body = buffer.text.strip()
        if not body:
            return
        idx = len(chunks)
        chunks.append(Chunk(
            id=f"{document_id}_chunk_{idx}",
            text=body,
            start_index=buffer.start,
            end_index=buffer.end,
            document_id=document_id,
            filename=filename,
            chunk_index=idx,
            metadata=metadata,
        ))

    for unit, start, end in split_units(text, options.split_by):
        if (
            buffer.text
            and buffer.projected_length(unit) > options.max_chunk_size
            and len(buffer) >= options.min_chunk_size
        ):
            emit()
            carried = _overlap_words(
                text, buffer.start, buffer.end, options.overlap_size, unit, options.max_chunk_size,
            )
            buffer.seed(carried, unit, start, end)
        else:
            buffer.append(unit, start, end)

    if buffer.text:
        if not chunks or len(buffer) >= options.min_chunk_size:
            emit()
        else:
            logger.debug(
                "chunk_tail_dropped",
                document_id=document_id,
                tail_length=len(buffer),
                min_chunk_size=options.min_chunk_size,
            )

    return chunks


def chunk(document: Document, options: Optional[ChunkOptions] = None) -> List[Chunk]:
    """Chunk a Document, deriving chunk metadata from the document's metadata."""
    metadata = ChunkMetadata.from_mapping(document.metadata, default_uploaded_at=document.created_at)
    return chunk_document(
        document.content,
        document.id,
        document.filename,
        options=options,
        metadata=metadata,
    )
