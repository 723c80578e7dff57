"""
Citation assembly for ranked search results.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence

from .errors import ConfigError
from .types import Citation, SearchResult

EXCERPT_CHARS = 200


def _simple(idx: int, filename: str, page: Optional[int], section: Optional[str]) -> str:
    text = f"[{idx}] {filename}"
    if page is not None:
        text += f", p. {page}"
    if section:
        text += f", {section}"
    return text


def _apa(idx: int, filename: str, page: Optional[int], section: Optional[str]) -> str:
    return f"{filename} (p. {page})" if page is not None else filename


def _mla(idx: int, filename: str, page: Optional[int], section: Optional[str]) -> str:
    return f'"{filename}" {page}' if page is not None else f'"{filename}"'


def _chicago(idx: int, filename: str, page: Optional[int], section: Optional[str]) -> str:
    return f"{filename}, {page}" if page is not None else filename


CITATION_STYLES: Dict[str, Callable[[int, str, Optional[int], Optional[str]], str]] = {
    "simple": _simple,
    "apa": _apa,
    "mla": _mla,
    "chicago": _chicago,
}


def validate_citation_format(fmt: str) -> None:
    if fmt not in CITATION_STYLES:
        raise ConfigError(f"citation format must be one of {tuple(CITATION_STYLES)}, got {fmt!r}")


def generate_citations(results: Sequence[SearchResult], fmt: str = "simple") -> List[Citation]:
    """
    Build one citation per result, numbered from 1 in input order.

    Raises:
        ConfigError: If ``fmt`` is not a known citation style
    """
    validate_citation_format(fmt)
    style = CITATION_STYLES[fmt]

    citations: List[Citation] = []
    for idx, result in enumerate(results, 1):
        chunk = result.chunk
        page = chunk.metadata.page_number
        section = chunk.metadata.section
        citations.append(Citation(
            index=idx,
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            filename=chunk.filename,
            text=chunk.text[:EXCERPT_CHARS] + "...",
            confidence=result.score,
            format=style(idx, chunk.filename, page, section),
            page_number=page,
            section=section,
        ))
    return citations
