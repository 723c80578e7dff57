"""
Tests for citation assembly.

Run: pytest apps/docrag/rag/tests/test_citations.py -v
"""

from __future__ import annotations

import pytest


def _result(filename: str, text: str = "Charge the device fully.", page=None, section=None, score: float = 0.8):
    from apps.docrag.rag.types import Chunk, ChunkMetadata, SearchResult

    chunk = Chunk(
        id=f"{filename}_chunk_0",
        text=text,
        start_index=0,
        end_index=len(text),
        document_id=filename,
        filename=filename,
        chunk_index=0,
        metadata=ChunkMetadata(page_number=page, section=section),
    )
    return SearchResult(chunk=chunk, semantic_score=score, keyword_score=0.0, score=score)


class TestGenerateCitations:
    """Tests for generate_citations."""

    def test_simple_with_page(self):
        from apps.docrag.rag.citations import generate_citations

        (citation,) = generate_citations([_result("manual.pdf", page=5)], "simple")
        assert citation.format == "[1] manual.pdf, p. 5"
        assert citation.page_number == 5

    def test_simple_with_section(self):
        from apps.docrag.rag.citations import generate_citations

        (citation,) = generate_citations([_result("manual.pdf", page=5, section="Setup")])
        assert citation.format == "[1] manual.pdf, p. 5, Setup"

    def test_page_zero_is_rendered(self):
        from apps.docrag.rag.citations import generate_citations

        (citation,) = generate_citations([_result("cover.pdf", page=0)])
        assert citation.format == "[1] cover.pdf, p. 0"

    @pytest.mark.parametrize(
        "fmt, with_page, without_page",
        [
            ("simple", "[1] a.pdf, p. 3", "[1] a.pdf"),
            ("apa", "a.pdf (p. 3)", "a.pdf"),
            ("mla", '"a.pdf" 3', '"a.pdf"'),
            ("chicago", "a.pdf, 3", "a.pdf"),
        ],
    )
    def test_styles(self, fmt, with_page, without_page):
        from apps.docrag.rag.citations import generate_citations

        assert generate_citations([_result("a.pdf", page=3)], fmt)[0].format == with_page
        assert generate_citations([_result("a.pdf")], fmt)[0].format == without_page

    def test_indices_follow_input_order(self):
        from apps.docrag.rag.citations import generate_citations

        results = [_result(f"doc{i}.txt", score=1.0 - i / 10) for i in range(4)]
        citations = generate_citations(results)

        assert [c.index for c in citations] == [1, 2, 3, 4]
        assert [c.filename for c in citations] == [r.chunk.filename for r in results]
        assert [c.confidence for c in citations] == [r.score for r in results]
        assert citations[2].format.startswith("[3] ")

    def test_excerpt_truncated_with_ellipsis(self):
        from apps.docrag.rag.citations import EXCERPT_CHARS, generate_citations

        long_text = "word " * 100
        (citation,) = generate_citations([_result("a.txt", text=long_text)])
        assert citation.text == long_text[:EXCERPT_CHARS] + "..."

        (short,) = generate_citations([_result("b.txt", text="Short.")])
        assert short.text == "Short...."

    def test_empty_results(self):
        from apps.docrag.rag.citations import generate_citations

        assert generate_citations([], "apa") == []

    def test_unknown_format_rejected(self):
        from apps.docrag.rag.citations import generate_citations
        from apps.docrag.rag.errors import ConfigError

        with pytest.raises(ConfigError):
            generate_citations([_result("a.pdf")], "harvard")
