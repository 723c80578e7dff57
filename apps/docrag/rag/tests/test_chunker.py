"""
Tests for the semantic chunker.

Run: pytest apps/docrag/rag/tests/test_chunker.py -v
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest


def _paragraphs(count: int) -> str:
    """Build a document of short, varied paragraphs."""
    words = ["refund", "policy", "shipping", "warranty", "invoice", "account", "support", "delivery"]
    paras = []
    for i in range(count):
        n = 6 + (i * 3) % 7
        paras.append(" ".join(words[(i + j) % len(words)] for j in range(n)) + ".")
    return "\n\n".join(paras)


class TestSplitUnits:
    """Tests for unit splitting and offset tracking."""

    def test_paragraph_units_map_back_to_source(self):
        from apps.docrag.rag.chunker import split_units

        text = "A para.\n\n\n  B para  \n\nC"
        units = split_units(text, "paragraph")

        assert [u for u, _, _ in units] == ["A para.", "B para", "C"]
        for unit, start, end in units:
            assert text[start:end] == unit

    def test_single_newline_does_not_split_paragraph(self):
        from apps.docrag.rag.chunker import split_units

        units = split_units("line one\nline two\n\nnext", "paragraph")
        assert [u for u, _, _ in units] == ["line one\nline two", "next"]

    def test_sentence_units_keep_trailing_fragment(self):
        from apps.docrag.rag.chunker import split_units

        text = "First sentence here. Second one! trailing words"
        units = split_units(text, "sentence")

        assert [u for u, _, _ in units] == ["First sentence here.", "Second one!", "trailing words"]
        for unit, start, end in units:
            assert text[start:end] == unit


class TestChunkDocument:
    """Tests for chunk_document packing behavior."""

    def test_three_paragraphs_small_max(self):
        """Each short paragraph becomes its own chunk when max is tight."""
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        text = "Para1 text.\n\nPara2 text.\n\nPara3 text."
        opts = ChunkOptions(max_chunk_size=15, min_chunk_size=5, overlap_size=0, split_by="paragraph")
        chunks = chunk_document(text, "doc1", "doc1.txt", opts)

        assert len(chunks) == 3
        assert [c.text for c in chunks] == ["Para1 text.", "Para2 text.", "Para3 text."]
        for c in chunks:
            assert len(c.text) <= 15

    def test_ids_and_indices_are_sequential(self):
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        opts = ChunkOptions(max_chunk_size=15, min_chunk_size=5, overlap_size=0)
        chunks = chunk_document("Para1 text.\n\nPara2 text.\n\nPara3 text.", "d", "d.txt", opts)

        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert [c.id for c in chunks] == ["d_chunk_0", "d_chunk_1", "d_chunk_2"]
        assert all(c.document_id == "d" and c.filename == "d.txt" for c in chunks)

    def test_chunks_respect_max_size(self):
        """Every chunk except possibly the last stays within max_chunk_size."""
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        text = _paragraphs(40)
        opts = ChunkOptions(max_chunk_size=200, min_chunk_size=50, overlap_size=30)
        chunks = chunk_document(text, "doc", "doc.txt", opts)

        assert len(chunks) > 3
        for c in chunks[:-1]:
            assert len(c.text) <= 200

    def test_spans_cover_content_without_gaps(self):
        """Uncovered text between consecutive spans is whitespace only."""
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        text = _paragraphs(30)
        opts = ChunkOptions(max_chunk_size=180, min_chunk_size=20, overlap_size=25)
        chunks = chunk_document(text, "doc", "doc.txt", opts)

        assert chunks[0].start_index == 0
        assert chunks[-1].end_index == len(text)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_index >= prev.start_index
            if nxt.start_index > prev.end_index:
                assert text[prev.end_index:nxt.start_index].strip() == ""
        for c in chunks:
            assert 0 <= c.start_index < c.end_index <= len(text)

    def test_span_matches_text_without_overlap(self):
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        text = _paragraphs(12)
        opts = ChunkOptions(max_chunk_size=150, min_chunk_size=20, overlap_size=0)
        for c in chunk_document(text, "doc", "doc.txt", opts):
            assert text[c.start_index:c.end_index] == c.text

    def test_overlap_words_are_carried(self):
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        text = "alpha beta gamma delta.\n\nepsilon zeta eta theta."
        opts = ChunkOptions(max_chunk_size=40, min_chunk_size=10, overlap_size=10)
        chunks = chunk_document(text, "doc", "doc.txt", opts)

        assert len(chunks) == 2
        assert chunks[0].text == "alpha beta gamma delta."
        assert chunks[1].text == "gamma delta. epsilon zeta eta theta."
        assert chunks[1].start_index == text.index("gamma")
        assert chunks[1].end_index == len(text)

    def test_overlap_trimmed_to_fit_max(self):
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        text = "alpha beta gamma delta.\n\nepsilon zeta eta theta."
        opts = ChunkOptions(max_chunk_size=30, min_chunk_size=10, overlap_size=10)
        chunks = chunk_document(text, "doc", "doc.txt", opts)

        assert chunks[1].text == "delta. epsilon zeta eta theta."
        assert len(chunks[1].text) <= 30
        assert chunks[1].start_index == text.index("delta.")

    def test_short_document_yields_single_chunk(self):
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        chunks = chunk_document("Tiny note.", "doc", "doc.txt", ChunkOptions(min_chunk_size=100))

        assert len(chunks) == 1
        assert chunks[0].text == "Tiny note."
        assert (chunks[0].start_index, chunks[0].end_index) == (0, 10)

    def test_short_tail_is_dropped(self):
        """A final buffer under min_chunk_size is dropped once a chunk exists."""
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        first = "x" * 30
        text = f"{first}\n\nend."
        opts = ChunkOptions(max_chunk_size=30, min_chunk_size=20, overlap_size=0)
        chunks = chunk_document(text, "doc", "doc.txt", opts)

        assert [c.text for c in chunks] == [first]

    def test_tail_above_min_is_kept(self):
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        text = f"{'x' * 30}\n\n{'y' * 30}\n\nend."
        opts = ChunkOptions(max_chunk_size=40, min_chunk_size=20, overlap_size=0)
        chunks = chunk_document(text, "doc", "doc.txt", opts)

        assert [c.text for c in chunks] == ["x" * 30, "y" * 30 + "\n\nend."]

    def test_oversized_unit_emitted_whole(self):
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        big = "word " * 60
        text = f"Intro paragraph here.\n\n{big.strip()}\n\nClosing paragraph here."
        opts = ChunkOptions(max_chunk_size=100, min_chunk_size=10, overlap_size=0)
        chunks = chunk_document(text, "doc", "doc.txt", opts)

        assert big.strip() in [c.text for c in chunks]

    def test_sentence_mode(self):
        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        text = "One short sentence. Another short sentence! A third one? And a tail"
        opts = ChunkOptions(max_chunk_size=45, min_chunk_size=10, overlap_size=0, split_by="sentence")
        chunks = chunk_document(text, "doc", "doc.txt", opts)

        assert chunks[0].text == "One short sentence. Another short sentence!"
        assert chunks[-1].text.endswith("And a tail")
        for c in chunks:
            assert len(c.text) <= 45

    def test_empty_text_yields_nothing(self):
        from apps.docrag.rag.chunker import chunk_document

        assert chunk_document("", "doc", "doc.txt") == []
        assert chunk_document("  \n\n  ", "doc", "doc.txt") == []


class TestChunkOptions:
    """Tests for option validation."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_chunk_size": 50, "min_chunk_size": 100},
            {"max_chunk_size": 0},
            {"min_chunk_size": -1},
            {"overlap_size": -5},
            {"split_by": "section"},
        ],
    )
    def test_invalid_options_raise(self, kwargs):
        from apps.docrag.rag.errors import ConfigError
        from apps.docrag.rag.types import ChunkOptions

        with pytest.raises(ConfigError):
            ChunkOptions(**kwargs)

    def test_config_error_is_value_error(self):
        from apps.docrag.rag.types import ChunkOptions

        with pytest.raises(ValueError):
            ChunkOptions(max_chunk_size=10, min_chunk_size=20)


class TestChunkFromDocument:
    """Tests for chunk() metadata handling."""

    def test_metadata_is_structured(self):
        from apps.docrag.rag.chunker import chunk
        from apps.docrag.rag.types import Document

        doc = Document(
            id="manual",
            filename="manual.pdf",
            content="The device must be charged before first use.",
            metadata={"pageNumber": "5", "section": "Setup", "uploadedAt": "2024-03-01T12:00:00Z", "lang": "en"},
        )
        chunks = chunk(doc)

        assert len(chunks) == 1
        meta = chunks[0].metadata
        assert meta.page_number == 5
        assert meta.section == "Setup"
        assert meta.uploaded_at == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
        assert meta.extra == {"lang": "en"}

    def test_created_at_used_when_upload_time_missing(self):
        from apps.docrag.rag.chunker import chunk
        from apps.docrag.rag.types import Document

        created = datetime(2024, 1, 2, 3, 4, 5)
        doc = Document(id="d", filename="d.txt", content="Some content here.", created_at=created)
        meta = chunk(doc)[0].metadata

        assert meta.uploaded_at == created.replace(tzinfo=timezone.utc)
        assert meta.page_number is None

    def test_chunks_with_extra_metadata_are_hashable(self):
        from apps.docrag.rag.chunker import chunk
        from apps.docrag.rag.types import Document

        doc = Document(id="d", filename="d.txt", content="Some content here.", metadata={"lang": "en"})
        first = chunk(doc)[0]
        again = chunk(doc)[0]

        assert first.metadata.extra == {"lang": "en"}
        assert {first, again} == {first}
        assert hash(first) == hash(again)

    def test_dropped_tail_is_logged(self):
        from structlog.testing import capture_logs

        from apps.docrag.rag.chunker import chunk_document
        from apps.docrag.rag.types import ChunkOptions

        opts = ChunkOptions(max_chunk_size=30, min_chunk_size=20, overlap_size=0)
        with capture_logs() as logs:
            chunk_document(f"{'x' * 30}\n\nend.", "doc", "doc.txt", opts)
        assert logs[0]["event"] == "chunk_tail_dropped"
        assert logs[0]["tail_length"] == 4
