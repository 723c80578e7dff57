#!/usr/bin/env python3
"""
Run one retrieval query over a directory of text documents.

Loads every .txt/.md file in the directory as a document, chunks it,
runs hybrid search + rerank against the configured embedding provider,
and prints the context and citations.

Usage:
    python scripts/query_documents.py docs/ "What is the refund policy?"

Options:
    --top-k            Number of chunks to return (default: 5)
    --semantic-weight  Weight of the semantic signal in [0, 1] (default: 0.7)
    --format           Citation style: simple, apa, mla, chicago (default: simple)
    --split-by         Chunk along paragraph or sentence boundaries
    --normalization    Score normalization before fusion: none or minmax
    --json             Print the full response as JSON
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

AGENT_ID = "_global"


def load_documents(docs_dir: Path):
    from apps.docrag.rag.types import Document

    documents = []
    for path in sorted(docs_dir.iterdir()):
        if path.suffix.lower() not in (".txt", ".md") or not path.is_file():
            continue
        stat = path.stat()
        documents.append(Document(
            id=path.stem,
            filename=path.name,
            content=path.read_text(encoding="utf-8", errors="replace"),
            metadata={"filename": path.name},
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        ))
    return documents


def main():
    parser = argparse.ArgumentParser(
        description="Hybrid BM25 + embedding retrieval over a directory of documents"
    )
    parser.add_argument("docs_dir", type=str, help="Directory containing .txt/.md files")
    parser.add_argument("query", type=str, help="Question to retrieve evidence for")
    parser.add_argument("--top-k", type=int, default=5)
    parser.add_argument("--semantic-weight", type=float, default=0.7)
    parser.add_argument("--format", dest="citation_format", default="simple",
                        choices=["simple", "apa", "mla", "chicago"])
    parser.add_argument("--split-by", default=None, choices=["paragraph", "sentence"])
    parser.add_argument("--normalization", default="none", choices=["none", "minmax"])
    parser.add_argument("--json", action="store_true", help="Print the full response as JSON")
    args = parser.parse_args()

    docs_dir = Path(args.docs_dir)
    if not docs_dir.is_dir():
        print(f"Error: not a directory: {docs_dir}")
        sys.exit(1)

    # Import after path setup
    from apps.docrag.infra.env import RetrievalSettings
    from apps.docrag.infra.logging import setup_logging
    from apps.docrag.rag.errors import RetrievalError
    from apps.docrag.rag.pipeline import InMemoryDocumentStore, RAGPipeline, RAGQueryRequest

    settings = RetrievalSettings.from_env()
    if args.split_by:
        settings.split_by = args.split_by
    setup_logging(settings.log_level, json_output=args.json)

    store = InMemoryDocumentStore()
    for doc in load_documents(docs_dir):
        store.add(AGENT_ID, doc)

    def emit(stage: str, content: str) -> None:
        if not args.json:
            print(f"  [{stage}] {content}")

    try:
        pipeline = RAGPipeline.from_settings(store, settings, thinking_callback=emit)
        response = pipeline.query(RAGQueryRequest(
            query=args.query,
            agent_id=AGENT_ID,
            top_k=args.top_k,
            semantic_weight=args.semantic_weight,
            citation_format=args.citation_format,
            normalization=args.normalization,
        ))
    except RetrievalError as e:
        print(f"Error: {type(e).__name__}: {e}")
        sys.exit(2)

    if args.json:
        print(response.model_dump_json(indent=2))
        return

    print("\n" + "=" * 60)
    if response.message:
        print(response.message)
        return
    for warning in response.warnings:
        print(f"Warning: {warning}")
    print(response.context)
    print("\nCitations:")
    for citation in response.citations:
        print(f"  {citation.format}  (confidence={citation.confidence:.3f})")
    stats = response.stats
    print(
        f"\nDocuments: {stats.total_documents}  Chunks: {stats.total_chunks}  "
        f"Searched: {stats.searched_chunks}  Returned: {stats.returned_chunks}  "
        f"({stats.latency_ms:.0f}ms)"
    )
    print("=" * 60)


if __name__ == "__main__":
    main()
