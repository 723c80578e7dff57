"""
BM25 lexical scoring over a candidate chunk set.

Corpus statistics (document frequency, average length) are computed from
the chunks passed in, not from a global index, so scores are only
meaningful for ranking within one query's candidate set.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Dict, List, Sequence

from .types import Chunk

K1 = 1.5  # term-frequency saturation
B = 0.75  # length normalization

_NON_WORD_RE = re.compile(r"[^\w\s]")


def tokenize(text: str) -> List[str]:
    """
    Tokenize text for BM25.

    Lowercases, replaces punctuation with spaces, splits on whitespace and
    drops tokens of two characters or fewer.
    """
    if not text:
        return []
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [t for t in cleaned.split() if len(t) > 2]


def inverse_document_frequency(doc_count: int, docs_with_term: int) -> float:
    return math.log((doc_count - docs_with_term + 0.5) / (docs_with_term + 0.5) + 1)


def bm25_scores(query: str, chunks: Sequence[Chunk], k1: float = K1, b: float = B) -> List[float]:
    """
    Score each chunk against the query.

    Args:
        query: Raw query text
        chunks: Candidate chunks
        k1: Term-frequency saturation parameter
        b: Length normalization parameter

    Returns:
        One unnormalized score per chunk, in input order
    """
    if not chunks:
        return []

    query_terms = tokenize(query)
    doc_terms = [Counter(tokenize(c.text)) for c in chunks]
    doc_lengths = [sum(tf.values()) for tf in doc_terms]

    doc_count = len(chunks)
    avg_doc_length = sum(doc_lengths) / doc_count
    if not query_terms or avg_doc_length == 0:
        return [0.0] * doc_count

    idf: Dict[str, float] = {}
    for term in set(query_terms):
        df = sum(1 for tf in doc_terms if term in tf)
        idf[term] = inverse_document_frequency(doc_count, df)

    scores: List[float] = []
    for tf_counts, doc_length in zip(doc_terms, doc_lengths):
        norm = k1 * (1 - b + b * (doc_length / avg_doc_length))
        score = 0.0
        for term in query_terms:
            tf = tf_counts.get(term, 0)
            if tf:
                score += idf[term] * (tf * (k1 + 1)) / (tf + norm)
        scores.append(score)
    return scores
