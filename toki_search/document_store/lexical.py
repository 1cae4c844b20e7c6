"""Lexical analysis and BM25 scoring for the in-memory document store.

Text is lowercased, split into word tokens, stripped of English stop words
and folded with a small suffix stemmer so ``bugs`` matches ``bug`` and
``fixes`` matches ``fix``. Fields carry the same relative weights as the
Postgres ``setweight`` labels (title A, description B, content C), and a
document matches only when it contains every query term.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

TOKEN_PATTERN = re.compile(r"[^\W_]+", re.UNICODE)

# Mirrors the default ts_rank weights for labels A, B and C.
FIELD_WEIGHTS = {
    "title": 1.0,
    "description": 0.4,
    "content": 0.2,
}

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "if", "in",
    "into", "is", "it", "no", "not", "of", "on", "or", "such", "that", "the",
    "their", "then", "there", "these", "they", "this", "to", "was", "will",
    "with",
})

_SUFFIX_RULES: Tuple[Tuple[str, str], ...] = (
    ("sses", "ss"),
    ("ies", "y"),
    ("xes", "x"),
    ("ches", "ch"),
    ("shes", "sh"),
    ("zes", "z"),
)


def stem(word: str) -> str:
    """Fold common English plural suffixes."""
    for suffix, replacement in _SUFFIX_RULES:
        if word.endswith(suffix) and len(word) > len(suffix) + 1:
            return word[: -len(suffix)] + replacement
    if word.endswith("s") and not word.endswith(("ss", "us", "is")) and len(word) > 3:
        return word[:-1]
    return word


def tokenize(text: Optional[str]) -> List[str]:
    """Split ``text`` into normalized terms, keeping duplicates."""
    if not text:
        return []
    return [
        stem(token)
        for token in TOKEN_PATTERN.findall(text.lower())
        if token not in STOP_WORDS
    ]


def query_terms(text: str) -> List[str]:
    """Unique normalized terms of a query, in query order."""
    return list(dict.fromkeys(tokenize(text)))


@dataclass
class TermStats:
    """Weighted term frequencies and length of one analyzed document."""
    frequencies: Dict[str, float] = field(default_factory=dict)
    length: float = 0.0


def analyze_fields(fields: Mapping[str, Optional[str]]) -> TermStats:
    """Analyze the searchable fields of a document.

    ``fields`` maps field names from ``FIELD_WEIGHTS`` to their text.
    """
    stats = TermStats()
    for name, text in fields.items():
        weight = FIELD_WEIGHTS.get(name, 0.0)
        if weight <= 0.0:
            continue
        for term in tokenize(text):
            stats.frequencies[term] = stats.frequencies.get(term, 0.0) + weight
            stats.length += weight
    return stats


def calculate_idf(doc_freq: int, total_docs: int) -> float:
    """Return a non-negative BM25 inverse document frequency."""
    if total_docs <= 0:
        return 0.0
    df = max(0, min(doc_freq, total_docs))
    return math.log(1.0 + (total_docs - df + 0.5) / (df + 0.5))


def bm25(tf: float, doc_length: float, avg_doc_length: float, k1: float = 1.2, b: float = 0.75) -> float:
    """BM25 term weight without IDF."""
    if tf <= 0:
        return 0.0
    length_ratio = doc_length / max(avg_doc_length, 1e-9)
    return (tf * (k1 + 1)) / (tf + k1 * (1 - b + b * length_ratio))


def bm25_scores(
    terms: Sequence[str],
    candidates: Mapping[int, TermStats],
    corpus: Iterable[TermStats],
) -> List[Tuple[int, float]]:
    """Score candidates containing every term in ``terms``.

    Parameters
    - terms: Normalized, unique query terms
    - candidates: Filtered documents by id
    - corpus: All stored documents, used for document frequencies and the
      average length

    Returns
    - Unordered ``(doc_id, score)`` pairs for matching candidates
    """
    if not terms:
        return []

    total_docs = 0
    total_length = 0.0
    doc_freqs = dict.fromkeys(terms, 0)
    for stats in corpus:
        total_docs += 1
        total_length += stats.length
        for term in terms:
            if term in stats.frequencies:
                doc_freqs[term] += 1

    avg_length = total_length / total_docs if total_docs else 0.0
    idfs = {term: calculate_idf(doc_freqs[term], total_docs) for term in terms}

    scored: List[Tuple[int, float]] = []
    for doc_id, stats in candidates.items():
        if not all(term in stats.frequencies for term in terms):
            continue
        score = sum(
            idfs[term] * bm25(stats.frequencies[term], stats.length, avg_length)
            for term in terms
        )
        scored.append((doc_id, score))
    return scored
