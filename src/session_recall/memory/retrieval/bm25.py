# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""BM25 sparse keyword search over a session's documents.

Implements BM25 (Best Matching 25) ranking for keyword retrieval.

BM25 complements vector search by handling:
- Exact term matches
- Rare/unique keywords
- Identifiers and technical terminology

Formula: BM25(D, Q) = Σ IDF(qi) * (f(qi, D) * (k1 + 1)) / (f(qi, D) + k1 * (1 - b + b * |D| / avgdl))

Corpus statistics (document frequency, total length) are maintained
incrementally on add/remove. IDF and average document length are derived
from those statistics at query time, so nothing cached can go stale.
"""

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

# Optional stop word list; not applied unless passed to KeywordIndex
ENGLISH_STOP_WORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "by",
        "for",
        "from",
        "has",
        "he",
        "in",
        "is",
        "it",
        "its",
        "of",
        "on",
        "or",
        "that",
        "the",
        "to",
        "was",
        "were",
        "will",
        "with",
    }
)


@dataclass
class IndexedDocument:
    """Per-document BM25 statistics.

    Attributes:
        term_freqs: Term frequencies over the indexed text fields.
        length: Number of tokens in the document.
        metadata: Non-text fields passed at indexing time.
    """

    term_freqs: dict[str, int]
    length: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class KeywordSearchResult:
    """A single keyword search hit."""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class KeywordIndex:
    """BM25 keyword index for one session.

    Example:
        >>> index = KeywordIndex()
        >>> index.add_document("d1", {"content": "cats are great"})
        >>> index.add_document("d2", {"content": "dogs are great"})
        >>> [r.id for r in index.search("cats", k=1)]
        ['d1']

    Attributes:
        text_fields: Document fields whose string values are tokenized.
        k1: Term frequency saturation parameter.
        b: Document length normalization (0 = none, 1 = full).
    """

    DEFAULT_K1 = 1.2
    DEFAULT_B = 0.75

    # Alphanumeric runs; underscore and punctuation are boundaries
    TOKEN_PATTERN = re.compile(r"[^\W_]+", re.UNICODE)

    def __init__(
        self,
        text_fields: Iterable[str] = ("content",),
        k1: float = DEFAULT_K1,
        b: float = DEFAULT_B,
        stop_words: Optional[Iterable[str]] = None,
        min_term_length: int = 1,
    ):
        """Initialize an empty keyword index.

        Args:
            text_fields: Fields to tokenize when a document is added.
            k1: Term frequency saturation. Higher values increase TF impact.
            b: Length normalization strength in [0, 1].
            stop_words: Terms to drop from documents and queries.
            min_term_length: Minimum token length to index.
        """
        self.text_fields = tuple(text_fields)
        self.k1 = k1
        self.b = b
        self.stop_words = frozenset(stop_words or ())
        self.min_term_length = min_term_length

        self._docs: dict[str, IndexedDocument] = {}
        self._doc_freq: dict[str, int] = {}
        self._total_length = 0

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._docs

    def tokenize(self, text: str) -> list[str]:
        """Tokenize text into lowercase terms.

        Args:
            text: Text to tokenize.

        Returns:
            List of lowercase tokens.
        """
        tokens = self.TOKEN_PATTERN.findall(text.lower())
        return [
            t for t in tokens if len(t) >= self.min_term_length and t not in self.stop_words
        ]

    def add_document(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Index a document, replacing any previous version with the same id.

        Args:
            doc_id: Document identifier.
            fields: Field values. String values of text fields are tokenized;
                every other field is kept as result metadata.
        """
        if doc_id in self._docs:
            self.remove_document(doc_id)

        tokens: list[str] = []
        metadata: dict[str, Any] = {}
        for name, value in fields.items():
            if name in self.text_fields:
                if isinstance(value, str):
                    tokens.extend(self.tokenize(value))
            else:
                metadata[name] = value

        term_freqs = dict(Counter(tokens))
        self._docs[doc_id] = IndexedDocument(
            term_freqs=term_freqs, length=len(tokens), metadata=metadata
        )

        for term in term_freqs:
            self._doc_freq[term] = self._doc_freq.get(term, 0) + 1
        self._total_length += len(tokens)

    def remove_document(self, doc_id: str) -> bool:
        """Remove a document from the index.

        Returns:
            True if the document was indexed.
        """
        doc = self._docs.pop(doc_id, None)
        if doc is None:
            return False

        for term in doc.term_freqs:
            remaining = self._doc_freq.get(term, 0) - 1
            if remaining <= 0:
                self._doc_freq.pop(term, None)
            else:
                self._doc_freq[term] = remaining
        self._total_length -= doc.length
        return True

    def clear(self) -> None:
        """Remove all documents."""
        self._docs.clear()
        self._doc_freq.clear()
        self._total_length = 0

    def _idf(self, term: str) -> float:
        """IDF = log((N - n + 0.5) / (n + 0.5) + 1); never negative."""
        n = self._doc_freq.get(term, 0)
        total = len(self._docs)
        if total == 0:
            return 0.0
        return math.log((total - n + 0.5) / (n + 0.5) + 1)

    def _score(self, query_terms: list[str], doc: IndexedDocument, avgdl: float) -> float:
        score = 0.0
        for term in query_terms:
            tf = doc.term_freqs.get(term)
            if not tf:
                continue

            numerator = tf * (self.k1 + 1)
            if avgdl > 0:
                denominator = tf + self.k1 * (1 - self.b + self.b * doc.length / avgdl)
            else:
                denominator = tf + self.k1

            if denominator > 0:
                score += self._idf(term) * (numerator / denominator)
        return score

    def search(self, query: str, k: int) -> list[KeywordSearchResult]:
        """Rank documents against a keyword query.

        Args:
            query: Free text query.
            k: Maximum number of results.

        Returns:
            Results sorted by BM25 score descending. Only documents that
            share at least one term with the query are returned.
        """
        if not self._docs or k <= 0:
            return []

        query_terms = self.tokenize(query)
        if not query_terms:
            return []

        avgdl = self._total_length / len(self._docs)
        unique_terms = set(query_terms)

        results: list[KeywordSearchResult] = []
        for doc_id, doc in self._docs.items():
            if unique_terms.isdisjoint(doc.term_freqs):
                continue
            results.append(
                KeywordSearchResult(
                    id=doc_id,
                    score=self._score(query_terms, doc, avgdl),
                    metadata=dict(doc.metadata),
                )
            )

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:k]

    def stats(self) -> dict[str, float | int]:
        """Get statistics about the index.

        Returns:
            Dictionary with total_docs, avg_doc_length and vocabulary_size.
        """
        total = len(self._docs)
        return {
            "total_docs": total,
            "avg_doc_length": self._total_length / total if total else 0.0,
            "vocabulary_size": len(self._doc_freq),
        }
