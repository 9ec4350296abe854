# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Rank fusion for combining vector and keyword retrieval results.

Two policies are supported:

Reciprocal Rank Fusion: score(d) = Σ 1/(c + rank_i(d))
Where:
- c is a constant (default 60)
- rank_i(d) is the 1-indexed rank of document d in list i
- a document absent from a list contributes 0 for that list

Weighted fusion: score(d) = alpha * vec_norm(d) + (1 - alpha) * kw_norm(d)
Where each list's scores are min-max normalized to [0, 1] independently.

Reference: Cormack, G. V., Clarke, C. L., & Buettcher, S. (2009).
"Reciprocal Rank Fusion Outperforms Condorcet and Individual Rank
Learning Methods."
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

from session_recall.errors import ValidationError
from session_recall.memory.retrieval.bm25 import KeywordSearchResult
from session_recall.memory.retrieval.vector_index import VectorSearchResult


class FusionMethod(str, Enum):
    """Fusion policies."""

    RRF = "rrf"
    WEIGHTED = "weighted"


@dataclass
class FusedResult:
    """A result from rank fusion.

    Attributes:
        id: Document ID.
        score: Fused score.
        vector_similarity: Similarity from the vector list, if present there.
        keyword_score: BM25 score from the keyword list, if present there.
        metadata: Document metadata (vector list wins when in both).
    """

    id: str
    score: float
    vector_similarity: Optional[float] = None
    keyword_score: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Candidate:
    id: str
    vector_rank: Optional[int] = None
    keyword_rank: Optional[int] = None
    vector_similarity: Optional[float] = None
    keyword_score: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class RankFusion:
    """Merges a vector-ranked list and a keyword-ranked list.

    Example:
        >>> fusion = RankFusion(rrf_k=60)
        >>> fused = fusion.merge(vector_hits, keyword_hits, k=5, method="rrf")
        >>> for result in fused:
        ...     print(f"{result.id}: {result.score:.4f}")

    Attributes:
        rrf_k: RRF constant. Higher values reduce the impact of rank.
    """

    # Default constant from Cormack et al. (2009)
    DEFAULT_RRF_K = 60

    # Minimum candidates to pull from each sub-search before fusing
    MIN_OVER_FETCH = 50

    def __init__(self, rrf_k: int = DEFAULT_RRF_K):
        """Initialize rank fusion.

        Args:
            rrf_k: RRF constant. Must be non-negative.

        Raises:
            ValidationError: If rrf_k is negative.
        """
        if rrf_k < 0:
            raise ValidationError("rrf_k must be non-negative")
        self.rrf_k = rrf_k

    @classmethod
    def over_fetch(cls, k: int) -> int:
        """Candidates to request from each sub-search when fusing to k."""
        return max(3 * k, cls.MIN_OVER_FETCH)

    def merge(
        self,
        vector_results: Sequence[VectorSearchResult],
        keyword_results: Sequence[KeywordSearchResult],
        k: int,
        method: FusionMethod | str = FusionMethod.RRF,
        alpha: float = 0.5,
    ) -> list[FusedResult]:
        """Fuse two ranked lists into one.

        Both inputs must already be sorted best-first by the search that
        produced them.

        Args:
            vector_results: Vector search results, best first.
            keyword_results: Keyword search results, best first.
            k: Maximum number of fused results.
            method: rrf or weighted.
            alpha: Vector weight for weighted fusion, in [0, 1].

        Returns:
            Fused results sorted by score descending, at most k.

        Raises:
            ValidationError: If the method is unknown or alpha is out of range.
        """
        try:
            method = FusionMethod(method)
        except ValueError as e:
            raise ValidationError(f"Unknown fusion method: {method}") from e

        if method == FusionMethod.WEIGHTED:
            return self.weighted(vector_results, keyword_results, k, alpha)
        return self.reciprocal_rank(vector_results, keyword_results, k)

    def _candidates(
        self,
        vector_results: Sequence[VectorSearchResult],
        keyword_results: Sequence[KeywordSearchResult],
    ) -> dict[str, _Candidate]:
        candidates: dict[str, _Candidate] = {}

        for rank, result in enumerate(vector_results, start=1):
            cand = candidates.setdefault(result.id, _Candidate(id=result.id))
            if cand.vector_rank is None:
                cand.vector_rank = rank
                cand.vector_similarity = result.similarity
                cand.metadata = dict(result.metadata)

        for rank, result in enumerate(keyword_results, start=1):
            cand = candidates.setdefault(result.id, _Candidate(id=result.id))
            if cand.keyword_rank is None:
                cand.keyword_rank = rank
                cand.keyword_score = result.score
                if cand.vector_rank is None:
                    cand.metadata = dict(result.metadata)

        return candidates

    def reciprocal_rank(
        self,
        vector_results: Sequence[VectorSearchResult],
        keyword_results: Sequence[KeywordSearchResult],
        k: int,
    ) -> list[FusedResult]:
        """Reciprocal rank fusion of the two lists."""
        if k <= 0:
            return []

        scored: list[tuple[float, int, FusedResult]] = []
        for cand in self._candidates(vector_results, keyword_results).values():
            score = 0.0
            for rank in (cand.vector_rank, cand.keyword_rank):
                if rank is not None:
                    score += 1.0 / (self.rrf_k + rank)
            best_rank = min(r for r in (cand.vector_rank, cand.keyword_rank) if r is not None)
            scored.append((score, best_rank, self._to_result(cand, score)))

        scored.sort(key=lambda x: (-x[0], x[1]))
        return [result for _, _, result in scored[:k]]

    def weighted(
        self,
        vector_results: Sequence[VectorSearchResult],
        keyword_results: Sequence[KeywordSearchResult],
        k: int,
        alpha: float = 0.5,
    ) -> list[FusedResult]:
        """Weighted fusion of min-max normalized scores.

        Ties are broken by rank in the dominant list (vector when
        alpha >= 0.5, keyword otherwise), so alpha=1 reproduces the vector
        ranking and alpha=0 reproduces the keyword ranking.

        Raises:
            ValidationError: If alpha is outside [0, 1].
        """
        if not 0.0 <= alpha <= 1.0:
            raise ValidationError(f"alpha must be in [0, 1], got {alpha}")
        if k <= 0:
            return []

        vec_norm = self.normalize_scores({r.id: r.similarity for r in vector_results})
        kw_norm = self.normalize_scores({r.id: r.score for r in keyword_results})
        vector_first = alpha >= 0.5

        scored: list[tuple[float, tuple[float, float], FusedResult]] = []
        for cand in self._candidates(vector_results, keyword_results).values():
            score = alpha * vec_norm.get(cand.id, 0.0) + (1 - alpha) * kw_norm.get(cand.id, 0.0)
            vec_rank = cand.vector_rank if cand.vector_rank is not None else math.inf
            kw_rank = cand.keyword_rank if cand.keyword_rank is not None else math.inf
            tie_break = (vec_rank, kw_rank) if vector_first else (kw_rank, vec_rank)
            scored.append((score, tie_break, self._to_result(cand, score)))

        scored.sort(key=lambda x: (-x[0], x[1]))
        return [result for _, _, result in scored[:k]]

    @staticmethod
    def normalize_scores(scores: dict[str, float]) -> dict[str, float]:
        """Min-max normalize scores to [0, 1].

        A list whose scores are all equal normalizes to 1.0.
        """
        if not scores:
            return {}

        min_score = min(scores.values())
        max_score = max(scores.values())

        if max_score == min_score:
            return {item_id: 1.0 for item_id in scores}

        score_range = max_score - min_score
        return {item_id: (s - min_score) / score_range for item_id, s in scores.items()}

    @staticmethod
    def _to_result(cand: _Candidate, score: float) -> FusedResult:
        return FusedResult(
            id=cand.id,
            score=score,
            vector_similarity=cand.vector_similarity,
            keyword_score=cand.keyword_score,
            metadata=cand.metadata,
        )
