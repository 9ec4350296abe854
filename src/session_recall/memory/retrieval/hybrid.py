# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Hybrid retrieval over one session's indexes.

Dispatches a query to the vector index, the keyword index, or both:

- vector: dense semantic search with a similarity floor
- keyword: BM25 sparse search
- hybrid: over-fetch max(3k, 50) candidates from each index, then fuse
  with RRF or weighted fusion

Each search records RetrievalMetrics (timings and candidate counts) on
the instance as ``last_metrics``.
"""

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from session_recall.errors import MissingSearchInputError, ValidationError
from session_recall.memory.retrieval.bm25 import KeywordIndex
from session_recall.memory.retrieval.fusion import FusedResult, FusionMethod, RankFusion
from session_recall.memory.retrieval.vector_index import VectorIndex

logger = logging.getLogger(__name__)


class SearchMode(str, Enum):
    """Retrieval modes."""

    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


@dataclass
class RetrievalMetrics:
    """Metrics for a retrieval operation.

    Attributes:
        mode: Search mode used.
        total_time_ms: Total retrieval time in milliseconds.
        vector_time_ms: Time spent in vector search.
        keyword_time_ms: Time spent in keyword search.
        fusion_time_ms: Time spent fusing.
        vector_candidates: Number of vector candidates.
        keyword_candidates: Number of keyword candidates.
        final_results: Number of final results.
    """

    mode: SearchMode = SearchMode.HYBRID
    total_time_ms: float = 0.0
    vector_time_ms: float = 0.0
    keyword_time_ms: float = 0.0
    fusion_time_ms: float = 0.0
    vector_candidates: int = 0
    keyword_candidates: int = 0
    final_results: int = 0


class HybridSearch:
    """Mode dispatch over a vector index and a keyword index.

    Example:
        >>> search = HybridSearch(vector_index, keyword_index)
        >>> results = search.search(
        ...     SearchMode.HYBRID, k=5,
        ...     query_vector=embedding, keywords="database config",
        ... )
        >>> for result in results:
        ...     print(f"{result.id}: {result.score:.4f}")

    Attributes:
        vector_index: Dense index.
        keyword_index: BM25 index over the same documents.
        fusion: Fusion component for hybrid mode.
        last_metrics: Metrics from the most recent search, if any.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        keyword_index: KeywordIndex,
        fusion: Optional[RankFusion] = None,
    ):
        self.vector_index = vector_index
        self.keyword_index = keyword_index
        self.fusion = fusion or RankFusion()
        self.last_metrics: Optional[RetrievalMetrics] = None

    def search(
        self,
        mode: SearchMode | str,
        k: int,
        query_vector: Optional[Sequence[float]] = None,
        keywords: Optional[str] = None,
        alpha: float = 0.5,
        fusion_method: FusionMethod | str = FusionMethod.RRF,
        min_similarity: float = 0.0,
    ) -> list[FusedResult]:
        """Run a search in the given mode.

        Results are returned as FusedResult in every mode. In vector mode
        the score is the similarity; in keyword mode it is the BM25 score;
        in hybrid mode it is the fused score.

        Args:
            mode: vector, keyword or hybrid.
            k: Maximum number of results.
            query_vector: Query embedding (vector and hybrid modes).
            keywords: Query text (keyword and hybrid modes).
            alpha: Vector weight for weighted fusion.
            fusion_method: rrf or weighted.
            min_similarity: Similarity floor for vector mode.

        Returns:
            Results sorted best first.

        Raises:
            MissingSearchInputError: If the mode's required input is missing.
            ValidationError: If the mode is unknown.
            DimensionMismatchError: If the query vector has the wrong length.
        """
        try:
            mode = SearchMode(mode)
        except ValueError as e:
            raise ValidationError(f"Unknown search mode: {mode}") from e

        if mode in (SearchMode.VECTOR, SearchMode.HYBRID) and query_vector is None:
            raise MissingSearchInputError("query_vector", mode.value)
        if mode in (SearchMode.KEYWORD, SearchMode.HYBRID) and keywords is None:
            raise MissingSearchInputError("keywords", mode.value)

        metrics = RetrievalMetrics(mode=mode)
        start_time = time.perf_counter()

        if mode == SearchMode.VECTOR:
            t0 = time.perf_counter()
            hits = self.vector_index.search(query_vector, k, min_similarity=min_similarity)
            metrics.vector_time_ms = (time.perf_counter() - t0) * 1000
            metrics.vector_candidates = len(hits)
            results = [
                FusedResult(
                    id=h.id,
                    score=h.similarity,
                    vector_similarity=h.similarity,
                    metadata=h.metadata,
                )
                for h in hits
            ]

        elif mode == SearchMode.KEYWORD:
            t0 = time.perf_counter()
            kw_hits = self.keyword_index.search(keywords, k)
            metrics.keyword_time_ms = (time.perf_counter() - t0) * 1000
            metrics.keyword_candidates = len(kw_hits)
            results = [
                FusedResult(id=h.id, score=h.score, keyword_score=h.score, metadata=h.metadata)
                for h in kw_hits
            ]

        else:
            fetch_k = self.fusion.over_fetch(k)

            t0 = time.perf_counter()
            # No similarity floor here; fused scores are filtered by the caller
            vec_hits = self.vector_index.search(query_vector, fetch_k, min_similarity=-math.inf)
            metrics.vector_time_ms = (time.perf_counter() - t0) * 1000

            t0 = time.perf_counter()
            kw_hits = self.keyword_index.search(keywords, fetch_k)
            metrics.keyword_time_ms = (time.perf_counter() - t0) * 1000

            metrics.vector_candidates = len(vec_hits)
            metrics.keyword_candidates = len(kw_hits)

            t0 = time.perf_counter()
            results = self.fusion.merge(vec_hits, kw_hits, k, method=fusion_method, alpha=alpha)
            metrics.fusion_time_ms = (time.perf_counter() - t0) * 1000

        metrics.final_results = len(results)
        metrics.total_time_ms = (time.perf_counter() - start_time) * 1000
        self.last_metrics = metrics

        logger.debug(
            f"{mode.value} search: {metrics.final_results} results "
            f"(vector={metrics.vector_candidates}, keyword={metrics.keyword_candidates}) "
            f"in {metrics.total_time_ms:.2f}ms"
        )
        return results
