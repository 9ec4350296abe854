# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Session retrieval and ranking.

This module provides:
- Exhaustive dense vector search (cosine, euclidean, dot)
- BM25 sparse keyword search
- Rank fusion (RRF and weighted)
- Hybrid mode dispatch over both indexes
"""

from session_recall.memory.retrieval.bm25 import (
    ENGLISH_STOP_WORDS,
    KeywordIndex,
    KeywordSearchResult,
)
from session_recall.memory.retrieval.fusion import FusedResult, FusionMethod, RankFusion
from session_recall.memory.retrieval.hybrid import HybridSearch, RetrievalMetrics, SearchMode
from session_recall.memory.retrieval.vector_index import (
    DistanceMetric,
    Document,
    VectorIndex,
    VectorSearchResult,
)

__all__ = [
    # Dense
    "DistanceMetric",
    "Document",
    "VectorIndex",
    "VectorSearchResult",
    # Sparse
    "ENGLISH_STOP_WORDS",
    "KeywordIndex",
    "KeywordSearchResult",
    # Fusion
    "FusedResult",
    "FusionMethod",
    "RankFusion",
    "HybridSearch",
    "RetrievalMetrics",
    "SearchMode",
]
