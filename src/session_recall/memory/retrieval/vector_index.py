# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Dense vector index for session-scoped semantic recall.

Stores (id, content, vector, metadata) documents for one session and
answers exhaustive k-nearest-neighbour queries under a configurable
metric. A session's history is small, so every query scans every
document (O(n * dims)) instead of maintaining an approximate index.

Metrics:
- cosine: distance = 1 - clip(cos(q, d), -1, 1); similarity = 1 - distance.
  A zero-norm vector on either side gives distance 1 (similarity 0).
- euclidean: distance = ||q - d||; similarity = 1 / (1 + distance).
- dot: distance = -dot(q, d); similarity = dot(q, d).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from session_recall.errors import DimensionMismatchError, ValidationError

logger = logging.getLogger(__name__)


class DistanceMetric(str, Enum):
    """Supported vector distance metrics."""

    COSINE = "cosine"
    EUCLIDEAN = "euclidean"
    DOT = "dot"


@dataclass
class Document:
    """A document to index.

    Attributes:
        id: Unique document identifier within the index.
        content: Text the vector was computed from.
        vector: Embedding of the content.
        metadata: Arbitrary JSON-serializable metadata.
    """

    id: str
    content: str
    vector: Sequence[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredDocument:
    """A document as held by the index.

    Attributes:
        id: Document identifier.
        content: Document text.
        vector: Private float64 copy of the vector.
        metadata: Document metadata.
        norm: Cached L2 norm, only set under the cosine metric.
    """

    id: str
    content: str
    vector: NDArray[np.float64]
    metadata: dict[str, Any]
    norm: Optional[float] = None


@dataclass
class VectorSearchResult:
    """A single vector search hit."""

    id: str
    content: str
    distance: float
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorIndex:
    """Exhaustive vector index for one session.

    Example:
        >>> index = VectorIndex(dimensions=3)
        >>> index.add(Document(id="a", content="A", vector=[1.0, 0.0, 0.0]))
        >>> index.add(Document(id="b", content="B", vector=[0.0, 1.0, 0.0]))
        >>> [r.id for r in index.search([1.0, 0.0, 0.0], k=1)]
        ['a']

    Attributes:
        dimensions: Required vector length.
        metric: Distance metric used by search.
    """

    def __init__(
        self,
        dimensions: int,
        metric: DistanceMetric | str = DistanceMetric.COSINE,
    ):
        """Initialize an empty index.

        Args:
            dimensions: Required vector length (must be positive).
            metric: Distance metric name or enum member.

        Raises:
            ValidationError: If dimensions is not positive or the metric is unknown.
        """
        if dimensions <= 0:
            raise ValidationError("dimensions must be positive")
        try:
            self.metric = DistanceMetric(metric)
        except ValueError as e:
            raise ValidationError(f"Unknown distance metric: {metric}") from e
        self.dimensions = dimensions
        self._documents: dict[str, StoredDocument] = {}

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._documents

    @property
    def size(self) -> int:
        """Number of stored documents."""
        return len(self._documents)

    def _as_vector(self, vector: Sequence[float], what: str) -> NDArray[np.float64]:
        try:
            arr = np.array(vector, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Vector for {what} is not numeric: {e}") from e
        if arr.ndim != 1 or arr.shape[0] != self.dimensions:
            actual = arr.shape[0] if arr.ndim == 1 else int(arr.size)
            raise DimensionMismatchError(self.dimensions, actual, what)
        return arr

    def add(self, doc: Document) -> None:
        """Add a document, replacing any document with the same id.

        Args:
            doc: Document to add.

        Raises:
            DimensionMismatchError: If the vector length differs from dimensions.
        """
        vector = self._as_vector(doc.vector, f"document '{doc.id}'")
        norm = float(np.linalg.norm(vector)) if self.metric == DistanceMetric.COSINE else None

        self._documents[doc.id] = StoredDocument(
            id=doc.id,
            content=doc.content,
            vector=vector,
            metadata=dict(doc.metadata or {}),
            norm=norm,
        )

    def add_many(self, docs: Iterable[Document]) -> None:
        """Add several documents; stops at the first invalid one."""
        for doc in docs:
            self.add(doc)

    def remove(self, doc_id: str) -> bool:
        """Remove a document.

        Returns:
            True if the document existed.
        """
        return self._documents.pop(doc_id, None) is not None

    def clear(self) -> None:
        """Remove all documents."""
        self._documents.clear()

    def get(self, doc_id: str) -> Optional[Document]:
        """Get a copy of a stored document, or None."""
        doc = self._documents.get(doc_id)
        if doc is None:
            return None
        return Document(
            id=doc.id,
            content=doc.content,
            vector=doc.vector.tolist(),
            metadata=dict(doc.metadata),
        )

    def _distances(
        self, query: NDArray[np.float64], matrix: NDArray[np.float64], norms: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        """Distance from the query to every row of matrix under the metric."""
        if self.metric == DistanceMetric.EUCLIDEAN:
            return np.linalg.norm(matrix - query, axis=1)

        dots = matrix @ query
        if self.metric == DistanceMetric.DOT:
            return -dots

        query_norm = float(np.linalg.norm(query))
        denom = norms * query_norm
        with np.errstate(divide="ignore", invalid="ignore"):
            cosine = np.clip(dots / denom, -1.0, 1.0)
        # Zero-norm vectors have no direction: treat as orthogonal
        return np.where(denom == 0, 1.0, 1.0 - cosine)

    def _similarities(self, distances: NDArray[np.float64]) -> NDArray[np.float64]:
        if self.metric == DistanceMetric.COSINE:
            return 1.0 - distances
        if self.metric == DistanceMetric.DOT:
            return -distances
        return 1.0 / (1.0 + distances)

    def search(
        self,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float = 0.0,
    ) -> list[VectorSearchResult]:
        """Find the k nearest documents to a query vector.

        Args:
            query_vector: Query embedding.
            k: Maximum number of results.
            min_similarity: Results below this similarity are dropped.

        Returns:
            Results sorted by ascending distance (descending similarity).

        Raises:
            DimensionMismatchError: If the query length differs from dimensions.
        """
        query = self._as_vector(query_vector, "query")

        if not self._documents or k <= 0:
            return []

        docs = list(self._documents.values())
        matrix = np.vstack([doc.vector for doc in docs])
        if self.metric == DistanceMetric.COSINE:
            norms = np.array([doc.norm for doc in docs], dtype=np.float64)
        else:
            norms = np.zeros(len(docs), dtype=np.float64)

        distances = self._distances(query, matrix, norms)
        similarities = self._similarities(distances)

        keep = np.flatnonzero(similarities >= min_similarity)
        # Stable sort keeps insertion order among equal distances
        order = keep[np.argsort(distances[keep], kind="stable")][:k]

        return [
            VectorSearchResult(
                id=docs[i].id,
                content=docs[i].content,
                distance=float(distances[i]),
                similarity=float(similarities[i]),
                metadata=dict(docs[i].metadata),
            )
            for i in order
        ]

    def export(self) -> dict[str, Any]:
        """Export the full index contents.

        Returns:
            Dict with ``dimensions``, ``distanceMetric`` and ``documents``.
        """
        return {
            "dimensions": self.dimensions,
            "distanceMetric": self.metric.value,
            "documents": [
                {
                    "id": doc.id,
                    "content": doc.content,
                    "vector": doc.vector.tolist(),
                    "metadata": dict(doc.metadata),
                }
                for doc in self._documents.values()
            ],
        }

    @classmethod
    def from_export(cls, data: dict[str, Any]) -> "VectorIndex":
        """Rebuild an index from export() output.

        Keyword structures are not rebuilt; callers index the documents
        separately.

        Raises:
            ValidationError: If the data is malformed or a vector has the
                wrong length.
        """
        try:
            dimensions = int(data["dimensions"])
            metric = data.get("distanceMetric", DistanceMetric.COSINE)
            documents = data.get("documents") or []
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed vector index export: {e}") from e

        index = cls(dimensions=dimensions, metric=metric)
        try:
            for raw in documents:
                index.add(
                    Document(
                        id=raw["id"],
                        content=raw["content"],
                        vector=raw["vector"],
                        metadata=raw.get("metadata") or {},
                    )
                )
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ValidationError(f"Malformed document in vector index export: {e!r}") from e
        logger.debug(f"Imported {len(index)} documents ({dimensions}d, {index.metric.value})")
        return index
