# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Embedding capability for retrieval memory.

An embedder declares up front whether it can produce vectors through
``supports_embedding()``; callers query it before use instead of probing
for an ``embed`` attribute at call time.

Implementations:
- NoEmbedder: declares no embedding support (keyword-only sessions)
- CallableEmbedder: wraps a sync or async function, e.g. an LLM
  provider's embedding endpoint
- SentenceTransformerEmbedder: local sentence-transformers model
  (optional ``embeddings`` extra)
"""

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable, Optional, Protocol, Sequence, cast, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from session_recall.errors import CapabilityUnsupportedError, ValidationError

logger = logging.getLogger(__name__)

# Known embedding model output sizes
MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "text-embedding-004": 768,
    "embedding-001": 768,
}

# Provider defaults when the model is unknown
PROVIDER_DIMENSIONS: dict[str, int] = {
    "openai": 1536,
    "gemini": 768,
    "anthropic": 1024,
}

DEFAULT_DIMENSIONS = 768


def embedding_dimensions(provider: str, model: Optional[str] = None) -> int:
    """Get the embedding vector length for a provider and model.

    Args:
        provider: Provider name (openai, gemini, anthropic...).
        model: Model name, if known.

    Returns:
        Model dimensions if the model is known, else the provider default,
        else 768.
    """
    if model and model in MODEL_DIMENSIONS:
        return MODEL_DIMENSIONS[model]
    return PROVIDER_DIMENSIONS.get(provider.lower(), DEFAULT_DIMENSIONS)


@runtime_checkable
class Embedder(Protocol):
    """Protocol for text embedding capability."""

    def supports_embedding(self) -> bool: ...

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class NoEmbedder:
    """Embedder for sessions without an embedding provider."""

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider

    def supports_embedding(self) -> bool:
        return False

    async def embed(self, texts: list[str]) -> list[list[float]]:
        raise CapabilityUnsupportedError("embedding", self.provider)


class CallableEmbedder:
    """Adapts an embedding function to the Embedder protocol.

    The function receives the list of texts and returns one vector per
    text, in order. It may be sync or async. Provider errors propagate
    unchanged.

    Example:
        >>> embedder = CallableEmbedder(client.embed, provider="openai")
        >>> vectors = await embedder.embed(["hello", "world"])
    """

    def __init__(self, fn: Callable[[list[str]], Any], provider: Optional[str] = None):
        self._fn = fn
        self.provider = provider

    def supports_embedding(self) -> bool:
        return True

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts through the wrapped function.

        Raises:
            ValidationError: If the function returns a different number of
                vectors than texts.
        """
        if not texts:
            return []

        result = self._fn(list(texts))
        if inspect.isawaitable(result):
            result = await result

        vectors = [[float(x) for x in vec] for vec in result]
        if len(vectors) != len(texts):
            raise ValidationError(
                f"Embedder returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors


class EmbeddingModel(Protocol):
    """Protocol for sentence-transformers style embedding models."""

    def encode(
        self,
        sentences: Sequence[str],
        normalize_embeddings: bool = False,
        show_progress_bar: bool = False,
    ) -> NDArray[np.float32]: ...


class SentenceTransformerEmbedder:
    """Local embedder backed by sentence-transformers.

    The model is loaded on first use. Encoding runs in a worker thread so
    it does not block the event loop.

    Attributes:
        model_name: Name of the sentence-transformers model.
        normalize: Whether to L2-normalize embeddings.
    """

    # Default model - fast and good quality
    DEFAULT_MODEL = "all-MiniLM-L6-v2"

    def __init__(self, model_name: str = DEFAULT_MODEL, normalize: bool = True):
        self.model_name = model_name
        self.normalize = normalize
        self._model: Optional[EmbeddingModel] = None
        self._lock = threading.Lock()

    def supports_embedding(self) -> bool:
        return True

    def _load_model(self) -> EmbeddingModel:
        """Load the sentence-transformers model.

        Returns:
            Loaded embedding model.
        """
        if self._model is not None:
            return self._model

        with self._lock:
            # Double-check after acquiring lock
            if self._model is not None:
                return self._model

            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ImportError(
                    "sentence-transformers is required for SentenceTransformerEmbedder. "
                    "Install with: pip install 'session-recall[embeddings]'"
                ) from e

            logger.info(f"Loading embedding model: {self.model_name}")
            self._model = cast(EmbeddingModel, SentenceTransformer(self.model_name))
            logger.info("Embedding model loaded successfully")
            return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._load_model()
        embeddings = model.encode(
            texts,
            normalize_embeddings=self.normalize,
            show_progress_bar=False,
        )
        return np.asarray(embeddings, dtype=np.float64).tolist()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, list(texts))
