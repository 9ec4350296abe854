# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for embedding capability types."""

import asyncio
import sys
import time
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from session_recall.errors import CapabilityUnsupportedError, ValidationError
from session_recall.memory.embedders import (
    CallableEmbedder,
    Embedder,
    NoEmbedder,
    SentenceTransformerEmbedder,
    embedding_dimensions,
)


class TestEmbeddingDimensions:
    """Tests for provider/model dimension lookup."""

    @pytest.mark.parametrize(
        "provider,model,expected",
        [
            ("openai", "text-embedding-3-small", 1536),
            ("openai", "text-embedding-3-large", 3072),
            ("openai", "text-embedding-ada-002", 1536),
            ("gemini", "text-embedding-004", 768),
            ("gemini", "embedding-001", 768),
            ("openai", None, 1536),
            ("gemini", "unknown-model", 768),
            ("anthropic", None, 1024),
            ("OpenAI", None, 1536),
            ("somebody-else", None, 768),
        ],
    )
    def test_lookup(self, provider: str, model, expected: int) -> None:
        """Known models first, then provider defaults, then 768."""
        assert embedding_dimensions(provider, model) == expected


class TestNoEmbedder:
    """Tests for NoEmbedder."""

    def test_declares_no_support(self) -> None:
        """supports_embedding() is False."""
        assert NoEmbedder().supports_embedding() is False

    @pytest.mark.asyncio
    async def test_embed_raises(self) -> None:
        """embed() raises CapabilityUnsupportedError naming the provider."""
        with pytest.raises(CapabilityUnsupportedError, match="anthropic"):
            await NoEmbedder(provider="anthropic").embed(["hello"])

    def test_satisfies_protocol(self) -> None:
        """NoEmbedder is an Embedder."""
        assert isinstance(NoEmbedder(), Embedder)


class TestCallableEmbedder:
    """Tests for CallableEmbedder."""

    @pytest.mark.asyncio
    async def test_sync_callable(self) -> None:
        """Sync functions are called directly."""
        embedder = CallableEmbedder(lambda texts: [[float(len(t)), 1.0] for t in texts])

        assert embedder.supports_embedding() is True
        assert await embedder.embed(["ab", "abc"]) == [[2.0, 1.0], [3.0, 1.0]]

    @pytest.mark.asyncio
    async def test_async_callable(self) -> None:
        """Async functions are awaited."""
        fn = AsyncMock(return_value=[[0.1, 0.2]])
        embedder = CallableEmbedder(fn, provider="openai")

        assert await embedder.embed(["hi"]) == [[0.1, 0.2]]
        fn.assert_awaited_once_with(["hi"])

    @pytest.mark.asyncio
    async def test_numpy_output(self) -> None:
        """Array output is converted to plain float lists."""
        embedder = CallableEmbedder(lambda texts: np.ones((len(texts), 2), dtype=np.float32))
        assert await embedder.embed(["a"]) == [[1.0, 1.0]]

    @pytest.mark.asyncio
    async def test_count_mismatch(self) -> None:
        """Output count must equal input count."""
        embedder = CallableEmbedder(lambda texts: [[1.0]])
        with pytest.raises(ValidationError, match="1 vectors for 2 texts"):
            await embedder.embed(["a", "b"])

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self) -> None:
        """Provider errors propagate unchanged."""

        class RateLimited(Exception):
            pass

        embedder = CallableEmbedder(AsyncMock(side_effect=RateLimited("slow down")))
        with pytest.raises(RateLimited, match="slow down"):
            await embedder.embed(["a"])

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        """Empty input does not call the provider."""
        fn = MagicMock()
        assert await CallableEmbedder(fn).embed([]) == []
        fn.assert_not_called()


class TestSentenceTransformerEmbedder:
    """Tests for SentenceTransformerEmbedder with a stubbed model."""

    @pytest.mark.asyncio
    async def test_encodes_with_loaded_model(self) -> None:
        """The model is loaded once and used for every call."""
        model = MagicMock()
        model.encode.side_effect = lambda texts, **kwargs: np.zeros((len(texts), 3), dtype=np.float32)
        fake_module = MagicMock()
        fake_module.SentenceTransformer.return_value = model

        embedder = SentenceTransformerEmbedder("tiny-model")
        with patch.dict(sys.modules, {"sentence_transformers": fake_module}):
            first = await embedder.embed(["a", "b"])
            await embedder.embed(["c"])

        assert first == [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]
        fake_module.SentenceTransformer.assert_called_once_with("tiny-model")
        assert model.encode.call_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_load_once(self) -> None:
        """Concurrent first calls share a single model load."""
        model = MagicMock()
        model.encode.side_effect = lambda texts, **kwargs: np.ones((len(texts), 2))

        def slow_load(name: str) -> MagicMock:
            time.sleep(0.05)
            return model

        fake_module = MagicMock()
        fake_module.SentenceTransformer.side_effect = slow_load

        embedder = SentenceTransformerEmbedder("tiny-model")
        with patch.dict(sys.modules, {"sentence_transformers": fake_module}):
            results = await asyncio.gather(*(embedder.embed([f"text {i}"]) for i in range(4)))

        assert all(r == [[1.0, 1.0]] for r in results)
        assert fake_module.SentenceTransformer.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_dependency(self) -> None:
        """A clear ImportError is raised when the extra is not installed."""
        embedder = SentenceTransformerEmbedder()
        with patch.dict(sys.modules, {"sentence_transformers": None}):
            with pytest.raises(ImportError, match="session-recall\\[embeddings\\]"):
                await embedder.embed(["a"])
