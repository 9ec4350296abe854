# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Root pytest configuration with shared fixtures and markers.

This file is automatically loaded by pytest and provides:
- Custom markers for test categorisation
- A deterministic embedder for facade tests
- Shared fixtures for session isolation
"""

import uuid

import pytest

from session_recall.memory.session import InMemoryStore, SessionCache

# Words mapped to their own axis; anything else lands on the last axis
AXIS_WORDS = ("cats", "dogs", "deploy")
AXIS_DIMENSIONS = len(AXIS_WORDS) + 1


class AxisEmbedder:
    """Deterministic embedder: one axis per known word.

    A text's vector is the count of each known word on its axis; text
    with no known word maps to the last axis.
    """

    def __init__(self, dimensions: int = AXIS_DIMENSIONS):
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    def supports_embedding(self) -> bool:
        return True

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        words = text.lower().split()
        for i, word in enumerate(AXIS_WORDS):
            vector[i] = float(sum(1 for w in words if w.strip(".,!?") == word))
        if not any(vector):
            vector[-1] = 1.0
        return vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "critical: Mark test as critical priority",
    )
    config.addinivalue_line(
        "markers",
        "integration: Mark test as integration test (cross-component)",
    )
    config.addinivalue_line(
        "markers",
        "slow: Mark test as slow-running (may be skipped in quick runs)",
    )


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def temp_session_id() -> str:
    """Generate a temporary session ID for isolation tests."""
    return f"test-session-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def embedder() -> AxisEmbedder:
    """Deterministic embedder with one axis per known word."""
    return AxisEmbedder()


@pytest.fixture
def memory_store() -> InMemoryStore:
    """Dict-backed persistence adapter."""
    return InMemoryStore()


@pytest.fixture
def session_cache(memory_store: InMemoryStore) -> SessionCache:
    """Session cache sized for AxisEmbedder, persisting to memory_store."""
    return SessionCache(dimensions=AXIS_DIMENSIONS, store=memory_store)
