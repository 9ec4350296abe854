# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Error taxonomy for session recall.

- ValidationError: bad input to an index or search (dimension mismatch,
  missing query input for a search mode).
- CapabilityUnsupportedError: embedding requested from an embedder that
  cannot produce vectors.
- PersistenceCorruptionError: a persisted snapshot could not be restored.
  Raised and caught inside the session cache, which degrades to a fresh
  empty session.
"""

from typing import Optional


class RecallError(Exception):
    """Base exception for session recall errors."""

    pass


class ValidationError(RecallError, ValueError):
    """Invalid input to an index, fusion or search call."""

    pass


class DimensionMismatchError(ValidationError):
    """Raised when a vector length does not match the index dimensions."""

    def __init__(self, expected: int, actual: int, what: str = "vector"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Dimension mismatch for {what}: expected {expected}, got {actual}"
        )


class MissingSearchInputError(ValidationError):
    """Raised when a search mode is called without an input it requires."""

    def __init__(self, parameter: str, mode: str):
        self.parameter = parameter
        self.mode = mode
        super().__init__(f"{parameter} is required for {mode} search mode")


class CapabilityUnsupportedError(RecallError):
    """Raised when embedding is requested but the embedder cannot embed."""

    def __init__(self, capability: str = "embedding", provider: Optional[str] = None):
        self.capability = capability
        self.provider = provider
        who = f"Provider '{provider}'" if provider else "Embedder"
        super().__init__(f"{who} does not support {capability}")


class PersistenceCorruptionError(RecallError):
    """Raised when a persisted session snapshot cannot be restored."""

    def __init__(self, storage_key: str, reason: str):
        self.storage_key = storage_key
        self.reason = reason
        super().__init__(f"Corrupt snapshot '{storage_key}': {reason}")
