# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Session cache and snapshot persistence."""

from session_recall.memory.session.cache import SessionCache, SessionEntry, SessionKey
from session_recall.memory.session.stores import InMemoryStore, JsonFileStore, PersistenceAdapter

__all__ = [
    "InMemoryStore",
    "JsonFileStore",
    "PersistenceAdapter",
    "SessionCache",
    "SessionEntry",
    "SessionKey",
]
