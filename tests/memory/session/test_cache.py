# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the session cache.

Covers TTL eviction, explicit removal, snapshot persistence and
degradation of corrupt snapshots to empty sessions.
"""

import json
import logging
from pathlib import Path

import pytest

from session_recall.memory.retrieval.vector_index import Document
from session_recall.memory.schemas import create_message
from session_recall.memory.session import (
    InMemoryStore,
    JsonFileStore,
    SessionCache,
    SessionEntry,
    SessionKey,
)
from session_recall.memory.session.cache import keyword_fields


def populate(entry: SessionEntry) -> None:
    """Add two documents and two messages to an entry."""
    docs = [
        ("d1", "cats are great", [1.0, 0.0, 0.0], {"role": "user", "toolCallId": None}),
        ("d2", "dogs are great", [0.0, 1.0, 0.0], {"role": "assistant"}),
    ]
    for doc_id, content, vector, metadata in docs:
        entry.vector_index.add(Document(id=doc_id, content=content, vector=vector, metadata=metadata))
        entry.keyword_index.add_document(doc_id, keyword_fields(content, metadata))
    entry.messages.append(create_message("user", "cats are great"))
    entry.messages.append(create_message("tool", "dogs are great", tool_call_id="call-1"))


@pytest.fixture
def key() -> SessionKey:
    return SessionKey("workflow-1", "session-1")


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def cache(store: InMemoryStore) -> SessionCache:
    """Three-dimensional cache persisting to an in-memory store."""
    return SessionCache(dimensions=3, store=store)


class TestSessionKey:
    """Tests for the compound key."""

    def test_storage_key_is_session_scoped(self) -> None:
        """Storage key includes scope and session id."""
        assert SessionCache.storage_key(SessionKey("wf", "s1")) == "rag_wf__s1"

    def test_keys_are_hashable_values(self) -> None:
        """Equal keys address the same session."""
        assert SessionKey("a", "b") == SessionKey("a", "b")
        assert len({SessionKey("a", "b"), SessionKey("a", "b")}) == 1


class TestGet:
    """Tests for get()."""

    def test_creates_empty_entry(self, cache: SessionCache, key: SessionKey) -> None:
        """First access creates an empty session."""
        entry = cache.get(key)

        assert len(entry.vector_index) == 0
        assert len(entry.keyword_index) == 0
        assert entry.messages == []
        assert entry.vector_index.dimensions == 3
        assert key in cache

    def test_returns_same_entry(self, cache: SessionCache, key: SessionKey) -> None:
        """Repeated access returns the live entry."""
        assert cache.get(key) is cache.get(key)

    def test_sessions_are_isolated(self, cache: SessionCache) -> None:
        """Different scopes with the same session id are different sessions."""
        a = cache.get(SessionKey("scope-a", "s"))
        b = cache.get(SessionKey("scope-b", "s"))
        a.messages.append(create_message("user", "hi"))

        assert b.messages == []
        assert len(cache) == 2

    def test_updates_last_access(self, cache: SessionCache, key: SessionKey) -> None:
        """Access refreshes the idle timer."""
        first = cache.get(key).last_access
        cache._advance_time(10)
        assert cache.get(key).last_access > first


class TestTTLEviction:
    """Tests for lazy idle eviction."""

    def test_idle_session_evicted_on_any_access(self) -> None:
        """A session idle beyond the TTL is evicted on the next access to any session."""
        cache = SessionCache(dimensions=3, ttl_seconds=60)
        idle = SessionKey("wf", "idle")
        active = SessionKey("wf", "active")
        cache.get(idle).messages.append(create_message("user", "remember me"))

        cache._advance_time(61)
        cache.get(active)

        assert idle not in cache
        assert active in cache
        assert cache.get(idle).messages == []

    def test_session_within_ttl_kept(self, key: SessionKey) -> None:
        """Sessions idle less than the TTL survive."""
        cache = SessionCache(dimensions=3, ttl_seconds=60)
        cache.get(key)

        cache._advance_time(59)
        cache.get(SessionKey("wf", "other"))

        assert key in cache

    def test_access_resets_timer(self, key: SessionKey) -> None:
        """Each access restarts the idle period."""
        cache = SessionCache(dimensions=3, ttl_seconds=60)
        cache.get(key)
        cache._advance_time(40)
        cache.get(key)
        cache._advance_time(40)

        assert cache.cleanup_expired() == 0
        assert key in cache

    def test_cleanup_expired_counts(self) -> None:
        """cleanup_expired() evicts every idle session and reports how many."""
        cache = SessionCache(dimensions=3, ttl_seconds=1)
        for i in range(3):
            cache.get(SessionKey("wf", f"s{i}"))

        cache._advance_time(2)

        assert cache.cleanup_expired() == 3
        assert len(cache) == 0

    def test_eviction_keeps_snapshot(self, cache: SessionCache, store: InMemoryStore, key: SessionKey) -> None:
        """TTL eviction is memory-only; the session is restored on next access."""
        populate(cache.get(key))
        cache.persist(key)

        cache._advance_time(cache.ttl_seconds + 1)
        cache.cleanup_expired()

        assert key not in cache
        assert store.load(SessionCache.storage_key(key)) is not None
        assert len(cache.get(key).vector_index) == 2

    def test_eviction_logged(self, key: SessionKey, caplog) -> None:
        """Evictions are logged at info level."""
        cache = SessionCache(dimensions=3, ttl_seconds=1)
        cache.get(key)
        cache._advance_time(5)

        with caplog.at_level(logging.INFO, logger="session_recall.memory.session.cache"):
            cache.cleanup_expired()

        assert "Evicted 1 idle session" in caplog.text


class TestRemove:
    """Tests for explicit removal."""

    def test_remove_is_immediate(self, cache: SessionCache, store: InMemoryStore, key: SessionKey) -> None:
        """remove() evicts regardless of age and deletes the snapshot."""
        populate(cache.get(key))
        cache.persist(key)

        assert cache.remove(key) is True
        assert key not in cache
        assert store.load(SessionCache.storage_key(key)) is None
        assert len(cache.get(key).vector_index) == 0

    def test_remove_unknown(self, cache: SessionCache) -> None:
        """Removing an unknown session reports False."""
        assert cache.remove(SessionKey("wf", "ghost")) is False

    def test_remove_deletes_snapshot_of_evicted_session(
        self, cache: SessionCache, store: InMemoryStore, key: SessionKey
    ) -> None:
        """A snapshot is deleted even when the session is not live."""
        populate(cache.get(key))
        cache.persist(key)
        cache.close()

        assert cache.remove(key) is False
        assert store.load(SessionCache.storage_key(key)) is None

    def test_close_drops_live_sessions(self, cache: SessionCache, key: SessionKey) -> None:
        """close() empties the cache."""
        cache.get(key)
        cache.close()
        assert len(cache) == 0


class TestPersistence:
    """Tests for snapshot save and restore."""

    def test_persist_disabled_without_store(self, key: SessionKey) -> None:
        """Without a store, persist() is a no-op."""
        cache = SessionCache(dimensions=3)
        populate(cache.get(key))

        assert cache.persistence_enabled is False
        cache.persist(key)

    def test_snapshot_wire_format(self, cache: SessionCache, store: InMemoryStore, key: SessionKey) -> None:
        """The snapshot uses camelCase keys and omits absent message fields."""
        populate(cache.get(key))
        cache.persist(key)

        payload = json.loads(store.load("rag_workflow-1__session-1"))

        assert payload["dimensions"] == 3
        assert payload["distanceMetric"] == "cosine"
        assert payload["documents"][0] == {
            "id": "d1",
            "content": "cats are great",
            "vector": [1.0, 0.0, 0.0],
            "metadata": {"role": "user", "toolCallId": None},
        }
        assert payload["messages"] == [
            {"role": "user", "content": "cats are great"},
            {"role": "tool", "content": "dogs are great", "toolCallId": "call-1"},
        ]

    def test_restore_round_trip(self, store: InMemoryStore, key: SessionKey) -> None:
        """A new cache restores documents, messages and keyword search."""
        writer = SessionCache(dimensions=3, store=store)
        populate(writer.get(key))
        writer.persist(key)

        reader = SessionCache(dimensions=3, store=store)
        entry = reader.get(key)

        assert len(entry.vector_index) == 2
        assert entry.vector_index.get("d1").metadata == {"role": "user", "toolCallId": None}
        assert [m.content for m in entry.messages] == ["cats are great", "dogs are great"]
        assert entry.messages[1].tool_call_id == "call-1"
        assert [r.id for r in entry.keyword_index.search("dogs", 5)] == ["d2"]
        assert entry.vector_index.search([0.0, 1.0, 0.0], k=1)[0].id == "d2"

    def test_round_trip_through_files(self, tmp_path: Path, key: SessionKey) -> None:
        """Snapshots survive a JsonFileStore round trip."""
        writer = SessionCache(dimensions=3, store=JsonFileStore(tmp_path))
        populate(writer.get(key))
        writer.persist(key)

        reader = SessionCache(dimensions=3, store=JsonFileStore(tmp_path))
        entry = reader.get(key)

        assert len(entry.vector_index) == 2
        assert len(entry.messages) == 2

    @pytest.mark.parametrize(
        "blob",
        [
            "not json at all",
            "[1, 2, 3]",
            '{"dimensions": 3}',
            '{"dimensions": 3, "distanceMetric": "cosine", "documents": [{"id": "x"}]}',
            '{"dimensions": 0, "distanceMetric": "cosine"}',
        ],
    )
    def test_corrupt_snapshot_degrades_to_empty(
        self, cache: SessionCache, store: InMemoryStore, key: SessionKey, blob: str, caplog
    ) -> None:
        """Corrupt blobs are treated as a cache miss and logged."""
        store.save(SessionCache.storage_key(key), blob)

        with caplog.at_level(logging.WARNING, logger="session_recall.memory.session.cache"):
            entry = cache.get(key)

        assert len(entry.vector_index) == 0
        assert entry.messages == []
        assert "Discarding snapshot" in caplog.text

    def test_undecodable_snapshot_file_degrades_to_empty(self, tmp_path: Path, key: SessionKey, caplog) -> None:
        """A snapshot file that is not UTF-8 is a cache miss, not a crash."""
        store = JsonFileStore(tmp_path)
        snapshot_file = tmp_path / "rag_workflow-1__session-1.json"
        snapshot_file.write_bytes(b'{"dimensions": 3, \xff\xfe garbage')
        cache = SessionCache(dimensions=3, store=store)

        with caplog.at_level(logging.WARNING, logger="session_recall.memory.session.cache"):
            entry = cache.get(key)

        assert len(entry.vector_index) == 0
        assert entry.messages == []
        assert "not valid UTF-8" in caplog.text

        populate(entry)
        cache.persist(key)
        assert len(SessionCache(dimensions=3, store=store).get(key).vector_index) == 2

    def test_dimension_mismatch_degrades_to_empty(self, store: InMemoryStore, key: SessionKey) -> None:
        """A snapshot written at other dimensions is not restored."""
        writer = SessionCache(dimensions=3, store=store)
        populate(writer.get(key))
        writer.persist(key)

        reader = SessionCache(dimensions=4, store=store)
        assert len(reader.get(key).vector_index) == 0

    def test_metric_mismatch_degrades_to_empty(self, store: InMemoryStore, key: SessionKey) -> None:
        """A snapshot written under another metric is not restored."""
        writer = SessionCache(dimensions=3, store=store)
        populate(writer.get(key))
        writer.persist(key)

        reader = SessionCache(dimensions=3, distance_metric="dot", store=store)
        assert len(reader.get(key).vector_index) == 0

    def test_bad_document_vector_degrades_to_empty(self, cache: SessionCache, store: InMemoryStore, key: SessionKey) -> None:
        """A document vector of the wrong length invalidates the snapshot."""
        blob = json.dumps(
            {
                "dimensions": 3,
                "distanceMetric": "cosine",
                "documents": [{"id": "x", "content": "c", "vector": [1.0], "metadata": {}}],
                "messages": [],
            }
        )
        store.save(SessionCache.storage_key(key), blob)

        assert len(cache.get(key).vector_index) == 0

    def test_null_metadata_accepted(self, cache: SessionCache, store: InMemoryStore, key: SessionKey) -> None:
        """Documents with null metadata restore with empty metadata."""
        blob = json.dumps(
            {
                "dimensions": 3,
                "distanceMetric": "cosine",
                "documents": [{"id": "x", "content": "c", "vector": [1, 0, 0], "metadata": None}],
                "messages": [{"role": "assistant", "content": None}],
            }
        )
        store.save(SessionCache.storage_key(key), blob)

        entry = cache.get(key)
        assert entry.vector_index.get("x").metadata == {}
        assert entry.messages[0].content == ""
