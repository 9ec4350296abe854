# Copyright 2024-2025 Amiable Development
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Session cache for retrieval memory.

Maps a (scope, session_id) key to the session's vector index, keyword
index and message history with:
- 1 hour idle TTL (configurable)
- Lazy eviction on every access, no timers or threads
- Optional snapshot persistence through a PersistenceAdapter

The cache is an ordinary object: callers construct it, share it between
facades as they see fit, and close() it when done.

No internal locking. One logical owner per session is assumed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import pydantic

from session_recall.errors import PersistenceCorruptionError, RecallError
from session_recall.memory.retrieval.bm25 import KeywordIndex
from session_recall.memory.retrieval.vector_index import DistanceMetric, VectorIndex
from session_recall.memory.schemas import DocumentRecord, Message, SessionSnapshot
from session_recall.memory.session.stores import PersistenceAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionKey:
    """
    Compound session key.

    Attributes:
        scope: Owner scope (workflow, tenant, agent...)
        session_id: Conversation identifier within the scope
    """

    scope: str
    session_id: str

    def __str__(self) -> str:
        return f"{self.scope}/{self.session_id}"


@dataclass
class SessionEntry:
    """
    Live state of one session.

    Attributes:
        vector_index: Dense index over the session's documents
        keyword_index: BM25 index over the same documents
        messages: Ordered message history
        last_access: Last time the cache handed out this entry
    """

    vector_index: VectorIndex
    keyword_index: KeywordIndex
    messages: List[Message] = field(default_factory=list)
    last_access: datetime = field(default_factory=datetime.now)


def keyword_fields(content: str, metadata: Optional[Dict] = None) -> Dict:
    """Fields passed to the keyword index for one document."""
    return {**(metadata or {}), "content": content}


class SessionCache:
    """
    Registry of live sessions with TTL eviction and optional persistence.

    Features:
    - Idle sessions evicted on the next access to any session
    - Absent sessions restored from the store, or created empty
    - Corrupt snapshots degrade to a fresh empty session
    """

    def __init__(
        self,
        dimensions: int,
        distance_metric: DistanceMetric | str = DistanceMetric.COSINE,
        ttl_seconds: float = 3600.0,
        store: Optional[PersistenceAdapter] = None,
        text_fields: Iterable[str] = ("content",),
    ):
        """
        Initialize session cache.

        Args:
            dimensions: Vector length for every session index
            distance_metric: Distance metric for every session index
            ttl_seconds: Idle seconds before a session is evicted
            store: Persistence adapter; persistence is disabled when None
            text_fields: Document fields indexed for keyword search
        """
        self.dimensions = dimensions
        self.distance_metric = DistanceMetric(distance_metric)
        self.ttl_seconds = ttl_seconds
        self.store = store
        self.text_fields = tuple(text_fields)

        self._entries: Dict[SessionKey, SessionEntry] = {}
        self._time_offset_seconds: float = 0.0

    @property
    def persistence_enabled(self) -> bool:
        return self.store is not None

    def _current_time(self) -> datetime:
        """Get current time with test offset."""
        return datetime.now() + timedelta(seconds=self._time_offset_seconds)

    def _advance_time(self, seconds: float) -> None:
        """Advance time for testing purposes."""
        self._time_offset_seconds += seconds

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @staticmethod
    def storage_key(key: SessionKey) -> str:
        """Session-scoped key under which a snapshot is persisted."""
        return f"rag_{key.scope}__{key.session_id}"

    def _new_entry(self) -> SessionEntry:
        return SessionEntry(
            vector_index=VectorIndex(self.dimensions, self.distance_metric),
            keyword_index=KeywordIndex(text_fields=self.text_fields),
            last_access=self._current_time(),
        )

    def _is_expired(self, entry: SessionEntry, now: datetime) -> bool:
        return now - entry.last_access > timedelta(seconds=self.ttl_seconds)

    def cleanup_expired(self) -> int:
        """
        Evict all sessions idle longer than the TTL.

        Persisted snapshots are kept; an evicted session is restored on
        its next access.

        Returns:
            Number of sessions evicted
        """
        now = self._current_time()
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]

        for key in expired:
            del self._entries[key]

        if expired:
            logger.info(f"Evicted {len(expired)} idle session(s)")
        return len(expired)

    def get(self, key: SessionKey) -> SessionEntry:
        """
        Get a session entry, restoring or creating it if absent.

        Args:
            key: Session key

        Returns:
            The live session entry
        """
        self.cleanup_expired()

        entry = self._entries.get(key)
        if entry is None:
            entry = self._restore(key) or self._new_entry()
            self._entries[key] = entry

        entry.last_access = self._current_time()
        return entry

    def _restore(self, key: SessionKey) -> Optional[SessionEntry]:
        """Restore a session from the store, or None if there is nothing usable."""
        if self.store is None:
            return None

        storage_key = self.storage_key(key)
        try:
            blob = self.store.load(storage_key)
            if blob is None:
                return None
            entry = self._deserialize(storage_key, blob)
        except PersistenceCorruptionError as e:
            logger.warning(f"Discarding snapshot for session {key}: {e.reason}")
            return None

        logger.info(
            f"Restored session {key} "
            f"({len(entry.vector_index)} documents, {len(entry.messages)} messages)"
        )
        return entry

    def _deserialize(self, storage_key: str, blob: str) -> SessionEntry:
        """
        Rebuild a session entry from a snapshot.

        Raises:
            PersistenceCorruptionError: If the snapshot cannot be used
        """
        try:
            snapshot = SessionSnapshot.model_validate_json(blob)
        except pydantic.ValidationError as e:
            raise PersistenceCorruptionError(storage_key, f"invalid snapshot: {e.error_count()} error(s)") from e

        if snapshot.dimensions != self.dimensions:
            raise PersistenceCorruptionError(
                storage_key,
                f"dimensions {snapshot.dimensions} do not match cache dimensions {self.dimensions}",
            )
        if snapshot.distance_metric != self.distance_metric.value:
            raise PersistenceCorruptionError(
                storage_key,
                f"metric '{snapshot.distance_metric}' does not match '{self.distance_metric.value}'",
            )

        try:
            vector_index = VectorIndex.from_export(
                {
                    "dimensions": snapshot.dimensions,
                    "distanceMetric": snapshot.distance_metric,
                    "documents": [doc.model_dump() for doc in snapshot.documents],
                }
            )
        except RecallError as e:
            raise PersistenceCorruptionError(storage_key, str(e)) from e

        keyword_index = KeywordIndex(text_fields=self.text_fields)
        for doc in snapshot.documents:
            keyword_index.add_document(doc.id, keyword_fields(doc.content, doc.metadata))

        return SessionEntry(
            vector_index=vector_index,
            keyword_index=keyword_index,
            messages=list(snapshot.messages),
            last_access=self._current_time(),
        )

    def persist(self, key: SessionKey) -> None:
        """
        Write a session's snapshot to the store.

        No-op when persistence is disabled or the session is not live.

        Args:
            key: Session key
        """
        if self.store is None:
            return

        entry = self._entries.get(key)
        if entry is None:
            return

        export = entry.vector_index.export()
        snapshot = SessionSnapshot(
            dimensions=export["dimensions"],
            distance_metric=export["distanceMetric"],
            documents=[DocumentRecord(**doc) for doc in export["documents"]],
            messages=entry.messages,
        )
        self.store.save(self.storage_key(key), snapshot.to_json())

    def remove(self, key: SessionKey) -> bool:
        """
        Evict a session immediately and delete its persisted snapshot.

        Args:
            key: Session key

        Returns:
            True if the session was live
        """
        found = self._entries.pop(key, None) is not None
        if self.store is not None:
            self.store.delete(self.storage_key(key))
        return found

    def close(self) -> None:
        """Drop all live sessions. Persisted snapshots are kept."""
        self._entries.clear()
