# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Retrieval memory facade for a conversational agent.

RetrievalMemory is the only component the agent talks to. It embeds
messages through an injected Embedder, indexes them in the session's
vector and keyword indexes, and answers context queries in the
configured search mode.

Example:
    >>> memory = RetrievalMemory("session-1", embedder)
    >>> await memory.add_message(create_message("user", "Deploy to staging"))
    >>> context = await memory.get_context("where did we deploy?")
    >>> for hit in context.relevant_history:
    ...     print(f"{hit.role}: {hit.content} ({hit.similarity:.2f})")

Thresholds:
    Vector mode filters hits by ``min_similarity`` (bounded similarity).
    Keyword and hybrid mode scores are unbounded, so those modes filter
    by ``min_score``, the minimum acceptable raw or fused score.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from session_recall.config import RecallConfig
from session_recall.errors import CapabilityUnsupportedError
from session_recall.memory.embedders import Embedder
from session_recall.memory.retrieval.fusion import RankFusion
from session_recall.memory.retrieval.hybrid import HybridSearch, SearchMode
from session_recall.memory.retrieval.vector_index import Document
from session_recall.memory.schemas import Message, MessageRole, create_message
from session_recall.memory.session.cache import (
    SessionCache,
    SessionEntry,
    SessionKey,
    keyword_fields,
)
from session_recall.memory.session.stores import InMemoryStore, JsonFileStore, PersistenceAdapter

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Relevant conversation history for context:"
CONTEXT_FOOTER = "Use this context to inform your response if relevant."


@dataclass
class RelevantMessage:
    """A retrieved history entry.

    Attributes:
        id: Document ID.
        content: Document text.
        role: Role of the message the document came from ("unknown" for
            documents added directly).
        similarity: Vector similarity when available, else the mode's score.
        metadata: Document metadata.
    """

    id: str
    content: str
    role: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievalContext:
    """Result of a context query.

    Attributes:
        messages: Full session history.
        relevant_history: Ranked hits, best first.
    """

    messages: list[Message]
    relevant_history: list[RelevantMessage]


def generate_document_id() -> str:
    """Unique document id: ``msg_<epoch millis>_<5 hex chars>``."""
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:5]}"


def build_cache(config: RecallConfig) -> SessionCache:
    """Build a session cache from configuration."""
    store: Optional[PersistenceAdapter] = None
    if config.persist:
        store = JsonFileStore(config.store_dir) if config.store_dir else InMemoryStore()

    return SessionCache(
        dimensions=config.dimensions,
        distance_metric=config.distance_metric,
        ttl_seconds=config.ttl_seconds,
        store=store,
        text_fields=config.text_fields,
    )


class RetrievalMemory:
    """Session-scoped hybrid retrieval memory.

    Attributes:
        session_id: Conversation identifier.
        scope: Owner scope; with session_id forms the session key.
        embedder: Embedding capability.
        config: Retrieval settings.
        cache: Session cache holding this session's indexes.
    """

    def __init__(
        self,
        session_id: str,
        embedder: Embedder,
        cache: Optional[SessionCache] = None,
        config: Optional[RecallConfig] = None,
        scope: Optional[str] = None,
    ):
        """Initialize retrieval memory.

        Args:
            session_id: Conversation identifier.
            embedder: Embedding capability.
            cache: Shared session cache. A private one is built from the
                config when omitted.
            config: Retrieval settings (defaults when omitted).
            scope: Owner scope; defaults to config.scope.
        """
        self.config = config or RecallConfig()
        self.session_id = session_id
        self.scope = scope or self.config.scope
        self.embedder = embedder
        self.cache = cache if cache is not None else build_cache(self.config)
        self.fusion = RankFusion(rrf_k=self.config.rrf_k)
        self.key = SessionKey(self.scope, session_id)

    def _entry(self) -> SessionEntry:
        return self.cache.get(self.key)

    async def _embed(self, text: str) -> list[float]:
        if not self.embedder.supports_embedding():
            raise CapabilityUnsupportedError("embedding", getattr(self.embedder, "provider", None))
        vectors = await self.embedder.embed([text])
        return vectors[0]

    def _index(
        self, entry: SessionEntry, doc_id: str, content: str, vector: list[float], metadata: dict[str, Any]
    ) -> None:
        # Vector index first: it validates dimensions before anything is mutated
        entry.vector_index.add(Document(id=doc_id, content=content, vector=vector, metadata=metadata))
        entry.keyword_index.add_document(doc_id, keyword_fields(content, metadata))

    async def add_message(self, message: Message) -> Optional[str]:
        """Embed and index a message, and append it to the history.

        System messages and messages with blank content are ignored.

        Args:
            message: Message to remember.

        Returns:
            The new document id, or None if the message was skipped.

        Raises:
            CapabilityUnsupportedError: If the embedder cannot embed.
            DimensionMismatchError: If the embedding has the wrong length.
        """
        if message.role == MessageRole.SYSTEM or not message.content.strip():
            return None

        vector = await self._embed(message.content)

        entry = self._entry()
        doc_id = generate_document_id()
        metadata: dict[str, Any] = {
            "role": message.role.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if message.tool_call_id:
            metadata["toolCallId"] = message.tool_call_id

        self._index(entry, doc_id, message.content, vector, metadata)
        entry.messages.append(message)
        self.cache.persist(self.key)

        logger.debug(f"Indexed {message.role.value} message {doc_id} in session {self.key}")
        return doc_id

    async def add_messages(self, messages: Iterable[Message]) -> list[str]:
        """Add messages in order. Returns the ids of indexed messages."""
        doc_ids = []
        for message in messages:
            doc_id = await self.add_message(message)
            if doc_id is not None:
                doc_ids.append(doc_id)
        return doc_ids

    async def add_document(
        self,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
        doc_id: Optional[str] = None,
    ) -> str:
        """Index a document that is not part of the message history.

        Re-using an existing doc_id replaces that document.

        Returns:
            The document id.
        """
        vector = await self._embed(content)

        entry = self._entry()
        doc_id = doc_id or generate_document_id()
        self._index(entry, doc_id, content, vector, dict(metadata or {}))
        self.cache.persist(self.key)
        return doc_id

    def remove_document(self, doc_id: str) -> bool:
        """Remove a document from both indexes. History is untouched."""
        entry = self._entry()
        removed = entry.vector_index.remove(doc_id)
        removed = entry.keyword_index.remove_document(doc_id) or removed
        if removed:
            self.cache.persist(self.key)
        return removed

    async def get_context(self, query: str, k: Optional[int] = None) -> RetrievalContext:
        """Retrieve the history entries most relevant to a query.

        Args:
            query: Query text.
            k: Maximum hits; defaults to config.max_context_messages.

        Returns:
            RetrievalContext with the full history and the ranked hits.

        Raises:
            CapabilityUnsupportedError: If vector or hybrid mode is
                configured and the embedder cannot embed.
        """
        max_k = k if k is not None else self.config.max_context_messages
        mode = SearchMode(self.config.search_mode)

        entry = self._entry()
        messages = list(entry.messages)
        if len(entry.vector_index) == 0:
            return RetrievalContext(messages=messages, relevant_history=[])

        query_vector = None
        if mode != SearchMode.KEYWORD:
            query_vector = await self._embed(query)

        search = HybridSearch(entry.vector_index, entry.keyword_index, self.fusion)
        results = search.search(
            mode,
            max_k,
            query_vector=query_vector,
            keywords=query,
            alpha=self.config.alpha,
            fusion_method=self.config.fusion_method,
            min_similarity=self.config.min_similarity,
        )

        if mode != SearchMode.VECTOR:
            results = [r for r in results if r.score >= self.config.min_score]

        relevant = []
        for result in results:
            doc = entry.vector_index.get(result.id)
            metadata = doc.metadata if doc is not None else result.metadata
            relevant.append(
                RelevantMessage(
                    id=result.id,
                    content=doc.content if doc is not None else "",
                    role=str(metadata.get("role", "unknown")),
                    similarity=(
                        result.vector_similarity
                        if result.vector_similarity is not None
                        else result.score
                    ),
                    metadata=metadata,
                )
            )

        return RetrievalContext(messages=messages, relevant_history=relevant)

    async def build_context_messages(self, query: str) -> list[Message]:
        """Format relevant history as a single system message.

        Returns:
            A one-element list, or an empty list when nothing is relevant.
        """
        context = await self.get_context(query)
        if not context.relevant_history:
            return []

        entries = "\n\n".join(
            f"[{i}] ({hit.role}, similarity: {hit.similarity * 100:.1f}%): {hit.content}"
            for i, hit in enumerate(context.relevant_history, start=1)
        )
        content = f"{CONTEXT_HEADER}\n\n{entries}\n\n{CONTEXT_FOOTER}"
        return [create_message(MessageRole.SYSTEM, content)]

    def get_messages(self) -> list[Message]:
        """Copy of the session's message history."""
        return list(self._entry().messages)

    def get_stats(self) -> dict[str, int]:
        """Session statistics: message_count, document_count, dimensions."""
        entry = self._entry()
        return {
            "message_count": len(entry.messages),
            "document_count": len(entry.vector_index),
            "dimensions": self.cache.dimensions,
        }

    def clear(self) -> None:
        """Evict the session and delete its persisted snapshot."""
        self.cache.remove(self.key)
        logger.info(f"Cleared session {self.key}")
