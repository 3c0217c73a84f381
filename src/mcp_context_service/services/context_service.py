"""
Context Service - retrieval of relevant prior conversation turns.

Combines nearest-neighbour search over message embeddings with graph-based
session expansion:

1. Embed the query and find the top-K most similar messages of the subject.
2. Resolve each hit to its session in the graph and pull every message of
   that session (expansion).
3. Merge: walk the hits in similarity order and append each hit's full,
   timestamp-ordered session.

Assembled results are cached in a SemanticCache keyed by
(subject, query, top_k); session histories are cached in a
HybridFrequencyRecencyCache. Each service instance owns its two caches.
"""

import logging
import time
import uuid
from typing import Any

from ..cache import (
    CacheStats,
    HybridFrequencyRecencyCache,
    SemanticCache,
    context_cache_key,
    subject_key_pattern,
)
from ..embeddings import EmbeddingClient
from ..graph.client import GraphClient
from ..models.context import ContextMessage, ContextResult, SessionMessage, StoredMessage, VectorHit
from ..storage.qdrant_storage import QdrantVectorStore

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


def _dedupe_preserving_order(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def merge_hits_with_sessions(
    hits: list[VectorHit],
    sessions: dict[str, list[SessionMessage]],
) -> ContextResult:
    """
    Merge similarity-ranked hits with expanded sessions into a ContextResult.

    Each hit contributes the full message list of its session, so two hits in
    the same session contribute that session twice. A hit whose session was
    not expanded contributes nothing.
    """
    messages: list[ContextMessage] = []
    for hit in hits:
        session_id = hit.session_id
        expanded = sessions.get(session_id) if session_id is not None else None
        if not expanded:
            logger.debug(f"Vector hit {hit.id} has no graph expansion (session={session_id})")
            continue
        messages.extend(ContextMessage(**msg.model_dump(), session_id=session_id) for msg in expanded)

    return ContextResult(messages=messages, related_sessions=_dedupe_preserving_order(list(sessions)))


class ContextService:
    """
    Retrieval-and-caching service for chat context.

    Owns one SemanticCache (assembled context results) and one
    HybridFrequencyRecencyCache (session histories) for its lifetime.
    """

    def __init__(
        self,
        vector_store: QdrantVectorStore,
        graph_client: GraphClient,
        embedder: EmbeddingClient,
        context_cache_size: int = 100,
        session_cache_size: int = 50,
        invalidate_on_write: bool = True,
    ):
        self.vector_store = vector_store
        self.graph = graph_client
        self.embedder = embedder
        self.invalidate_on_write = invalidate_on_write

        self.context_cache: SemanticCache[ContextResult] = SemanticCache(
            max_size=context_cache_size,
            embedder=embedder,
            dimensions=embedder.dimensions,
        )
        self.session_cache: HybridFrequencyRecencyCache[list[SessionMessage]] = HybridFrequencyRecencyCache(
            max_size=session_cache_size
        )

        # Write generations; a read only caches if no write landed while it was in flight
        self._subject_generations: dict[str, int] = {}
        self._session_generations: dict[str, int] = {}

    async def get_context(self, subject_id: str, query_text: str, top_k: int = DEFAULT_TOP_K) -> ContextResult:
        """
        Retrieve prior conversation context relevant to ``query_text``.

        A cache hit returns the cached result without touching the embedding
        provider, the vector store or the graph.

        Args:
            subject_id: Subject whose history is searched
            query_text: Free-text query
            top_k: Number of nearest-neighbour messages to expand

        Returns:
            ContextResult with merged session messages and related session ids

        Raises:
            EmbeddingError: If the query cannot be embedded
            StorageError: If the vector search fails
            GraphError: If session expansion fails
        """
        cache_key = context_cache_key(subject_id, query_text, top_k)

        cached = await self.context_cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Context cache hit for subject {subject_id}")
            return cached

        generation = self._subject_generations.get(subject_id, 0)
        query_embedding = await self.embedder.embed(query_text)

        hits = await self.vector_store.query(
            namespace=subject_id,
            vector=query_embedding,
            top_k=top_k,
            metadata_filter={"subject_id": subject_id},
        )

        if not hits:
            # Cached like any other result so subjects without history are not re-queried
            result = ContextResult(messages=[], related_sessions=[])
            await self._cache_context(subject_id, generation, cache_key, result, query_text)
            logger.info(f"No context found for subject {subject_id}")
            return result

        sessions = await self.graph.expand_sessions([hit.id for hit in hits])
        result = merge_hits_with_sessions(hits, sessions)

        await self._cache_context(subject_id, generation, cache_key, result, query_text)
        logger.info(
            f"Assembled context for subject {subject_id}: {len(hits)} hits, "
            f"{len(result.related_sessions)} sessions, {len(result.messages)} messages"
        )
        return result

    async def store_message(
        self,
        subject_id: str,
        session_id: str,
        content: str,
        role: str = "user",
        metadata: dict[str, Any] | None = None,
    ) -> StoredMessage:
        """
        Store a message in both the vector store and the graph.

        Invalidates the session's cached history and, when configured, every
        cached context of the subject.

        Raises:
            EmbeddingError: If the content cannot be embedded
            StorageError: If the vector write fails
            GraphError: If the graph write fails
        """
        metadata = metadata or {}
        message_id = str(uuid.uuid4())
        vector_id = f"vec_{message_id}"
        timestamp = int(time.time() * 1000)

        embedding = await self.embedder.embed(content)

        await self.vector_store.upsert(
            vector_id=vector_id,
            vector=embedding,
            namespace=subject_id,
            metadata={
                **metadata,
                "subject_id": subject_id,
                "session_id": session_id,
                "message_id": message_id,
                "role": role,
                "timestamp": timestamp,
            },
        )

        await self.graph.store_message(
            user_id=subject_id,
            session_id=session_id,
            message_id=message_id,
            vector_id=vector_id,
            content=content,
            role=role,
            timestamp=timestamp,
            metadata=metadata,
        )

        self._bump(self._session_generations, session_id)
        self.session_cache.delete(session_id)
        if self.invalidate_on_write:
            self._bump(self._subject_generations, subject_id)
            await self.context_cache.invalidate_pattern(subject_key_pattern(subject_id))

        logger.info(f"Stored message {message_id} for subject {subject_id} in session {session_id}")
        return StoredMessage(
            message_id=message_id,
            vector_id=vector_id,
            subject_id=subject_id,
            session_id=session_id,
            timestamp=timestamp,
        )

    async def get_session_history(self, session_id: str) -> list[SessionMessage]:
        """Every message of a session in timestamp order, served from cache when possible."""
        cached = self.session_cache.get(session_id)
        if cached is not None:
            return cached

        generation = self._session_generations.get(session_id, 0)
        messages = await self.graph.get_session_messages(session_id)
        if self._session_generations.get(session_id, 0) == generation:
            self.session_cache.set(session_id, messages)
        else:
            logger.debug(f"Session {session_id} written during read, not caching history")
        return messages

    async def _cache_context(
        self, subject_id: str, generation: int, cache_key: str, result: ContextResult, query_text: str
    ) -> None:
        # A write for this subject landed while the result was being assembled
        if self._subject_generations.get(subject_id, 0) != generation:
            logger.debug(f"Subject {subject_id} written during read, not caching context")
            return
        await self.context_cache.set(cache_key, result, query_text)
        # set() embeds before inserting, so a write can also land inside it
        if self._subject_generations.get(subject_id, 0) != generation:
            await self.context_cache.delete(cache_key)

    @staticmethod
    def _bump(generations: dict[str, int], key: str) -> None:
        generations[key] = generations.get(key, 0) + 1

    def get_cache_stats(self) -> dict[str, CacheStats]:
        return {
            "context_cache": self.context_cache.get_stats(),
            "session_cache": self.session_cache.get_stats(),
        }

    async def check_health(self) -> dict[str, Any]:
        """Graph statistics plus cache statistics."""
        graph_stats = await self.graph.get_graph_stats()
        return {
            "status": "healthy" if graph_stats.get("status") == "operational" else "degraded",
            "graph": graph_stats,
            "vector_store": {
                "collection": self.vector_store.collection_name,
                "dimensions": self.vector_store.dimensions,
            },
            "caches": {name: stats.to_dict() for name, stats in self.get_cache_stats().items()},
        }

    async def close(self) -> None:
        """Close graph, vector store and embedding provider clients."""
        await self.graph.close()
        await self.vector_store.close()
        await self.embedder.close()
