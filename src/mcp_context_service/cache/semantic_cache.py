"""
Semantic cache for assembled context results.

Entries are looked up by exact key, but each entry also remembers the
embedding of the query that produced it. When the cache is full, the entry
to evict is chosen by a hybrid of two signals:

- similarity between the incoming query's embedding and the entry's query
  embedding (cosine)
- staleness, in days since the entry was last read

    hybrid_score = similarity - 0.2 * staleness

The entry with the lowest score goes: one that is both unlike the incoming
query and untouched for a while is unlikely to serve current or recent
traffic.
"""

import asyncio
import fnmatch
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from ..utils.similarity import cosine_similarity
from .stats import CacheStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

ONE_DAY_SECONDS = 24 * 60 * 60
STALENESS_WEIGHT = 0.2


class QueryEmbedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


@dataclass
class SemanticCacheEntry(Generic[T]):
    """A cached payload plus the embedding of the query that produced it."""

    key: str
    payload: T
    embedding: list[float]
    created_at: float
    last_accessed_at: float


class SemanticCache(Generic[T]):
    """
    Bounded key -> payload store with embedding-aware eviction.

    Capacity is fixed at construction and never exceeded. The
    check-capacity / evict / insert sequence of ``set`` runs under an
    asyncio lock so concurrent requests cannot both evict and both insert.
    """

    def __init__(
        self,
        max_size: int,
        embedder: QueryEmbedder,
        dimensions: int,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of entries (>= 1)
            embedder: Provider used to embed query text on ``set``
            dimensions: Fixed embedding dimensionality (size of the zero-vector fallback)
            clock: Time source in seconds, injectable for tests
        """
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")

        self.max_size = max_size
        self.dimensions = dimensions
        self._embedder = embedder
        self._clock = clock
        self._entries: dict[str, SemanticCacheEntry[T]] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def get(self, key: str) -> T | None:
        """Exact lookup. A hit refreshes only this entry's last access time."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            logger.debug(f"Semantic cache miss: {key}")
            return None

        entry.last_accessed_at = self._clock()
        self._hits += 1
        logger.debug(f"Semantic cache hit: {key}")
        return entry.payload

    async def set(self, key: str, payload: T, query_text: str) -> None:
        """
        Cache ``payload`` under ``key``, positioned by the embedding of ``query_text``.

        If the embedding cannot be produced, a zero vector is used instead and
        the entry is still cached.
        """
        embedding = await self._embed_or_zero(query_text)

        async with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_one(embedding)

            now = self._clock()
            self._entries[key] = SemanticCacheEntry(
                key=key,
                payload=payload,
                embedding=embedding,
                created_at=now,
                last_accessed_at=now,
            )

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Drop every entry whose key matches a glob pattern.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            doomed = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in doomed:
                del self._entries[key]

        if doomed:
            logger.debug(f"Semantic cache invalidated {len(doomed)} entries matching {pattern}")
        return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def get_stats(self) -> CacheStats:
        return CacheStats.from_counters(self._hits, self._misses, len(self._entries))

    async def _embed_or_zero(self, query_text: str) -> list[float]:
        try:
            embedding = await self._embedder.embed(query_text)
        except Exception as e:
            embedding = None
            logger.warning(f"Embedding for cache entry failed, using zero vector: {e.__class__.__name__}: {e}")

        if embedding is None:
            return [0.0] * self.dimensions

        if len(embedding) != self.dimensions:
            logger.warning(
                f"Embedding for cache entry has {len(embedding)} dimensions, expected {self.dimensions}; "
                "using zero vector"
            )
            return [0.0] * self.dimensions

        return list(embedding)

    def _evict_one(self, new_embedding: list[float]) -> None:
        """Evict the entry with the lowest similarity/staleness score. Caller holds the lock."""
        if not self._entries:
            return

        now = self._clock()
        victim_key: str | None = None
        lowest_score = float("inf")

        for key, entry in self._entries.items():
            similarity = cosine_similarity(new_embedding, entry.embedding)
            staleness = (now - entry.last_accessed_at) / ONE_DAY_SECONDS
            score = similarity - STALENESS_WEIGHT * staleness
            # Strict comparison keeps the first entry on ties
            if score < lowest_score:
                lowest_score = score
                victim_key = key

        if victim_key is not None:
            del self._entries[victim_key]
            logger.debug(f"Semantic cache evicted {victim_key} (score={lowest_score:.4f})")
