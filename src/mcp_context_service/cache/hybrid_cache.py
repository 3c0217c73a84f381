"""
Frequency/recency hybrid cache for session-level data.

Eviction ranks every entry by

    hybrid_score = 0.6 * normalized_frequency + 0.4 * normalized_recency

where ``normalized_frequency = access_count / max_access_count`` and
``normalized_recency = 1 - age / max_age`` (age = time since last access).
When every entry has the same age there is no recency signal, so all
entries get a recency of 1. The lowest score is evicted; ties go to the
entry inserted first.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from .stats import CacheStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

FREQUENCY_WEIGHT = 0.6
RECENCY_WEIGHT = 0.4


@dataclass
class HybridCacheEntry(Generic[T]):
    key: str
    payload: T
    access_count: int
    created_at: float
    last_accessed_at: float


class HybridFrequencyRecencyCache(Generic[T]):
    """Bounded key -> payload store evicting by access frequency and recency."""

    def __init__(self, max_size: int, clock: Callable[[], float] = time.time):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")

        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, HybridCacheEntry[T]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            entry.access_count += 1
            entry.last_accessed_at = self._clock()
            self._hits += 1
            return entry.payload

    def set(self, key: str, payload: T) -> None:
        """Insert or replace ``key``. A new key at capacity evicts one entry first."""
        with self._lock:
            if key in self._entries:
                # Replacement starts a fresh entry at the end of insertion order
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._evict_one()

            now = self._clock()
            self._entries[key] = HybridCacheEntry(
                key=key,
                payload=payload,
                access_count=1,
                created_at=now,
                last_accessed_at=now,
            )

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> CacheStats:
        return CacheStats.from_counters(self._hits, self._misses, len(self._entries))

    def _evict_one(self) -> None:
        """Evict the lowest-scoring entry. Caller holds the lock."""
        if not self._entries:
            return

        now = self._clock()
        entries = list(self._entries.values())
        ages = [now - entry.last_accessed_at for entry in entries]
        max_age = max(ages)
        max_count = max(entry.access_count for entry in entries)

        def score(index: int) -> float:
            recency = 1.0 if max_age <= 0 else 1.0 - ages[index] / max_age
            frequency = entries[index].access_count / max_count
            return FREQUENCY_WEIGHT * frequency + RECENCY_WEIGHT * recency

        # min() returns the first minimum, i.e. the earliest inserted entry on ties
        victim = entries[min(range(len(entries)), key=score)]
        del self._entries[victim.key]
        logger.debug(f"Session cache evicted {victim.key} (access_count={victim.access_count})")
