"""Hit/miss statistics shared by the in-process caches."""

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time snapshot of a cache's counters."""

    hits: int
    misses: int
    size: int
    hit_rate: float

    @classmethod
    def from_counters(cls, hits: int, misses: int, size: int) -> "CacheStats":
        total = hits + misses
        hit_rate = 0.0 if total == 0 else hits / total
        return cls(hits=hits, misses=misses, size=size, hit_rate=hit_rate)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
