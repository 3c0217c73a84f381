"""In-process caches for context results and session histories."""

from .hybrid_cache import HybridFrequencyRecencyCache
from .keys import context_cache_key, generate_cache_key, subject_key_pattern
from .semantic_cache import SemanticCache
from .stats import CacheStats

__all__ = [
    "CacheStats",
    "HybridFrequencyRecencyCache",
    "SemanticCache",
    "context_cache_key",
    "generate_cache_key",
    "subject_key_pattern",
]
