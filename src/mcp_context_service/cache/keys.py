"""
Deterministic cache key construction.

Keys are a pure function of their inputs: the parameters are serialized to
canonical JSON (sorted keys, compact separators) and hashed with SHA-256,
keeping the first 16 hex characters (64 bits). At the cache sizes this
service runs with, a collision is vanishingly unlikely; if one happens it
produces a wrong cache hit, never an exception.
"""

import hashlib
import json
from glob import escape
from typing import Any

CONTEXT_OPERATION = "context"

_DIGEST_CHARS = 16


def generate_cache_key(operation: str, params: dict[str, Any]) -> str:
    """
    Generate a short, stable cache key from an operation name and parameters.

    Args:
        operation: The operation type (e.g. 'context')
        params: Parameters identifying the request

    Returns:
        Key in the form ``operation:<16 hex chars>``
    """
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.sha256(f"{operation}\x1f{canonical}".encode()).hexdigest()[:_DIGEST_CHARS]
    return f"{operation}:{digest}"


def context_cache_key(subject_id: str, query_text: str, top_k: int) -> str:
    """
    Cache key for a context request.

    The subject id is kept readable in the key so that all of a subject's
    entries can be invalidated with ``context:<subject_id>:*``.
    """
    digest = generate_cache_key(
        CONTEXT_OPERATION,
        {"subject_id": subject_id, "query": query_text, "top_k": top_k},
    ).split(":", 1)[1]
    return f"{CONTEXT_OPERATION}:{subject_id}:{digest}"


def subject_key_pattern(subject_id: str) -> str:
    """Glob pattern matching every context key of one subject."""
    return f"{CONTEXT_OPERATION}:{escape(subject_id)}:*"
