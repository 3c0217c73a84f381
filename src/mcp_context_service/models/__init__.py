"""Data models for MCP Context Service."""

from .context import ContextMessage, ContextResult, SessionMessage, StoredMessage, VectorHit
from .mcp_inputs import GetContextParams, SessionHistoryParams, StoreMessageParams

__all__ = [
    "ContextMessage",
    "ContextResult",
    "GetContextParams",
    "SessionHistoryParams",
    "SessionMessage",
    "StoreMessageParams",
    "StoredMessage",
    "VectorHit",
]
