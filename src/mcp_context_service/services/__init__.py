"""Service layer."""

from .context_service import ContextService, merge_hits_with_sessions

__all__ = ["ContextService", "merge_hits_with_sessions"]
