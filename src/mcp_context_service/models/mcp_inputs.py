"""MCP tool input models.

Each MCP tool validates its inputs by constructing the corresponding model,
so range checks and required-field logic live here as declarative
constraints rather than inline in ``mcp_server.py``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .validators import Identifier, Role, TopK


class GetContextParams(BaseModel):
    """Validated input for the ``get_msg_context`` MCP tool."""

    user_id: Identifier
    query: str = Field(min_length=1)
    top_k: TopK = 5


class StoreMessageParams(BaseModel):
    """Validated input for the ``store_message`` MCP tool."""

    user_id: Identifier
    session_id: Identifier
    message_content: str = Field(min_length=1)
    role: Role = "user"
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionHistoryParams(BaseModel):
    """Validated input for the ``get_session_history`` MCP tool."""

    session_id: Identifier
