#!/usr/bin/env python3
"""FastMCP server for MCP Context Service.

Exposes context retrieval and message storage as MCP tools. Each tool
handler validates its inputs by constructing a pydantic model; validation
failures are returned as ``{"success": False, "error": ...}`` while backend
failures propagate to FastMCP and surface as tool errors.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from .config import settings
from .models.mcp_inputs import GetContextParams, SessionHistoryParams, StoreMessageParams
from .services.context_service import ContextService

logging.basicConfig(level=getattr(logging, settings.server.log_level))
logger = logging.getLogger(__name__)


@dataclass
class MCPServerContext:
    """Application context for the MCP server."""

    context_service: ContextService


@asynccontextmanager
async def mcp_server_lifespan(server: FastMCP) -> AsyncIterator[MCPServerContext]:
    """Manage MCP server lifecycle with proper resource initialization and cleanup."""
    from .shared_storage import create_context_service, get_shared_service, is_service_initialized

    # Reuse the HTTP API's service when both run in one process
    owns_service = not is_service_initialized()
    if owns_service:
        logger.info("No shared context service found, initializing new instance (standalone mode)")
        service = await create_context_service()
    else:
        logger.debug("Using pre-initialized shared context service")
        service = await get_shared_service()

    try:
        yield MCPServerContext(context_service=service)
    finally:
        if owns_service:
            logger.info("Shutting down MCP Context Service components...")
            await service.close()


mcp = FastMCP(settings.server.name, lifespan=mcp_server_lifespan)


def _service(ctx: Context) -> ContextService:
    return ctx.request_context.lifespan_context.context_service


# =============================================================================
# CONTEXT OPERATIONS
# =============================================================================


@mcp.tool()
async def get_msg_context(user_id: str, query: str, ctx: Context, top_k: int = 5) -> dict[str, Any]:
    """Retrieve prior conversation turns relevant to a query.

    Finds the user's most similar stored messages and returns the complete
    sessions they belong to, ordered by relevance of the hit and then by time.

    Args:
        user_id: User whose conversation history is searched
        query: Natural language query
        top_k: Number of similar messages to expand into sessions (1-100, default 5)

    Returns:
        {messages: [{content, role, timestamp, metadata, session_id}], related_sessions: [session_id]}
    """
    try:
        params = GetContextParams(user_id=user_id, query=query, top_k=top_k)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    logger.info(f"get_msg_context called for user {params.user_id}")
    result = await _service(ctx).get_context(params.user_id, params.query, params.top_k)
    logger.info(f"Retrieved message context for user {params.user_id}, found {len(result.messages)} messages")
    return result.model_dump()


@mcp.tool()
async def store_message(
    user_id: str,
    session_id: str,
    message_content: str,
    ctx: Context,
    role: str = "user",
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Store a conversation message for future context retrieval.

    Args:
        user_id: Author of the message
        session_id: Conversation the message belongs to
        message_content: Text of the message (embedded for similarity search)
        role: Message role, e.g. "user" or "assistant" (default "user")
        metadata: Additional structured data stored with the message

    Returns:
        {success, message_id, session_id, timestamp}
    """
    try:
        params = StoreMessageParams(
            user_id=user_id,
            session_id=session_id,
            message_content=message_content,
            role=role,
            metadata=metadata or {},
        )
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    stored = await _service(ctx).store_message(
        subject_id=params.user_id,
        session_id=params.session_id,
        content=params.message_content,
        role=params.role,
        metadata=params.metadata,
    )
    return {
        "success": True,
        "message_id": stored.message_id,
        "session_id": stored.session_id,
        "timestamp": stored.timestamp,
    }


@mcp.tool()
async def get_session_history(session_id: str, ctx: Context) -> dict[str, Any]:
    """Return every message of one session in chronological order.

    Args:
        session_id: Session to read

    Returns:
        {session_id, messages: [{content, role, timestamp, metadata}]}
    """
    try:
        params = SessionHistoryParams(session_id=session_id)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    messages = await _service(ctx).get_session_history(params.session_id)
    return {"session_id": params.session_id, "messages": [m.model_dump() for m in messages]}


@mcp.tool()
async def get_cache_stats(ctx: Context) -> dict[str, Any]:
    """Hit/miss statistics for the context and session caches.

    Returns:
        {context_cache: {hits, misses, size, hit_rate}, session_cache: {...}}
    """
    return {name: stats.to_dict() for name, stats in _service(ctx).get_cache_stats().items()}


@mcp.tool()
async def check_database_health(ctx: Context) -> dict[str, Any]:
    """Check graph connectivity and report store and cache statistics."""
    return await _service(ctx).check_health()


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main():
    """Main entry point for the MCP server."""
    server = settings.server
    logger.info(f"Starting MCP Context Service ({server.transport_mode}) on {server.host}:{server.port}")

    if server.transport_mode == "stdio":
        mcp.run(transport="stdio")
    elif server.transport_mode == "sse":
        mcp.run(transport="sse", host=server.host, port=server.port)
    else:
        mcp.run(transport="http", host=server.host, port=server.port, stateless_http=True)


if __name__ == "__main__":
    main()
