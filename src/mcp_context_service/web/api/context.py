# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Context retrieval and message storage endpoints for the HTTP interface.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...models.context import ContextResult, SessionMessage, StoredMessage
from ...models.validators import Identifier, Role, TopK
from ...services.context_service import ContextService
from ..dependencies import get_context_service

router = APIRouter()
logger = logging.getLogger(__name__)


# Request/Response Models
class ContextRequest(BaseModel):
    """Request model for context retrieval."""

    user_id: Identifier = Field(..., description="User whose history is searched")
    query: str = Field(..., min_length=1, description="Natural language query")
    top_k: TopK = Field(5, description="Number of similar messages to expand into sessions")


class MessageCreateRequest(BaseModel):
    """Request model for storing a message."""

    user_id: Identifier = Field(..., description="Author of the message")
    session_id: Identifier = Field(..., description="Conversation the message belongs to")
    message_content: str = Field(..., min_length=1, description="Text of the message")
    role: Role = Field("user", description="Message role")
    metadata: dict[str, Any] = Field(default={}, description="Additional metadata for the message")


class SessionHistoryResponse(BaseModel):
    """Response model for a session's history."""

    session_id: str
    messages: list[SessionMessage]


class CacheStatsResponse(BaseModel):
    """Response model for cache statistics."""

    context_cache: dict[str, Any]
    session_cache: dict[str, Any]


@router.post("/context", response_model=ContextResult, tags=["context"])
async def get_context(
    request: ContextRequest,
    service: ContextService = Depends(get_context_service),
):
    """Retrieve prior conversation context relevant to a query."""
    return await service.get_context(request.user_id, request.query, request.top_k)


@router.post("/messages", response_model=StoredMessage, status_code=201, tags=["messages"])
async def create_message(
    request: MessageCreateRequest,
    service: ContextService = Depends(get_context_service),
):
    """Store a conversation message in the vector store and the graph."""
    return await service.store_message(
        subject_id=request.user_id,
        session_id=request.session_id,
        content=request.message_content,
        role=request.role,
        metadata=request.metadata,
    )


@router.get("/sessions/{session_id}", response_model=SessionHistoryResponse, tags=["sessions"])
async def get_session_history(
    session_id: str,
    service: ContextService = Depends(get_context_service),
):
    """Every message of a session in chronological order."""
    messages = await service.get_session_history(session_id)
    return SessionHistoryResponse(session_id=session_id, messages=messages)


@router.get("/cache/stats", response_model=CacheStatsResponse, tags=["cache"])
async def get_cache_stats(service: ContextService = Depends(get_context_service)):
    """Hit/miss statistics of the context and session caches."""
    stats = service.get_cache_stats()
    return CacheStatsResponse(
        context_cache=stats["context_cache"].to_dict(),
        session_cache=stats["session_cache"].to_dict(),
    )
