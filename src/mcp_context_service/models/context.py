"""Conversation context data models.

Pydantic v2 models for vector hits, session messages and the assembled
context result returned to callers.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


def parse_metadata(raw: Any) -> dict[str, Any] | None:
    """Turn metadata serialized by the graph store back into a dict.

    Messages are written with their metadata as a JSON string; older or
    hand-written nodes may carry a dict, nothing, or something unparseable.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unparseable message metadata: %.80s", raw)
            return None
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    logger.warning(f"Discarding message metadata of unexpected type {type(raw).__name__}")
    return None


class VectorHit(BaseModel):
    """A nearest-neighbour result from the vector store."""

    model_config = ConfigDict(frozen=True)

    id: str
    score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def session_id(self) -> str | None:
        value = self.metadata.get("session_id")
        return str(value) if value is not None else None


class SessionMessage(BaseModel):
    """One message of a session, as stored in the graph."""

    content: str
    role: str
    timestamp: int | float
    metadata: dict[str, Any] | None = None

    @field_validator("metadata", mode="before")
    @classmethod
    def deserialize_metadata(cls, v: Any) -> dict[str, Any] | None:
        return parse_metadata(v)


class ContextMessage(SessionMessage):
    """A session message annotated with the session it belongs to."""

    session_id: str


class ContextResult(BaseModel):
    """Messages relevant to a query plus the sessions they were drawn from."""

    messages: list[ContextMessage] = Field(default_factory=list)
    related_sessions: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.messages and not self.related_sessions


class StoredMessage(BaseModel):
    """Receipt for a message written to both stores."""

    message_id: str
    vector_id: str
    subject_id: str
    session_id: str
    timestamp: int
