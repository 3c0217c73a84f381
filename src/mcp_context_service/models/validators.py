"""Shared Pydantic types and validators for reuse across models.

Centralises identifier constraints, the result-size range and role
normalisation so every model speaks the same language.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# String constraints
# ---------------------------------------------------------------------------


def strip_identifier(v: Any) -> Any:
    """Trim surrounding whitespace from identifiers; leave non-strings to pydantic."""
    if isinstance(v, str):
        return v.strip()
    return v


Identifier = Annotated[str, BeforeValidator(strip_identifier), Field(min_length=1, max_length=256)]
"""Non-empty subject/session identifier."""


def normalize_role(v: Any) -> str:
    """``None``/blank → ``"user"``; otherwise lower-cased and trimmed."""
    if v is None:
        return "user"
    s = str(v).strip().lower()
    return s or "user"


Role = Annotated[str, BeforeValidator(normalize_role)]
"""Message author role (user, assistant, system, ...)."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

TopK = Annotated[int, Field(ge=1, le=100)]
"""Number of nearest neighbours to request from the vector store."""
