"""
Graph layer for MCP Context Service.

FalkorDB-backed conversation graph: users participate in sessions, messages
are part of sessions and authored by users. Used to expand vector-search
hits into the full sessions they belong to.
"""

from .client import GraphClient
from .schema import RELATIONSHIP_TYPES

__all__ = [
    "GraphClient",
    "RELATIONSHIP_TYPES",
]
