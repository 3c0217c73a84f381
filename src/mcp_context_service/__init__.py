"""
MCP Context Service.

Retrieves relevant prior conversation turns for chat agents by combining
vector search with graph-based session expansion, backed by two in-process
caches.
"""

__version__ = "0.1.0"
