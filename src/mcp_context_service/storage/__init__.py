"""Vector store backend."""

from .qdrant_storage import QdrantVectorStore

__all__ = ["QdrantVectorStore"]
