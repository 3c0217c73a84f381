#!/usr/bin/env python3
"""
Shared service manager for MCP Context Service.

Provides a singleton ContextService that can be shared between the HTTP API
and the MCP server, so the embedding model is loaded once and both surfaces
read and invalidate the same caches.
"""

import asyncio
import logging
from threading import Lock
from typing import Optional

from .config import settings
from .embeddings import create_embedding_client
from .graph.factory import create_graph_client
from .services.context_service import ContextService
from .storage.factory import create_vector_store

logger = logging.getLogger(__name__)


async def create_context_service() -> ContextService:
    """Build a ContextService with freshly initialized collaborators."""
    embedder = create_embedding_client(settings.embedding)
    try:
        vector_store = await create_vector_store()
    except Exception:
        await embedder.close()
        raise

    try:
        graph_client = await create_graph_client()
    except Exception:
        await vector_store.close()
        await embedder.close()
        raise

    return ContextService(
        vector_store=vector_store,
        graph_client=graph_client,
        embedder=embedder,
        context_cache_size=settings.cache.context_cache_size,
        session_cache_size=settings.cache.session_cache_size,
        invalidate_on_write=settings.cache.invalidate_on_write,
    )


class ServiceManager:
    """Manages a singleton ContextService for shared access."""

    _instance: Optional["ServiceManager"] = None
    _lock: Lock = Lock()

    def __init__(self):
        self._service: ContextService | None = None
        self._initialization_lock: asyncio.Lock = asyncio.Lock()

    @classmethod
    def get_instance(cls) -> "ServiceManager":
        """Get singleton instance of ServiceManager (thread-safe)."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
                    logger.info("Created new ServiceManager singleton instance")
        return cls._instance

    async def get_service(self) -> ContextService:
        """Get or create the shared service.

        Idempotent: concurrent first calls result in a single initialization.
        """
        if self._service is not None:
            return self._service

        async with self._initialization_lock:
            if self._service is not None:
                return self._service

            logger.info("Initializing shared context service...")
            self._service = await create_context_service()
            logger.info("Shared context service initialized")
            return self._service

    async def close(self) -> None:
        """Close the shared service. Safe to call even if it was never initialized."""
        if self._service is None:
            return
        try:
            logger.info("Closing shared context service...")
            await self._service.close()
        except Exception as e:
            logger.error(f"Error closing shared context service: {e}")
        finally:
            self._service = None

    def is_initialized(self) -> bool:
        return self._service is not None


# Module-level convenience functions
_manager = ServiceManager.get_instance()


async def get_shared_service() -> ContextService:
    """Get the shared ContextService, initializing it on first use."""
    return await _manager.get_service()


async def close_shared_service() -> None:
    await _manager.close()


def is_service_initialized() -> bool:
    return _manager.is_initialized()
