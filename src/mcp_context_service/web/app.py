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
FastAPI application for the HTTP interface.

Serves the REST routes under ``/api`` next to a service-info root. The
context service is shared with the MCP server when both run in one process.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import settings
from ..exceptions import ContextServiceError
from ..shared_storage import close_shared_service, get_shared_service
from .api import context_router
from .dependencies import set_context_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize the shared context service on startup and close it on shutdown."""
    service = await get_shared_service()
    set_context_service(service)
    logger.info("HTTP interface ready")
    try:
        yield
    finally:
        set_context_service(None)
        await close_shared_service()


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title="MCP Context Service",
        version=__version__,
        lifespan=lifespan if use_lifespan else None,
    )

    @app.exception_handler(ContextServiceError)
    async def backend_error_handler(request: Request, exc: ContextServiceError) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc}")
        return JSONResponse(status_code=502, content={"detail": str(exc), "error": exc.__class__.__name__})

    @app.get("/", tags=["info"])
    async def service_info() -> dict:
        return {
            "name": settings.server.name,
            "version": __version__,
            "description": "Conversation context retrieval over vector search and session graphs",
            "endpoints": {
                "/api/context": "Get message context based on a query",
                "/api/messages": "Store a message in the knowledge base",
                "/api/sessions/{session_id}": "Chronological history of a session",
                "/api/cache/stats": "Context and session cache statistics",
            },
            "tools": [
                "get_msg_context",
                "store_message",
                "get_session_history",
                "get_cache_stats",
                "check_database_health",
            ],
        }

    app.include_router(context_router, prefix="/api")
    return app


def main():
    """Run the HTTP interface with uvicorn."""
    import uvicorn

    logging.basicConfig(level=getattr(logging, settings.server.log_level))
    logger.info(f"Starting HTTP interface on {settings.server.host}:{settings.server.port}")
    uvicorn.run(create_app(), host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
