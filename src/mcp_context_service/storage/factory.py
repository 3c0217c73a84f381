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
Vector store factory for MCP Context Service.

Creates and initializes the Qdrant vector store from configuration.
"""

import logging

from .qdrant_storage import QdrantVectorStore

logger = logging.getLogger(__name__)


async def create_vector_store() -> QdrantVectorStore:
    """
    Create and initialize the Qdrant vector store.

    Returns:
        Initialized QdrantVectorStore instance
    """
    from ..config import settings

    logger.info("Creating Qdrant vector store instance...")

    # Server (URL) mode takes precedence over embedded (path) mode
    if settings.qdrant.url:
        store = QdrantVectorStore(
            dimensions=settings.embedding.dimensions,
            collection_name=settings.qdrant.collection_name,
            url=settings.qdrant.url,
            quantization_enabled=settings.qdrant.quantization_enabled,
            config=settings.qdrant,
        )
    else:
        store = QdrantVectorStore(
            dimensions=settings.embedding.dimensions,
            collection_name=settings.qdrant.collection_name,
            storage_path=settings.qdrant.storage_path,
            quantization_enabled=settings.qdrant.quantization_enabled,
            config=settings.qdrant,
        )

    await store.initialize()
    return store
