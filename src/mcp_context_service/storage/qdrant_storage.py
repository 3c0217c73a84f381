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
Qdrant vector store for message embeddings.

One collection holds every subject's message vectors. A subject's vectors
form a namespace: each point carries a ``namespace`` payload field and every
query is filtered on it, alongside any caller-supplied metadata filter.

Failures are not swallowed: a failed query raises ``StorageError`` so the
request that needed it fails. A circuit breaker fails fast after repeated
errors, and transient 5xx responses are retried with exponential backoff.
"""

import asyncio
import hashlib
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.http import exceptions as qdrant_exceptions
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    HnswConfigDiff,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    ScalarQuantization,
    ScalarQuantizationConfig,
    ScalarType,
    VectorParams,
)
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import QdrantSettings
from ..exceptions import StorageError
from ..models.context import VectorHit

logger = logging.getLogger(__name__)

NAMESPACE_FIELD = "namespace"
VECTOR_ID_FIELD = "vector_id"

# Payload fields indexed for filtering
INDEXED_FIELDS = (NAMESPACE_FIELD, "subject_id", "session_id")


def is_retryable_error(exception: BaseException) -> bool:
    """
    Determine if an exception is retryable (transient 5xx server errors only).

    4xx client errors and dimension mismatches are configuration problems and
    are not retried.
    """
    if isinstance(exception, qdrant_exceptions.UnexpectedResponse):
        return hasattr(exception, "status_code") and 500 <= exception.status_code < 600
    return False


class QdrantVectorStore:
    """
    Qdrant-backed nearest-neighbour search over message embeddings.

    Supports embedded mode (``storage_path``), server mode (``url``) and an
    in-process store (``url=":memory:"``).
    """

    def __init__(
        self,
        dimensions: int,
        collection_name: str = "chat_context",
        url: str | None = None,
        storage_path: str | None = None,
        quantization_enabled: bool = False,
        config: QdrantSettings | None = None,
    ):
        """
        Initialize the vector store.

        Args:
            dimensions: Embedding dimensionality of every stored vector
            collection_name: Qdrant collection name
            url: Qdrant server URL, or ":memory:" for an in-process store
            storage_path: Directory for embedded mode
            quantization_enabled: Enable int8 scalar quantization
            config: HNSW and payload settings (defaults loaded from env)
        """
        if url and storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose embedded OR server mode.")
        if not url and not storage_path:
            raise ValueError("Must specify either url (server mode) or storage_path (embedded mode).")

        self.dimensions = dimensions
        self.collection_name = collection_name
        self.url = url
        self.storage_path = storage_path
        self.quantization_enabled = quantization_enabled
        self.config = config or QdrantSettings()

        # Circuit breaker state
        self._failure_count = 0
        self._circuit_open_until: datetime | None = None
        self._failure_threshold = 5  # Open circuit after 5 consecutive failures
        self._circuit_timeout = 60  # Reclose circuit after 60 seconds

        self.client: QdrantClient | None = None
        self._initialized = False

    async def initialize(self) -> None:
        """Connect, then create the collection (or verify its vector size) and payload indexes."""
        if self._initialized:
            return

        loop = asyncio.get_event_loop()
        if self.url == ":memory:":
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(location=":memory:"))
            logger.info("Initialized in-memory Qdrant store")
        elif self.url:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(url=self.url))
            logger.info(f"Connected to Qdrant server at {self.url}")
        else:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(path=self.storage_path))
            logger.info(f"Initialized Qdrant embedded storage at {self.storage_path}")

        if await self._collection_exists():
            await self._verify_vector_size()
        else:
            await self._create_collection()

        await self._ensure_payload_indexes()

        self._initialized = True
        logger.info(f"QdrantVectorStore ready: collection={self.collection_name} dimensions={self.dimensions}")

    async def _collection_exists(self) -> bool:
        loop = asyncio.get_event_loop()
        collections = await loop.run_in_executor(None, self.client.get_collections)
        return self.collection_name in [col.name for col in collections.collections]

    async def _verify_vector_size(self) -> None:
        """Fail startup if the collection was built for another dimensionality."""
        loop = asyncio.get_event_loop()
        info = await loop.run_in_executor(None, self.client.get_collection, self.collection_name)

        vectors = getattr(getattr(info.config, "params", None), "vectors", None)
        size = getattr(vectors, "size", None)
        if size is not None and size != self.dimensions:
            raise StorageError(
                f"Collection '{self.collection_name}' vector size ({size}) doesn't match "
                f"configured embedding dimensions ({self.dimensions}). "
                f"Use a new collection or re-embed stored messages."
            )

    async def _create_collection(self) -> None:
        loop = asyncio.get_event_loop()

        hnsw_config = HnswConfigDiff(
            m=self.config.HNSW_M,
            ef_construct=self.config.HNSW_EF_CONSTRUCT,
            full_scan_threshold=self.config.HNSW_FULL_SCAN_THRESHOLD,
        )

        quantization_config = None
        if self.quantization_enabled:
            quantization_config = ScalarQuantization(
                scalar=ScalarQuantizationConfig(
                    type=ScalarType.INT8, quantile=0.99, always_ram=self.config.QUANTIZATION_ALWAYS_RAM
                )
            )

        await loop.run_in_executor(
            None,
            lambda: self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=self.dimensions, distance=Distance.COSINE),
                hnsw_config=hnsw_config,
                quantization_config=quantization_config,
                on_disk_payload=self.config.ON_DISK_PAYLOAD,
            ),
        )
        logger.info(f"Created collection '{self.collection_name}' with vector size {self.dimensions}")

    async def _ensure_payload_indexes(self) -> None:
        """Create keyword indexes on filter fields (idempotent)."""
        loop = asyncio.get_event_loop()
        for field_name in INDEXED_FIELDS:
            try:
                await loop.run_in_executor(
                    None,
                    lambda f=field_name: self.client.create_payload_index(
                        collection_name=self.collection_name,
                        field_name=f,
                        field_schema=PayloadSchemaType.KEYWORD,
                    ),
                )
            except Exception as e:
                logger.warning(f"Payload index on '{field_name}' not created: {e}")

    def _check_circuit_breaker(self) -> None:
        """
        Fail fast while the circuit breaker is open.

        Raises:
            StorageError: If the circuit is open
        """
        if self._circuit_open_until is not None:
            if datetime.now() < self._circuit_open_until:
                retry_time = self._circuit_open_until.strftime("%Y-%m-%d %H:%M:%S")
                raise StorageError(f"Circuit breaker is open until {retry_time}. Vector store temporarily unavailable.")
            logger.info("Circuit breaker timeout expired, resetting to closed state")
            self._circuit_open_until = None
            self._failure_count = 0

    def _record_failure(self) -> None:
        self._failure_count += 1
        logger.warning(f"Recorded vector store failure #{self._failure_count}")

        if self._failure_count >= self._failure_threshold:
            self._circuit_open_until = datetime.now() + timedelta(seconds=self._circuit_timeout)
            logger.error(
                f"Circuit breaker opened after {self._failure_count} consecutive failures. "
                f"Will retry at {self._circuit_open_until.strftime('%Y-%m-%d %H:%M:%S')}"
            )

    def _record_success(self) -> None:
        if self._failure_count > 0:
            logger.info(f"Operation successful, resetting circuit breaker (was at {self._failure_count} failures)")
            self._failure_count = 0
            self._circuit_open_until = None

    def _require_client(self) -> QdrantClient:
        if self.client is None:
            raise StorageError("QdrantVectorStore not initialized. Call initialize() first.")
        return self.client

    @staticmethod
    def _to_point_id(vector_id: str) -> str:
        """Qdrant point ids must be UUIDs or integers; derive a stable UUID from the vector id."""
        return str(uuid.UUID(hashlib.sha256(vector_id.encode()).hexdigest()[:32]))

    @staticmethod
    def _build_filter(namespace: str, metadata_filter: dict[str, Any] | None) -> Filter:
        must = [FieldCondition(key=NAMESPACE_FIELD, match=MatchValue(value=namespace))]
        for key, value in (metadata_filter or {}).items():
            must.append(FieldCondition(key=key, match=MatchValue(value=value)))
        return Filter(must=must)

    @retry(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def upsert(self, vector_id: str, vector: list[float], namespace: str, metadata: dict[str, Any]) -> None:
        """
        Store one vector under ``namespace``.

        Raises:
            ValueError: If the vector has the wrong dimensionality
            StorageError: If the write fails
        """
        self._check_circuit_breaker()
        client = self._require_client()

        if len(vector) != self.dimensions:
            raise ValueError(f"Embedding dimension mismatch: expected {self.dimensions}, got {len(vector)}")

        payload = {**metadata, NAMESPACE_FIELD: namespace, VECTOR_ID_FIELD: vector_id}
        point = PointStruct(id=self._to_point_id(vector_id), vector=vector, payload=payload)

        try:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, lambda: client.upsert(collection_name=self.collection_name, points=[point]))
        except Exception as e:
            self._record_failure()
            if is_retryable_error(e):
                raise
            logger.error(f"Failed to upsert vector {vector_id}: {e}")
            raise StorageError(f"Failed to upsert vector: {e}") from e

        self._record_success()
        logger.debug(f"Upserted vector {vector_id} into namespace {namespace}")

    @retry(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[VectorHit]:
        """
        Top-K nearest neighbours of ``vector`` within ``namespace``.

        Args:
            namespace: Subject whose vectors are searched
            vector: Query embedding
            top_k: Maximum number of hits
            metadata_filter: Exact-match payload conditions (AND)

        Returns:
            Hits ordered by descending similarity, possibly empty

        Raises:
            StorageError: If the search fails
        """
        self._check_circuit_breaker()
        client = self._require_client()

        try:
            loop = asyncio.get_event_loop()
            response = await loop.run_in_executor(
                None,
                lambda: client.query_points(
                    collection_name=self.collection_name,
                    query=vector,
                    query_filter=self._build_filter(namespace, metadata_filter),
                    limit=top_k,
                    with_payload=True,
                    with_vectors=False,
                ),
            )
        except Exception as e:
            self._record_failure()
            if is_retryable_error(e):
                raise
            logger.error(f"Vector search failed for namespace {namespace}: {e}")
            raise StorageError(f"Vector search failed: {e}") from e

        self._record_success()

        hits = []
        for point in response.points:
            payload = dict(point.payload or {})
            vector_id = payload.pop(VECTOR_ID_FIELD, None) or str(point.id)
            payload.pop(NAMESPACE_FIELD, None)
            hits.append(VectorHit(id=vector_id, score=float(point.score), metadata=payload))

        logger.debug(f"Vector search in namespace {namespace} returned {len(hits)} hits")
        return hits

    async def close(self) -> None:
        """Close the Qdrant client. Safe to call multiple times."""
        if self.client is not None:
            try:
                loop = asyncio.get_event_loop()
                await loop.run_in_executor(None, self.client.close)
                logger.info("Qdrant client closed successfully")
            except Exception as e:
                logger.warning(f"Error closing Qdrant client: {e}")
            finally:
                self.client = None
                self._initialized = False
