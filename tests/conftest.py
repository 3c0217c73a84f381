import hashlib
import os
import random
import sys

# Force CPU-only mode for tests (avoids CUDA compatibility issues)
os.environ["CUDA_VISIBLE_DEVICES"] = ""

# Use an in-process Qdrant store unless a test run points somewhere else
if "QDRANT_URL" not in os.environ and "QDRANT_STORAGE_PATH" not in os.environ:
    os.environ["QDRANT_URL"] = ":memory:"

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

from mcp_context_service.exceptions import EmbeddingError  # noqa: E402

TEST_DIMENSIONS = 8


def deterministic_embedding(text: str, dimensions: int = TEST_DIMENSIONS) -> list[float]:
    """Create a deterministic embedding from the text hash."""
    seed = int(hashlib.sha256(text.encode()).hexdigest(), 16) % (2**32)
    rng = random.Random(seed)
    return [rng.random() * 2 - 1 for _ in range(dimensions)]


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbedder:
    """In-memory embedding provider with scripted vectors and failures."""

    def __init__(self, dimensions: int = TEST_DIMENSIONS, vectors: dict[str, list[float]] | None = None):
        self.dimensions = dimensions
        self.vectors = vectors or {}
        self.calls: list[str] = []
        self.fail_on: set[int] = set()  # 1-based call numbers that raise
        self.fail_always = False

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_always or len(self.calls) in self.fail_on:
            raise EmbeddingError("embedding provider unavailable")
        if text in self.vectors:
            return list(self.vectors[text])
        return deterministic_embedding(text, self.dimensions)

    async def close(self) -> None:
        pass


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def make_embedder():
    """Factory for embedders with scripted vectors."""
    return FakeEmbedder


@pytest.fixture
def vector_store():
    """Mocked QdrantVectorStore."""
    store = MagicMock()
    store.collection_name = "test_context"
    store.dimensions = TEST_DIMENSIONS
    store.query = AsyncMock(return_value=[])
    store.upsert = AsyncMock()
    store.close = AsyncMock()
    return store


@pytest.fixture
def graph_client():
    """Mocked GraphClient."""
    graph = MagicMock()
    graph.expand_sessions = AsyncMock(return_value={})
    graph.store_message = AsyncMock()
    graph.get_session_messages = AsyncMock(return_value=[])
    graph.get_graph_stats = AsyncMock(return_value={"graph_name": "test", "status": "operational"})
    graph.close = AsyncMock()
    return graph


@pytest.fixture
def context_service(vector_store, graph_client, embedder):
    from mcp_context_service.services.context_service import ContextService

    return ContextService(
        vector_store=vector_store,
        graph_client=graph_client,
        embedder=embedder,
        context_cache_size=10,
        session_cache_size=5,
    )
