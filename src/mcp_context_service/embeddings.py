"""
Embedding providers for MCP Context Service.

Maps text to fixed-length vectors. Two backends:

- ``SentenceTransformerEmbeddings``: local model, lazily loaded once under a
  lock, inference run in the default executor.
- ``OpenAIEmbeddings``: OpenAI embeddings API through the async client.

Every provider validates the dimensionality of what it returns; a wrong
size is an ``EmbeddingError`` like any other provider failure.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod

import openai
from sentence_transformers import SentenceTransformer

from .config import EmbeddingSettings
from .exceptions import EmbeddingError

logger = logging.getLogger(__name__)

# Suppress httpx request logs from the OpenAI client
logging.getLogger("httpx").setLevel(logging.WARNING)


class EmbeddingClient(ABC):
    """Text -> vector provider with a fixed output dimensionality."""

    def __init__(self, model: str, dimensions: int):
        self.model = model
        self.dimensions = dimensions

    @abstractmethod
    async def _embed(self, text: str) -> list[float]:
        """Produce the raw embedding for ``text``."""

    async def embed(self, text: str) -> list[float]:
        """
        Embed ``text``.

        Raises:
            EmbeddingError: If the provider fails or returns the wrong dimensionality
        """
        try:
            embedding = await self._embed(text)
        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e.__class__.__name__}: {e}")
            raise EmbeddingError(f"Embedding provider failed: {e}") from e

        if len(embedding) != self.dimensions:
            raise EmbeddingError(
                f"Embedding dimension mismatch: expected {self.dimensions}, got {len(embedding)}. "
                f"Check MCP_EMBEDDING_DIMENSIONS for model {self.model}."
            )
        return embedding

    async def close(self) -> None:
        """Release provider resources."""


class SentenceTransformerEmbeddings(EmbeddingClient):
    """Local sentence-transformers model."""

    def __init__(self, model: str, dimensions: int, device: str | None = None):
        super().__init__(model, dimensions)
        self.device = device
        self._model_instance: SentenceTransformer | None = None
        self._model_lock = threading.Lock()

    def _load_model(self) -> SentenceTransformer:
        # Double-checked so concurrent first requests load the model once
        if self._model_instance is None:
            with self._model_lock:
                if self._model_instance is None:
                    logger.info(f"Loading embedding model: {self.model}")
                    self._model_instance = SentenceTransformer(self.model, device=self.device)
                    logger.info(f"Loaded model: {self.model} on device: {self._model_instance.device}")
        return self._model_instance

    def _encode(self, text: str) -> list[float]:
        embedding = self._load_model().encode(text, convert_to_tensor=False)
        return embedding.tolist() if hasattr(embedding, "tolist") else list(embedding)

    async def _embed(self, text: str) -> list[float]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._encode, text)


class OpenAIEmbeddings(EmbeddingClient):
    """OpenAI embeddings API."""

    # ada-002 does not accept a dimensions parameter
    FIXED_DIMENSION_MODELS = frozenset({"text-embedding-ada-002"})

    def __init__(self, model: str, dimensions: int, api_key: str | None = None):
        super().__init__(model, dimensions)
        self._client = openai.AsyncOpenAI(api_key=api_key)

    async def _embed(self, text: str) -> list[float]:
        text = text.replace("\n", " ")
        if self.model in self.FIXED_DIMENSION_MODELS:
            response = await self._client.embeddings.create(input=[text], model=self.model)
        else:
            response = await self._client.embeddings.create(input=[text], model=self.model, dimensions=self.dimensions)
        return list(response.data[0].embedding)

    async def close(self) -> None:
        await self._client.close()


def create_embedding_client(config: EmbeddingSettings) -> EmbeddingClient:
    """Build the embedding provider selected by configuration."""
    if config.provider == "openai":
        api_key = config.openai_api_key.get_secret_value() if config.openai_api_key else None
        client: EmbeddingClient = OpenAIEmbeddings(config.model, config.dimensions, api_key=api_key)
    else:
        client = SentenceTransformerEmbeddings(config.model, config.dimensions, device=config.device)

    logger.info(f"Embedding provider: {config.provider} model={config.model} dimensions={config.dimensions}")
    return client
