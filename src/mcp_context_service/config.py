"""
Configuration for MCP Context Service.

All settings are pydantic-settings models loaded from environment variables
(and an optional .env file) once at import time. Values are not re-read while
the service runs; changing the embedding model or its dimensionality requires
a restart, which also discards every cached embedding.
"""

import logging
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EmbeddingSettings(BaseSettings):
    """Embedding provider configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_EMBEDDING_", env_file=".env", extra="ignore")

    provider: Literal["sentence-transformers", "openai"] = Field(
        default="sentence-transformers", description="Embedding backend"
    )
    model: str = Field(default="all-MiniLM-L6-v2", description="Embedding model identifier")
    dimensions: int = Field(default=384, ge=1, le=8192, description="Fixed vector dimensionality")
    device: str | None = Field(default=None, description="Torch device for sentence-transformers (None = auto)")
    openai_api_key: SecretStr | None = Field(default=None, description="API key for the openai provider")

    @model_validator(mode="after")
    def openai_requires_key(self) -> Self:
        if self.provider == "openai" and self.openai_api_key is None:
            logger.warning("openai embedding provider selected without MCP_EMBEDDING_OPENAI_API_KEY")
        return self


class CacheSettings(BaseSettings):
    """In-process cache capacities."""

    model_config = SettingsConfigDict(env_prefix="MCP_CACHE_", env_file=".env", extra="ignore")

    context_cache_size: int = Field(default=100, ge=1, le=100_000, description="Semantic context cache capacity")
    session_cache_size: int = Field(default=50, ge=1, le=100_000, description="Session history cache capacity")
    invalidate_on_write: bool = Field(
        default=True, description="Drop a subject's cached contexts when a new message is stored"
    )


class QdrantSettings(BaseSettings):
    """Qdrant vector store configuration."""

    model_config = SettingsConfigDict(env_prefix="QDRANT_", env_file=".env", extra="ignore")

    url: str | None = Field(default=None, description="Qdrant server URL (server mode) or ':memory:'")
    storage_path: str | None = Field(default="./data/qdrant", description="Embedded storage directory")
    collection_name: str = Field(default="chat_context", description="Collection holding message vectors")
    quantization_enabled: bool = False

    HNSW_M: int = Field(default=16, ge=4, le=64)
    HNSW_EF_CONSTRUCT: int = Field(default=100, ge=10, le=1000)
    HNSW_FULL_SCAN_THRESHOLD: int = Field(default=10_000, ge=0)
    ON_DISK_PAYLOAD: bool = False
    QUANTIZATION_ALWAYS_RAM: bool = True


class FalkorDBSettings(BaseSettings):
    """FalkorDB graph store configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_FALKORDB_", env_file=".env", extra="ignore")

    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    password: SecretStr | None = None
    graph_name: str = "chat_context"
    max_connections: int = Field(default=16, ge=1, le=256)


class ServerSettings(BaseSettings):
    """Transport and process settings."""

    model_config = SettingsConfigDict(env_prefix="MCP_SERVER_", env_file=".env", extra="ignore")

    name: str = "zettelkasten"
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    transport_mode: Literal["stdio", "http", "sse"] = "http"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class Settings:
    """Aggregate of all setting groups."""

    def __init__(self) -> None:
        self.embedding = EmbeddingSettings()
        self.cache = CacheSettings()
        self.qdrant = QdrantSettings()
        self.falkordb = FalkorDBSettings()
        self.server = ServerSettings()


settings = Settings()
