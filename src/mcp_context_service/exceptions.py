"""Exception hierarchy for MCP Context Service."""


class ContextServiceError(Exception):
    """Base class for all service errors."""


class EmbeddingError(ContextServiceError):
    """The embedding provider failed or returned a vector of the wrong size."""


class StorageError(ContextServiceError):
    """Vector store failure (including an open circuit breaker)."""


class GraphError(ContextServiceError):
    """Graph store failure."""
