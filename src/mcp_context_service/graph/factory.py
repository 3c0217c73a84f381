"""
Factory for creating and initializing the graph layer.

Creates a GraphClient from FalkorDBSettings config.
"""

import logging

from ..config import settings
from .client import GraphClient

logger = logging.getLogger(__name__)


async def create_graph_client() -> GraphClient:
    """
    Create and initialize the FalkorDB graph client.

    Returns:
        Initialized GraphClient
    """
    config = settings.falkordb
    password = config.password.get_secret_value() if config.password else None

    client = GraphClient(
        host=config.host,
        port=config.port,
        password=password,
        graph_name=config.graph_name,
        max_connections=config.max_connections,
    )

    await client.initialize()

    logger.info(f"Graph layer initialized: {config.host}:{config.port}/{config.graph_name}")
    return client
