"""
FalkorDB graph client for the conversation knowledge graph.

Holds User, Session and Message nodes. Reads are concurrent over a shared
blocking connection pool; the only writes are message ingestion (MERGE on
user and session, CREATE on message) and schema initialization.

Every query failure is raised as ``GraphError``; nothing is swallowed on the
read path, so a graph outage fails the request that needed it.
"""

import json
import logging
from typing import Any

from falkordb.asyncio import FalkorDB
from redis.asyncio import BlockingConnectionPool

from ..exceptions import GraphError
from ..models.context import SessionMessage
from .schema import RELATIONSHIP_TYPES, SCHEMA_STATEMENTS

logger = logging.getLogger(__name__)

# All messages of every session that contains one of the hit vectors
EXPAND_SESSIONS_QUERY = (
    "MATCH (hit:Message)-[:PART_OF]->(s:Session) "
    "WHERE hit.vector_id IN $vector_ids "
    "WITH DISTINCT s "
    "MATCH (msg:Message)-[:PART_OF]->(s) "
    "WITH s, msg ORDER BY msg.timestamp "
    "RETURN s.session_id AS session_id, "
    "collect({content: msg.content, role: msg.role, timestamp: msg.timestamp, metadata: msg.metadata}) AS messages"
)

SESSION_HISTORY_QUERY = (
    "MATCH (m:Message)-[:PART_OF]->(:Session {session_id: $session_id}) "
    "RETURN m.content, m.role, m.timestamp, m.metadata "
    "ORDER BY m.timestamp"
)

STORE_MESSAGE_QUERY = (
    "MERGE (u:User {user_id: $user_id}) "
    "MERGE (s:Session {session_id: $session_id}) "
    "CREATE (m:Message {message_id: $message_id, content: $content, vector_id: $vector_id, "
    "role: $role, timestamp: $timestamp, metadata: $metadata}) "
    "MERGE (u)-[:PARTICIPATED_IN]->(s) "
    "MERGE (m)-[:PART_OF]->(s) "
    "MERGE (u)-[:AUTHORED]->(m)"
)


def _sort_by_timestamp(messages: list[SessionMessage]) -> list[SessionMessage]:
    # collect() does not promise to keep the ORDER BY of the preceding WITH
    return sorted(messages, key=lambda m: m.timestamp)


class GraphClient:
    """
    Async FalkorDB client for the conversation graph.

    Manages a Redis connection pool used by all graph reads and writes.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        password: str | None = None,
        graph_name: str = "chat_context",
        max_connections: int = 16,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.graph_name = graph_name
        self.max_connections = max_connections

        self._pool: BlockingConnectionPool | None = None
        self._db: FalkorDB | None = None
        self._graph = None
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize connection pool, select graph, and apply schema."""
        if self._initialized:
            return

        self._pool = BlockingConnectionPool(
            host=self.host,
            port=self.port,
            password=self.password,
            max_connections=self.max_connections,
            timeout=None,
            decode_responses=True,
        )

        self._db = FalkorDB(connection_pool=self._pool)
        self._graph = self._db.select_graph(self.graph_name)

        for stmt in SCHEMA_STATEMENTS:
            try:
                await self._graph.query(stmt)
            except Exception as e:
                # Index already exists is not an error
                if "already indexed" not in str(e).lower():
                    logger.warning(f"Schema statement warning: {stmt} -> {e}")

        self._initialized = True
        logger.info(f"GraphClient initialized: {self.host}:{self.port}/{self.graph_name}")

    @property
    def graph(self):
        """Expose graph for direct query access."""
        if self._graph is None:
            raise GraphError("GraphClient not initialized. Call initialize() first.")
        return self._graph

    async def _query(self, cypher: str, params: dict[str, Any] | None = None):
        try:
            return await self.graph.query(cypher, params=params or {})
        except GraphError:
            raise
        except Exception as e:
            logger.error(f"Graph query failed: {e.__class__.__name__}: {e}")
            raise GraphError(f"Graph query failed: {e}") from e

    # ── Writes ───────────────────────────────────────────────────────────

    async def store_message(
        self,
        user_id: str,
        session_id: str,
        message_id: str,
        vector_id: str,
        content: str,
        role: str,
        timestamp: int,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Create a :Message node and link it to its user and session.

        User and session nodes are MERGEd, so the first message of a session
        creates them. Metadata is stored as a JSON string.
        """
        await self._query(
            STORE_MESSAGE_QUERY,
            {
                "user_id": user_id,
                "session_id": session_id,
                "message_id": message_id,
                "vector_id": vector_id,
                "content": content,
                "role": role,
                "timestamp": timestamp,
                "metadata": json.dumps(metadata or {}),
            },
        )

    # ── Reads ────────────────────────────────────────────────────────────

    async def expand_sessions(self, vector_ids: list[str]) -> dict[str, list[SessionMessage]]:
        """
        Expand vector hits into the full message lists of their sessions.

        Args:
            vector_ids: Vector identifiers returned by the vector store

        Returns:
            Ordered mapping of session_id -> every message of that session,
            sorted by timestamp ascending, in the order the graph returned
            the sessions
        """
        if not vector_ids:
            return {}

        result = await self._query(EXPAND_SESSIONS_QUERY, {"vector_ids": vector_ids})

        sessions: dict[str, list[SessionMessage]] = {}
        for row in result.result_set:
            session_id = str(row[0])
            messages = [SessionMessage.model_validate(item) for item in row[1] or []]
            sessions[session_id] = _sort_by_timestamp(messages)

        logger.debug(f"Expanded {len(vector_ids)} hits into {len(sessions)} sessions")
        return sessions

    async def get_session_messages(self, session_id: str) -> list[SessionMessage]:
        """Every message of one session, ordered by timestamp. Missing metadata becomes {}."""
        result = await self._query(SESSION_HISTORY_QUERY, {"session_id": session_id})

        messages = [
            SessionMessage(content=row[0], role=row[1], timestamp=row[2], metadata=row[3] or {})
            for row in result.result_set
        ]
        return _sort_by_timestamp(messages)

    async def get_graph_stats(self) -> dict[str, Any]:
        """Get graph statistics for health checks."""
        try:
            counts: dict[str, int] = {}
            for label in ("User", "Session", "Message"):
                res = await self.graph.query(f"MATCH (n:{label}) RETURN count(n)")
                counts[label.lower() + "_count"] = int(res.result_set[0][0]) if res.result_set else 0

            edge_counts: dict[str, int] = {}
            for rel in sorted(RELATIONSHIP_TYPES):
                res = await self.graph.query(f"MATCH ()-[e:{rel}]->() RETURN count(e)")
                edge_counts[rel.lower()] = int(res.result_set[0][0]) if res.result_set else 0

            return {
                "graph_name": self.graph_name,
                **counts,
                "edge_counts": edge_counts,
                "status": "operational",
            }
        except Exception as e:
            logger.error(f"Failed to get graph stats: {e}")
            return {
                "graph_name": self.graph_name,
                "status": "error",
                "error": str(e),
            }

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            try:
                await self._pool.aclose()
                logger.info("GraphClient connection pool closed")
            except Exception as e:
                logger.warning(f"Error closing GraphClient pool: {e}")
            finally:
                self._pool = None
                self._db = None
                self._graph = None
                self._initialized = False
