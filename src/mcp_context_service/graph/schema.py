"""
Graph schema for the conversation knowledge graph.

Defines the Cypher schema for FalkorDB: node labels, relationship types and
indices. Schema is applied idempotently on startup.

Node Labels:
    :User     - A subject whose conversations are stored (keyed by user_id)
    :Session  - A conversational thread (keyed by session_id)
    :Message  - One message (keyed by message_id, linked to its vector by vector_id)

Relationship Types:
    (:User)-[:PARTICIPATED_IN]->(:Session)
    (:Message)-[:PART_OF]->(:Session)
    (:User)-[:AUTHORED]->(:Message)

Indices:
    User(user_id), Session(session_id), Message(message_id) - exact-match lookups
    Message(vector_id) - resolves vector-store hits to graph nodes
    Message(timestamp)  - ordered session reads
"""

RELATIONSHIP_TYPES: frozenset[str] = frozenset({"PARTICIPATED_IN", "PART_OF", "AUTHORED"})

# Cypher statements executed idempotently on graph initialization.
SCHEMA_STATEMENTS: list[str] = [
    "CREATE INDEX IF NOT EXISTS FOR (u:User) ON (u.user_id)",
    "CREATE INDEX IF NOT EXISTS FOR (s:Session) ON (s.session_id)",
    "CREATE INDEX IF NOT EXISTS FOR (m:Message) ON (m.message_id)",
    "CREATE INDEX IF NOT EXISTS FOR (m:Message) ON (m.vector_id)",
    "CREATE INDEX IF NOT EXISTS FOR (m:Message) ON (m.timestamp)",
]
