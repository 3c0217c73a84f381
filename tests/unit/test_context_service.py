"""
Unit tests for ContextService.

Tests cover:
- Context assembly from vector hits and session expansion
- Result caching (including empty results) and cache keys
- Error propagation from each backing store
- Message storage and cache invalidation
- Session history caching
"""

import asyncio
import json

import pytest

from mcp_context_service.exceptions import EmbeddingError, GraphError, StorageError
from mcp_context_service.models.context import SessionMessage, VectorHit
from mcp_context_service.services.context_service import ContextService, merge_hits_with_sessions


def hit(vector_id: str, session_id: str | None, score: float = 0.9) -> VectorHit:
    metadata = {"session_id": session_id} if session_id is not None else {}
    return VectorHit(id=vector_id, score=score, metadata=metadata)


def message(content: str, timestamp: int, role: str = "user", metadata=None) -> SessionMessage:
    return SessionMessage(content=content, role=role, timestamp=timestamp, metadata=metadata)


class TestMergeHitsWithSessions:
    """Test the pure merge step."""

    def test_messages_follow_hit_order(self):
        sessions = {
            "s2": [message("yo", 200)],
            "s1": [message("hi", 100)],
        }

        result = merge_hits_with_sessions([hit("v1", "s1"), hit("v2", "s2")], sessions)

        assert [m.content for m in result.messages] == ["hi", "yo"]
        assert [m.session_id for m in result.messages] == ["s1", "s2"]

    def test_related_sessions_follow_expansion_order(self):
        sessions = {"s2": [message("yo", 200)], "s1": [message("hi", 100)]}

        result = merge_hits_with_sessions([hit("v1", "s1"), hit("v2", "s2")], sessions)

        assert result.related_sessions == ["s2", "s1"]

    def test_two_hits_in_one_session_duplicate_its_messages(self):
        sessions = {"s1": [message("a", 1), message("b", 2)]}

        result = merge_hits_with_sessions([hit("v1", "s1"), hit("v2", "s1")], sessions)

        assert [m.content for m in result.messages] == ["a", "b", "a", "b"]
        assert result.related_sessions == ["s1"]

    def test_hit_without_expansion_contributes_nothing(self):
        sessions = {"s1": [message("hi", 100)]}

        result = merge_hits_with_sessions([hit("v1", "s1"), hit("v9", "gone"), hit("v8", None)], sessions)

        assert [m.content for m in result.messages] == ["hi"]
        assert result.related_sessions == ["s1"]


class TestGetContext:
    """Test ContextService.get_context."""

    @pytest.mark.asyncio
    async def test_assembles_sessions_for_hits(self, context_service, vector_store, graph_client):
        vector_store.query.return_value = [hit("v1", "s1"), hit("v2", "s2")]
        graph_client.expand_sessions.return_value = {
            "s1": [message("hi", 100)],
            "s2": [message("yo", 200)],
        }

        result = await context_service.get_context("alice", "greetings", top_k=5)

        assert [(m.content, m.role, m.timestamp, m.session_id) for m in result.messages] == [
            ("hi", "user", 100, "s1"),
            ("yo", "user", 200, "s2"),
        ]
        assert result.related_sessions == ["s1", "s2"]
        graph_client.expand_sessions.assert_awaited_once_with(["v1", "v2"])

    @pytest.mark.asyncio
    async def test_queries_subject_namespace_with_filter(self, context_service, vector_store, embedder):
        await context_service.get_context("alice", "greetings", top_k=3)

        kwargs = vector_store.query.await_args.kwargs
        assert kwargs["namespace"] == "alice"
        assert kwargs["top_k"] == 3
        assert kwargs["metadata_filter"] == {"subject_id": "alice"}
        assert len(kwargs["vector"]) == embedder.dimensions

    @pytest.mark.asyncio
    async def test_empty_hits_return_empty_result_without_graph_call(self, context_service, graph_client):
        result = await context_service.get_context("alice", "anything")

        assert result.messages == []
        assert result.related_sessions == []
        assert result.is_empty
        graph_client.expand_sessions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_result_is_cached(self, context_service, vector_store, embedder):
        first = await context_service.get_context("alice", "anything")
        embed_calls = len(embedder.calls)

        second = await context_service.get_context("alice", "anything")

        assert second == first
        assert vector_store.query.await_count == 1
        assert len(embedder.calls) == embed_calls

    @pytest.mark.asyncio
    async def test_repeat_call_served_from_cache(self, context_service, vector_store, graph_client, embedder):
        vector_store.query.return_value = [hit("v1", "s1")]
        graph_client.expand_sessions.return_value = {"s1": [message("hi", 100)]}

        first = await context_service.get_context("alice", "greetings")
        embed_calls = len(embedder.calls)
        second = await context_service.get_context("alice", "greetings")

        assert second == first
        assert vector_store.query.await_count == 1
        assert graph_client.expand_sessions.await_count == 1
        assert len(embedder.calls) == embed_calls
        assert context_service.get_cache_stats()["context_cache"].hits == 1

    @pytest.mark.asyncio
    async def test_different_top_k_is_a_separate_entry(self, context_service, vector_store):
        await context_service.get_context("alice", "greetings", top_k=5)
        await context_service.get_context("alice", "greetings", top_k=2)

        assert vector_store.query.await_count == 2

    @pytest.mark.asyncio
    async def test_json_metadata_is_deserialized(self, context_service, vector_store, graph_client):
        vector_store.query.return_value = [hit("v1", "s1")]
        graph_client.expand_sessions.return_value = {
            "s1": [message("hi", 100, metadata=json.dumps({"lang": "en"}))],
        }

        result = await context_service.get_context("alice", "greetings")

        assert result.messages[0].metadata == {"lang": "en"}

    @pytest.mark.asyncio
    async def test_invalid_metadata_becomes_none(self, context_service, vector_store, graph_client):
        vector_store.query.return_value = [hit("v1", "s1")]
        graph_client.expand_sessions.return_value = {"s1": [message("hi", 100, metadata="{not json")]}

        result = await context_service.get_context("alice", "greetings")

        assert result.messages[0].metadata is None

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates_and_caches_nothing(self, context_service, embedder, vector_store):
        embedder.fail_on = {1}

        with pytest.raises(EmbeddingError):
            await context_service.get_context("alice", "greetings")

        vector_store.query.assert_not_awaited()
        assert len(context_service.context_cache) == 0

    @pytest.mark.asyncio
    async def test_storage_failure_propagates_and_caches_nothing(self, context_service, vector_store):
        vector_store.query.side_effect = StorageError("qdrant down")

        with pytest.raises(StorageError):
            await context_service.get_context("alice", "greetings")

        assert len(context_service.context_cache) == 0

    @pytest.mark.asyncio
    async def test_graph_failure_propagates_and_caches_nothing(self, context_service, vector_store, graph_client):
        vector_store.query.return_value = [hit("v1", "s1")]
        graph_client.expand_sessions.side_effect = GraphError("falkordb down")

        with pytest.raises(GraphError):
            await context_service.get_context("alice", "greetings")

        assert len(context_service.context_cache) == 0

    @pytest.mark.asyncio
    async def test_cache_embedding_failure_still_returns_and_caches(self, context_service, embedder, vector_store, graph_client):
        # First embed call is the query, second is the cache entry
        embedder.fail_on = {2}
        vector_store.query.return_value = [hit("v1", "s1")]
        graph_client.expand_sessions.return_value = {"s1": [message("hi", 100)]}

        result = await context_service.get_context("alice", "greetings")
        again = await context_service.get_context("alice", "greetings")

        assert [m.content for m in result.messages] == ["hi"]
        assert again == result
        assert vector_store.query.await_count == 1


class TestStoreMessage:
    """Test ContextService.store_message."""

    @pytest.mark.asyncio
    async def test_writes_vector_and_graph(self, context_service, vector_store, graph_client):
        stored = await context_service.store_message("alice", "s1", "hello there", role="assistant", metadata={"k": "v"})

        assert stored.vector_id == f"vec_{stored.message_id}"
        assert stored.subject_id == "alice"
        assert stored.session_id == "s1"
        assert stored.timestamp > 1_000_000_000_000

        upsert = vector_store.upsert.await_args.kwargs
        assert upsert["vector_id"] == stored.vector_id
        assert upsert["namespace"] == "alice"
        assert upsert["metadata"]["session_id"] == "s1"
        assert upsert["metadata"]["subject_id"] == "alice"
        assert upsert["metadata"]["k"] == "v"

        graph = graph_client.store_message.await_args.kwargs
        assert graph["user_id"] == "alice"
        assert graph["message_id"] == stored.message_id
        assert graph["content"] == "hello there"
        assert graph["role"] == "assistant"
        assert graph["timestamp"] == stored.timestamp

    @pytest.mark.asyncio
    async def test_invalidates_subject_context(self, context_service, vector_store):
        await context_service.get_context("alice", "greetings")
        await context_service.get_context("bob", "greetings")

        await context_service.store_message("alice", "s1", "new fact")
        await context_service.get_context("alice", "greetings")
        await context_service.get_context("bob", "greetings")

        # alice re-queried after invalidation, bob still cached
        assert vector_store.query.await_count == 3

    @pytest.mark.asyncio
    async def test_invalidation_can_be_disabled(self, vector_store, graph_client, embedder):
        service = ContextService(vector_store, graph_client, embedder, invalidate_on_write=False)
        await service.get_context("alice", "greetings")

        await service.store_message("alice", "s1", "new fact")
        await service.get_context("alice", "greetings")

        assert vector_store.query.await_count == 1

    @pytest.mark.asyncio
    async def test_invalidates_session_history(self, context_service, graph_client):
        graph_client.get_session_messages.return_value = []
        await context_service.get_session_history("s1")

        graph_client.get_session_messages.return_value = [message("new fact", 100)]
        await context_service.store_message("alice", "s1", "new fact")
        history = await context_service.get_session_history("s1")

        assert [m.content for m in history] == ["new fact"]
        assert graph_client.get_session_messages.await_count == 2

    @pytest.mark.asyncio
    async def test_embedding_failure_writes_nothing(self, context_service, embedder, vector_store, graph_client):
        embedder.fail_always = True

        with pytest.raises(EmbeddingError):
            await context_service.store_message("alice", "s1", "hello")

        vector_store.upsert.assert_not_awaited()
        graph_client.store_message.assert_not_awaited()


class TestSessionHistory:
    """Test ContextService.get_session_history."""

    @pytest.mark.asyncio
    async def test_cached_after_first_read(self, context_service, graph_client):
        graph_client.get_session_messages.return_value = [message("a", 1), message("b", 2)]

        first = await context_service.get_session_history("s1")
        second = await context_service.get_session_history("s1")

        assert [m.content for m in second] == ["a", "b"]
        assert second == first
        graph_client.get_session_messages.assert_awaited_once_with("s1")

    @pytest.mark.asyncio
    async def test_empty_history_is_cached(self, context_service, graph_client):
        await context_service.get_session_history("empty")
        await context_service.get_session_history("empty")

        assert graph_client.get_session_messages.await_count == 1
        assert context_service.get_cache_stats()["session_cache"].hits == 1


class TestStatsAndLifecycle:
    """Test stats, health and close."""

    @pytest.mark.asyncio
    async def test_cache_stats_report_both_caches(self, context_service):
        await context_service.get_context("alice", "q")
        await context_service.get_context("alice", "q")

        stats = context_service.get_cache_stats()

        assert set(stats) == {"context_cache", "session_cache"}
        assert stats["context_cache"].hits == 1
        assert stats["context_cache"].misses == 1
        assert stats["context_cache"].size == 1
        assert stats["session_cache"].hit_rate == 0.0

    @pytest.mark.asyncio
    async def test_check_health(self, context_service):
        health = await context_service.check_health()

        assert health["status"] == "healthy"
        assert health["vector_store"]["collection"] == "test_context"
        assert "context_cache" in health["caches"]

    @pytest.mark.asyncio
    async def test_check_health_degraded(self, context_service, graph_client):
        graph_client.get_graph_stats.return_value = {"status": "error", "error": "boom"}

        health = await context_service.check_health()

        assert health["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_close_closes_collaborators(self, context_service, vector_store, graph_client):
        await context_service.close()

        graph_client.close.assert_awaited_once()
        vector_store.close.assert_awaited_once()



class TestWriteDuringRead:
    """A write that completes while a read is in flight must not leave the read's result cached."""

    @pytest.mark.asyncio
    async def test_context_read_overtaken_by_write_is_not_cached(self, context_service, vector_store, graph_client):
        old = [message("old", 100)]
        new = [message("old", 100), message("new", 200)]
        vector_store.query.return_value = [hit("v1", "s1")]

        expansion_started = asyncio.Event()
        release_expansion = asyncio.Event()

        async def slow_expand(vector_ids):
            expansion_started.set()
            await release_expansion.wait()
            return {"s1": old}

        graph_client.expand_sessions.side_effect = slow_expand

        read = asyncio.create_task(context_service.get_context("alice", "q"))
        await expansion_started.wait()

        await context_service.store_message("alice", "s1", "new")
        release_expansion.set()
        first = await read

        graph_client.expand_sessions.side_effect = None
        graph_client.expand_sessions.return_value = {"s1": new}
        second = await context_service.get_context("alice", "q")

        assert [m.content for m in first.messages] == ["old"]
        assert [m.content for m in second.messages] == ["old", "new"]

    @pytest.mark.asyncio
    async def test_write_during_cache_insert_drops_entry(self, context_service, vector_store, graph_client, embedder):
        vector_store.query.return_value = [hit("v1", "s1")]
        graph_client.expand_sessions.return_value = {"s1": [message("old", 100)]}

        real_embed = embedder.embed
        calls = 0

        async def embed_then_write(text):
            nonlocal calls
            calls += 1
            # Second call is the cache entry embedding inside SemanticCache.set
            if calls == 2:
                await context_service.store_message("alice", "s1", "new")
            return await real_embed(text)

        embedder.embed = embed_then_write

        await context_service.get_context("alice", "q")

        assert len(context_service.context_cache) == 0

    @pytest.mark.asyncio
    async def test_unrelated_subject_write_keeps_read_cacheable(self, context_service, vector_store, graph_client):
        vector_store.query.return_value = [hit("v1", "s1")]

        release_expansion = asyncio.Event()
        expansion_started = asyncio.Event()

        async def slow_expand(vector_ids):
            expansion_started.set()
            await release_expansion.wait()
            return {"s1": [message("old", 100)]}

        graph_client.expand_sessions.side_effect = slow_expand

        read = asyncio.create_task(context_service.get_context("alice", "q"))
        await expansion_started.wait()
        await context_service.store_message("bob", "s9", "elsewhere")
        release_expansion.set()
        await read

        assert len(context_service.context_cache) == 1

    @pytest.mark.asyncio
    async def test_session_read_overtaken_by_write_is_not_cached(self, context_service, graph_client):
        read_started = asyncio.Event()
        release_read = asyncio.Event()

        async def slow_history(session_id):
            read_started.set()
            await release_read.wait()
            return [message("old", 100)]

        graph_client.get_session_messages.side_effect = slow_history

        read = asyncio.create_task(context_service.get_session_history("s1"))
        await read_started.wait()
        await context_service.store_message("alice", "s1", "new")
        release_read.set()
        await read

        graph_client.get_session_messages.side_effect = None
        graph_client.get_session_messages.return_value = [message("old", 100), message("new", 200)]
        history = await context_service.get_session_history("s1")

        assert [m.content for m in history] == ["old", "new"]
        assert graph_client.get_session_messages.await_count == 2
