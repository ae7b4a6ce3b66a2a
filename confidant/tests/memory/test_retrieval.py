"""Tests for the retrieval engine and its fallbacks."""

from unittest.mock import AsyncMock

import pytest

from confidant.config.schemas.memory import (
    MemoryCategory,
    MemoryType,
    RetrievalSource,
    SearchOptions,
)
from confidant.memory.retrieval import MemoryCache, extract_terms


async def _store(repository, gateway, memory):
    memory = await repository.create(memory)
    result = await gateway.store_memory(memory)
    memory.vector_id = result.vector_id
    return await repository.update(memory)


class TestExtractTerms:
    """Tests for extract_terms."""

    def test_short_words_dropped_and_capped(self):
        terms = extract_terms("Do you remember my dog's name and my favourite food?", max_terms=3)

        assert terms == ["you", "remember", "dog's"]

    def test_no_terms(self):
        assert extract_terms("ok hi") == []


class TestMemoryCache:
    """Tests for MemoryCache."""

    def test_expires_after_ttl(self, clock, make_memory):
        cache = MemoryCache(ttl=60, clock=clock)
        cache.set("u1", [make_memory()])

        assert len(cache.get("u1")) == 1
        clock.advance(61)
        assert cache.get("u1") is None

    def test_invalidate(self, clock, make_memory):
        cache = MemoryCache(ttl=60, clock=clock)
        cache.set("u1", [make_memory()])

        assert cache.invalidate("u1")
        assert not cache.invalidate("u1")
        assert len(cache) == 0


class TestVectorSearch:
    """Tests for the primary vector path."""

    @pytest.mark.asyncio
    async def test_finds_matching_memory(self, retrieval, repository, gateway, make_memory, task_runner):
        hiking = await _store(repository, gateway, make_memory(content="User loves hiking on weekends"))
        await _store(repository, gateway, make_memory(content="User is allergic to peanuts"))

        results = await retrieval.search("user-1", "User loves hiking on weekends")
        await task_runner.drain()

        assert results[0].id == hiking.id
        assert results[0].source == RetrievalSource.VECTOR
        assert results[0].score == pytest.approx(1.0)
        assert all(r.score >= 0.7 for r in results)

    @pytest.mark.asyncio
    async def test_only_owner_memories_returned(self, retrieval, repository, gateway, make_memory, task_runner):
        await _store(repository, gateway, make_memory(content="User plays chess daily", user_id="bob"))

        results = await retrieval.search("alice", "User plays chess daily")
        await task_runner.drain()

        assert results == []

    @pytest.mark.asyncio
    async def test_hidden_memory_excluded(self, retrieval, repository, gateway, make_memory, task_runner):
        """Test that a hidden row never surfaces even if its vector remains."""
        memory = await _store(repository, gateway, make_memory(content="User plays chess daily"))
        memory.is_visible = False
        await repository.update(memory)

        results = await retrieval.search("user-1", "User plays chess daily")
        await task_runner.drain()

        assert memory.id not in [r.id for r in results]

    @pytest.mark.asyncio
    async def test_options_respected(self, retrieval, repository, gateway, make_memory, task_runner):
        """Test limit, importance floor and category filters."""
        await _store(repository, gateway, make_memory(content="User wants to run a marathon", importance=2))
        goal = await _store(
            repository, gateway,
            make_memory(
                content="User wants to run a marathon in Berlin",
                importance=8,
                type=MemoryType.GOAL,
                category=MemoryCategory.GOAL,
            ),
        )
        options = SearchOptions(limit=1, min_importance=3, min_score=0.0, categories=[MemoryCategory.GOAL])

        results = await retrieval.search("user-1", "User wants to run a marathon", options)
        await task_runner.drain()

        assert [r.id for r in results] == [goal.id]
        assert results[0].category == MemoryCategory.GOAL


class TestFallbacks:
    """Tests for keyword and recent fallbacks."""

    @pytest.mark.asyncio
    async def test_open_circuit_uses_keyword_search(self, retrieval, repository, gateway, make_memory, task_runner):
        """Test that an open embedding circuit skips straight to keywords."""
        hiking = await _store(repository, gateway, make_memory(content="User loves hiking on weekends"))
        retrieval.embeddings.breaker.force_open()
        retrieval.embeddings.provider.embed = AsyncMock()

        results = await retrieval.search("user-1", "any hiking plans")
        await task_runner.drain()

        retrieval.embeddings.provider.embed.assert_not_called()
        assert [r.id for r in results] == [hiking.id]
        assert results[0].source == RetrievalSource.KEYWORD
        assert results[0].score == 0.5

    @pytest.mark.asyncio
    async def test_vector_store_failure_falls_back(self, retrieval, repository, gateway, vector_index, make_memory, task_runner):
        hiking = await _store(repository, gateway, make_memory(content="User loves hiking on weekends"))
        vector_index.query = AsyncMock(side_effect=ConnectionError("index down"))

        results = await retrieval.search("user-1", "User loves hiking on weekends")
        await task_runner.drain()

        assert [r.id for r in results] == [hiking.id]
        assert results[0].source == RetrievalSource.KEYWORD

    @pytest.mark.asyncio
    async def test_keyword_order_by_importance(self, retrieval, repository, make_memory, task_runner):
        low = await repository.create(make_memory(content="User bakes bread on Sundays", importance=4))
        high = await repository.create(make_memory(content="User sells bread at the market", importance=9))
        retrieval.gateway.breaker.force_open()

        results = await retrieval.search("user-1", "bread")
        await task_runner.drain()

        assert [r.id for r in results] == [high.id, low.id]

    @pytest.mark.asyncio
    async def test_recent_fallback_without_terms(self, retrieval, repository, make_memory, task_runner):
        """Test that a query with no usable terms returns important recent memories."""
        top = await repository.create(make_memory(content="User got engaged last month", importance=9))
        mid = await repository.create(make_memory(content="User started a new job", importance=6))
        await repository.create(make_memory(content="User drinks oat milk", importance=4))
        retrieval.gateway.breaker.force_open()

        results = await retrieval.search("user-1", "ok hi")
        await task_runner.drain()

        assert [r.id for r in results] == [top.id, mid.id]
        assert all(r.source == RetrievalSource.RECENT and r.score == 0.3 for r in results)
        assert retrieval.get_cached_memories("user-1") is not None

    @pytest.mark.asyncio
    async def test_search_never_raises(self, retrieval, repository):
        retrieval.gateway.breaker.force_open()
        repository.find = AsyncMock(side_effect=RuntimeError("database gone"))

        assert await retrieval.search("user-1", "hiking") == []

    @pytest.mark.asyncio
    async def test_empty_query(self, retrieval):
        assert await retrieval.search("user-1", "   ") == []
        assert await retrieval.search("", "hiking") == []


class TestAccessAndListings:
    """Tests for access telemetry, category listing and cache warming."""

    @pytest.mark.asyncio
    async def test_access_recorded_in_background(self, retrieval, repository, gateway, make_memory, task_runner):
        memory = await _store(repository, gateway, make_memory(content="User loves hiking on weekends"))

        await retrieval.search("user-1", "User loves hiking on weekends")
        await task_runner.drain()

        stored = await repository.get("user-1", memory.id)
        assert stored.access_count == 1
        assert stored.last_accessed is not None

    @pytest.mark.asyncio
    async def test_access_update_failure_is_swallowed(self, retrieval, repository, gateway, make_memory, task_runner):
        await _store(repository, gateway, make_memory(content="User loves hiking on weekends"))
        repository.record_access = AsyncMock(side_effect=RuntimeError("write failed"))

        results = await retrieval.search("user-1", "User loves hiking on weekends")
        await task_runner.drain()

        assert len(results) == 1
        assert task_runner.stats()["failed"] == 0

    @pytest.mark.asyncio
    async def test_search_by_category(self, retrieval, repository, make_memory, task_runner):
        fear = await repository.create(make_memory(
            content="User is afraid of flying",
            type=MemoryType.FEAR,
            category=MemoryCategory.EMOTIONAL,
        ))
        await repository.create(make_memory(content="User likes sushi"))

        results = await retrieval.search_by_category("user-1", MemoryCategory.EMOTIONAL)
        await task_runner.drain()

        assert [r.id for r in results] == [fear.id]
        assert results[0].source == RetrievalSource.CATEGORY

    @pytest.mark.asyncio
    async def test_search_optimized_warms_cache(self, retrieval, repository, make_memory, task_runner):
        await repository.create(make_memory(content="User got engaged last month", importance=9))
        retrieval.gateway.breaker.force_open()

        await retrieval.search_optimized("user-1", "engaged")
        await task_runner.drain()

        assert len(retrieval.get_cached_memories("user-1")) == 1
        retrieval.invalidate_cache("user-1")
        assert retrieval.get_cached_memories("user-1") is None
