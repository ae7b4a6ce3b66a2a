"""Tests for storage backends and metadata filters.

Tests cover:
- Metadata filter operators
- InMemoryMemoryRepository queries, ordering and access telemetry
- InMemoryVectorIndex and FaissVectorIndex namespaces and search
- PineconeVectorIndex request mapping
- MemoryLocking
"""

import asyncio
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from confidant.config.schemas.memory import MemoryCategory, VectorRecord, utc_now
from confidant.core.exceptions import ConfigurationError, MemoryWriteError
from confidant.core.storage.faiss_index import FaissVectorIndex
from confidant.core.storage.filters import matches_filter, validate_filter
from confidant.core.storage.memory import (
    InMemoryMemoryRepository,
    InMemoryVectorIndex,
    MemoryLocking,
)
from confidant.core.storage.pinecone_index import PineconeVectorIndex
from confidant.core.storage.protocols import MemoryQuery, MemoryRepository, VectorIndex


def _unit(dimensions: int, hot: int) -> list[float]:
    vec = [0.0] * dimensions
    vec[hot] = 1.0
    return vec


# =============================================================================
# Filter Tests
# =============================================================================


class TestFilters:
    """Tests for metadata filter evaluation."""

    def test_equality_and_operators(self):
        """Test plain equality, comparisons and membership."""
        metadata = {"user_id": "u1", "importance": 6, "category": "goal"}

        assert matches_filter(metadata, {"user_id": "u1"})
        assert matches_filter(metadata, {"user_id": {"$eq": "u1"}})
        assert matches_filter(metadata, {"importance": {"$gte": 6}})
        assert not matches_filter(metadata, {"importance": {"$gte": 7}})
        assert matches_filter(metadata, {"category": {"$in": ["goal", "emotional"]}})
        assert not matches_filter(metadata, {"user_id": {"$ne": "u1"}})

    def test_empty_filter_matches(self):
        """Test that no filter matches everything."""
        assert matches_filter({"a": 1}, None)
        assert matches_filter({"a": 1}, {})

    def test_missing_field_does_not_match_comparison(self):
        """Test that comparisons against missing fields fail."""
        assert not matches_filter({}, {"importance": {"$gte": 1}})

    def test_unknown_operator_rejected(self):
        """Test validation of operators."""
        with pytest.raises(ValueError):
            validate_filter({"importance": {"$near": 3}})


# =============================================================================
# Repository Tests
# =============================================================================


class TestInMemoryMemoryRepository:
    """Tests for InMemoryMemoryRepository."""

    def test_satisfies_protocol(self):
        """Test protocol conformance."""
        assert isinstance(InMemoryMemoryRepository(), MemoryRepository)

    @pytest.mark.asyncio
    async def test_create_and_get(self, repository, make_memory):
        """Test round trip of a memory row."""
        memory = await repository.create(make_memory())

        fetched = await repository.get("user-1", memory.id)

        assert fetched == memory
        assert await repository.get("someone-else", memory.id) is None

    @pytest.mark.asyncio
    async def test_create_duplicate_id_fails(self, repository, make_memory):
        """Test that ids are unique."""
        memory = make_memory()
        await repository.create(memory)

        with pytest.raises(MemoryWriteError):
            await repository.create(memory)

    @pytest.mark.asyncio
    async def test_update_unknown_fails(self, repository, make_memory):
        """Test that update requires an existing row."""
        with pytest.raises(MemoryWriteError):
            await repository.update(make_memory())

    @pytest.mark.asyncio
    async def test_returned_rows_are_copies(self, repository, make_memory):
        """Test that mutating a returned row does not change storage."""
        memory = await repository.create(make_memory())
        memory.importance = 9

        stored = await repository.get("user-1", memory.id)

        assert stored.importance == 5

    @pytest.mark.asyncio
    async def test_find_filters_visibility_and_importance(self, repository, make_memory):
        """Test visibility and importance filters."""
        await repository.create(make_memory(importance=2))
        await repository.create(make_memory(importance=8))
        await repository.create(make_memory(importance=9, is_visible=False))

        rows = await repository.find("user-1", MemoryQuery(min_importance=5))

        assert [m.importance for m in rows] == [8]

    @pytest.mark.asyncio
    async def test_find_terms_match_content_tags_and_category(self, repository, make_memory):
        """Test OR matching of search terms."""
        await repository.create(make_memory(content="User is training for a marathon"))
        await repository.create(make_memory(content="User has a cat named Miso", tags=["pets"]))
        await repository.create(
            make_memory(content="User wants to learn piano", category=MemoryCategory.GOAL)
        )
        await repository.create(make_memory(content="User drinks green tea daily"))

        rows = await repository.find("user-1", MemoryQuery(terms=["marathon", "pets", "goal"]))

        assert len(rows) == 3

    @pytest.mark.asyncio
    async def test_find_orders_by_multiple_keys(self, repository, make_memory):
        """Test ordering by importance then recency."""
        old = await repository.create(make_memory(importance=7, age_days=10))
        new = await repository.create(make_memory(importance=7, age_days=1))
        top = await repository.create(make_memory(importance=9, age_days=30))

        rows = await repository.find(
            "user-1",
            MemoryQuery(order_by=[("importance", True), ("created_at", True)], limit=3),
        )

        assert [m.id for m in rows] == [top.id, new.id, old.id]

    @pytest.mark.asyncio
    async def test_find_created_before(self, repository, make_memory):
        """Test the creation time upper bound."""
        await repository.create(make_memory(age_days=100))
        await repository.create(make_memory(age_days=1))

        rows = await repository.find(
            "user-1", MemoryQuery(created_before=utc_now() - timedelta(days=90))
        )

        assert len(rows) == 1

    def test_invalid_order_field(self):
        """Test that unknown order fields are rejected."""
        with pytest.raises(ValueError):
            MemoryQuery(order_by=[("content", True)])

    @pytest.mark.asyncio
    async def test_record_access(self, repository, make_memory):
        """Test that access telemetry only increases."""
        memory = await repository.create(make_memory())
        now = utc_now()

        updated = await repository.record_access("user-1", [memory.id, "missing"], now)
        await repository.record_access("user-1", [memory.id], now - timedelta(days=1))

        stored = await repository.get("user-1", memory.id)
        assert updated == 1
        assert stored.access_count == 2
        assert stored.last_accessed == now

    @pytest.mark.asyncio
    async def test_count(self, repository, make_memory):
        """Test counting visible rows by default."""
        await repository.create(make_memory())
        await repository.create(make_memory(is_visible=False))

        assert await repository.count("user-1") == 1
        assert await repository.count("user-1", MemoryQuery(visible=None)) == 2


# =============================================================================
# Vector Index Tests
# =============================================================================


@pytest.fixture(params=["memory", "faiss"])
def any_index(request):
    """Each local vector index implementation."""
    if request.param == "memory":
        return InMemoryVectorIndex(dimensions=8)
    return FaissVectorIndex(dimensions=8)


class TestVectorIndexes:
    """Behaviour shared by the local vector indexes."""

    def test_satisfies_protocol(self, any_index):
        """Test protocol conformance."""
        assert isinstance(any_index, VectorIndex)

    @pytest.mark.asyncio
    async def test_query_returns_cosine_scores(self, any_index):
        """Test that identical vectors score 1 and orthogonal ones score 0."""
        await any_index.upsert("ns", [
            VectorRecord(id="a", values=_unit(8, 0)),
            VectorRecord(id="b", values=_unit(8, 1)),
        ])

        matches = await any_index.query("ns", _unit(8, 0), top_k=2)

        assert matches[0].id == "a"
        assert matches[0].score == pytest.approx(1.0)
        assert matches[1].score == pytest.approx(0.0, abs=1e-6)

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self, any_index):
        """Test that a query never sees another namespace."""
        await any_index.upsert("user_a", [VectorRecord(id="a", values=_unit(8, 0))])
        await any_index.upsert("user_b", [VectorRecord(id="b", values=_unit(8, 0))])

        matches = await any_index.query("user_a", _unit(8, 0), top_k=10)

        assert [m.id for m in matches] == ["a"]

    @pytest.mark.asyncio
    async def test_upsert_replaces_existing_id(self, any_index):
        """Test that re-upserting an id replaces the vector."""
        await any_index.upsert("ns", [VectorRecord(id="a", values=_unit(8, 0))])
        await any_index.upsert("ns", [VectorRecord(id="a", values=_unit(8, 1), metadata={"v": 2})])

        matches = await any_index.query("ns", _unit(8, 1), top_k=5)
        stats = await any_index.describe_index_stats()

        assert len(matches) == 1
        assert matches[0].metadata == {"v": 2}
        assert stats["namespaces"]["ns"]["vector_count"] == 1

    @pytest.mark.asyncio
    async def test_filter_applies_to_metadata(self, any_index):
        """Test metadata filtering of query results."""
        await any_index.upsert("ns", [
            VectorRecord(id="low", values=_unit(8, 0), metadata={"importance": 2}),
            VectorRecord(id="high", values=_unit(8, 0), metadata={"importance": 8}),
        ])

        matches = await any_index.query(
            "ns", _unit(8, 0), top_k=5, filter={"importance": {"$gte": 5}}
        )

        assert [m.id for m in matches] == ["high"]

    @pytest.mark.asyncio
    async def test_delete_and_delete_namespace(self, any_index):
        """Test record and namespace deletion."""
        await any_index.upsert("ns", [
            VectorRecord(id="a", values=_unit(8, 0)),
            VectorRecord(id="b", values=_unit(8, 1)),
        ])

        assert await any_index.delete("ns", ["a", "missing"]) == 1
        assert [m.id for m in await any_index.query("ns", _unit(8, 0), top_k=5)] == ["b"]
        assert await any_index.delete_namespace("ns") == 1
        assert await any_index.query("ns", _unit(8, 0)) == []

    @pytest.mark.asyncio
    async def test_dimension_mismatch_rejected(self, any_index):
        """Test that vectors of the wrong size are rejected."""
        with pytest.raises(ValueError):
            await any_index.upsert("ns", [VectorRecord(id="a", values=[1.0, 0.0])])


# =============================================================================
# MemoryLocking Tests
# =============================================================================


class TestMemoryLocking:
    """Tests for MemoryLocking."""

    @pytest.mark.asyncio
    async def test_lock_is_held_inside_context(self):
        """Test lock state inside and after the context."""
        locking = MemoryLocking()

        async with locking.lock("user_1"):
            assert await locking.is_locked("user_1")

        assert not await locking.is_locked("user_1")

    @pytest.mark.asyncio
    async def test_released_keys_are_dropped(self):
        """Test that locks do not accumulate per key."""
        locking = MemoryLocking()

        for n in range(50):
            async with locking.lock(f"user_{n}"):
                assert locking.active_keys == 1

        assert locking.active_keys == 0

    @pytest.mark.asyncio
    async def test_waiter_keeps_exclusion(self):
        """Test that a waiting task gets the same lock after the holder leaves."""
        locking = MemoryLocking()
        order = []

        async def worker(name):
            async with locking.lock("user_1"):
                order.append(f"{name}:in")
                await asyncio.sleep(0)
                order.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a:in", "a:out", "b:in", "b:out"]
        assert locking.active_keys == 0

    @pytest.mark.asyncio
    async def test_timeout_releases_key(self):
        locking = MemoryLocking()

        async with locking.lock("user_1"):
            with pytest.raises(asyncio.TimeoutError):
                async with locking.lock("user_1", timeout=0.01):
                    pass

        assert locking.active_keys == 0


# =============================================================================
# PineconeVectorIndex Tests
# =============================================================================


class TestPineconeVectorIndex:
    """Tests for PineconeVectorIndex against a mocked index handle."""

    @pytest.fixture
    def handle(self):
        handle = MagicMock()
        handle.describe_index_stats.return_value = SimpleNamespace(
            dimension=4,
            total_vector_count=2,
            namespaces={"user_a": SimpleNamespace(vector_count=2)},
        )
        return handle

    @pytest.fixture
    def index(self, handle):
        return PineconeVectorIndex(index=handle, dimensions=4)

    def test_requires_key_or_index(self):
        with pytest.raises(ConfigurationError):
            PineconeVectorIndex(api_key=None)

    def test_satisfies_protocol(self, index):
        assert isinstance(index, VectorIndex)

    @pytest.mark.asyncio
    async def test_upsert_drops_null_metadata(self, index, handle):
        await index.upsert("user_a", [
            VectorRecord(id="m1", values=[1.0, 0.0, 0.0, 0.0], metadata={"type": None, "importance": 5}),
        ])

        handle.upsert.assert_called_once_with(
            vectors=[{"id": "m1", "values": [1.0, 0.0, 0.0, 0.0], "metadata": {"importance": 5}}],
            namespace="user_a",
        )

    @pytest.mark.asyncio
    async def test_query_maps_matches(self, index, handle):
        handle.query.return_value = SimpleNamespace(matches=[
            SimpleNamespace(id="m1", score=0.93, metadata={"user_id": "a"}),
        ])

        matches = await index.query(
            "user_a", [1.0, 0.0, 0.0, 0.0], top_k=3, filter={"user_id": {"$eq": "a"}}
        )

        assert matches[0].id == "m1"
        assert matches[0].score == pytest.approx(0.93)
        kwargs = handle.query.call_args.kwargs
        assert kwargs["namespace"] == "user_a"
        assert kwargs["filter"] == {"user_id": {"$eq": "a"}}
        assert kwargs["include_metadata"] is True

    @pytest.mark.asyncio
    async def test_delete_counts_existing_ids(self, index, handle):
        handle.fetch.return_value = SimpleNamespace(vectors={"m1": object()})

        removed = await index.delete("user_a", ["m1", "missing"])

        assert removed == 1
        handle.delete.assert_called_once_with(ids=["m1"], namespace="user_a")

    @pytest.mark.asyncio
    async def test_delete_namespace_and_stats(self, index, handle):
        stats = await index.describe_index_stats()
        removed = await index.delete_namespace("user_a")
        empty = await index.delete_namespace("user_b")

        assert stats == {
            "dimension": 4,
            "total_vector_count": 2,
            "namespaces": {"user_a": {"vector_count": 2}},
        }
        assert removed == 2
        assert empty == 0
        handle.delete.assert_called_once_with(delete_all=True, namespace="user_a")
