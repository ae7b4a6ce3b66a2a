"""In-memory storage implementations.

This module provides in-memory implementations of the storage protocols.
They are intended for tests and development but are complete enough to run
the engine in a single process.

Classes:
    InMemoryMemoryRepository: Relational store of memory rows.
    InMemoryVectorIndex: Namespaced vectors with brute-force search.
    MemoryLocking: Per-key asyncio locks.

Example:
    >>> repo = InMemoryMemoryRepository()
    >>> await repo.create(memory)
    >>> rows = await repo.find("u1", MemoryQuery(min_importance=5))
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Sequence

import numpy as np

from confidant.config.schemas.memory import Memory, VectorMatch, VectorRecord
from confidant.core.exceptions import MemoryWriteError
from confidant.core.storage.filters import matches_filter, validate_filter
from confidant.core.storage.protocols import MemoryQuery

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# =============================================================================
# Memory Repository
# =============================================================================


def _matches_terms(memory: Memory, terms: Sequence[str]) -> bool:
    haystacks = [memory.content.lower(), memory.category.value]
    haystacks.extend(tag.lower() for tag in memory.tags)
    if memory.emotional_context:
        haystacks.append(memory.emotional_context.lower())
    return any(term.lower() in text for term in terms for text in haystacks)


def _matches_query(memory: Memory, query: MemoryQuery) -> bool:
    if query.visible is not None and memory.is_visible != query.visible:
        return False
    if query.min_importance is not None and memory.importance < query.min_importance:
        return False
    if query.max_importance is not None and memory.importance > query.max_importance:
        return False
    if query.categories is not None and memory.category not in query.categories:
        return False
    if query.created_before is not None and memory.created_at >= query.created_before:
        return False
    if query.terms and not _matches_terms(memory, query.terms):
        return False
    return True


def _sort_key(field: str) -> Any:
    if field == "last_accessed":
        return lambda m: m.last_accessed or _EPOCH
    return lambda m: getattr(m, field)


class InMemoryMemoryRepository:
    """Dictionary-backed relational store of memory rows.

    Rows are copied on the way in and out so callers cannot mutate stored
    state without calling ``update``.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Memory]] = {}
        self._lock = asyncio.Lock()

    async def create(self, memory: Memory) -> Memory:
        async with self._lock:
            user_rows = self._rows.setdefault(memory.user_id, {})
            if memory.id in user_rows:
                raise MemoryWriteError(
                    f"Memory {memory.id} already exists",
                    memory_id=memory.id,
                    user_id=memory.user_id,
                )
            user_rows[memory.id] = memory.model_copy(deep=True)
            return memory.model_copy(deep=True)

    async def get(self, user_id: str, memory_id: str) -> Optional[Memory]:
        async with self._lock:
            row = self._rows.get(user_id, {}).get(memory_id)
            return row.model_copy(deep=True) if row else None

    async def get_many(
        self, user_id: str, memory_ids: Sequence[str]
    ) -> dict[str, Memory]:
        async with self._lock:
            user_rows = self._rows.get(user_id, {})
            return {
                memory_id: user_rows[memory_id].model_copy(deep=True)
                for memory_id in memory_ids
                if memory_id in user_rows
            }

    async def update(self, memory: Memory) -> Memory:
        async with self._lock:
            user_rows = self._rows.get(memory.user_id, {})
            if memory.id not in user_rows:
                raise MemoryWriteError(
                    f"Memory {memory.id} does not exist",
                    memory_id=memory.id,
                    user_id=memory.user_id,
                )
            user_rows[memory.id] = memory.model_copy(deep=True)
            return memory.model_copy(deep=True)

    async def find(self, user_id: str, query: MemoryQuery) -> list[Memory]:
        async with self._lock:
            rows = [
                m for m in self._rows.get(user_id, {}).values()
                if _matches_query(m, query)
            ]
            # Stable sorts applied from the least significant key
            for field, descending in reversed(query.order_by):
                rows.sort(key=_sort_key(field), reverse=descending)
            if query.limit is not None:
                rows = rows[: query.limit]
            return [m.model_copy(deep=True) for m in rows]

    async def count(self, user_id: str, query: Optional[MemoryQuery] = None) -> int:
        query = query or MemoryQuery()
        async with self._lock:
            return sum(
                1 for m in self._rows.get(user_id, {}).values()
                if _matches_query(m, query)
            )

    async def record_access(
        self, user_id: str, memory_ids: Sequence[str], accessed_at: datetime
    ) -> int:
        async with self._lock:
            user_rows = self._rows.get(user_id, {})
            updated = 0
            for memory_id in memory_ids:
                row = user_rows.get(memory_id)
                if row is None:
                    continue
                row.access_count += 1
                if row.last_accessed is None or accessed_at > row.last_accessed:
                    row.last_accessed = accessed_at
                updated += 1
            return updated

    def clear(self) -> None:
        """Clear all rows. Synchronous for easy use in test fixtures."""
        self._rows.clear()


# =============================================================================
# Vector Index
# =============================================================================


class InMemoryVectorIndex:
    """In-memory namespaced vector index with exact cosine search.

    Vectors are normalized on write, so a dot product with a normalized
    query is the cosine similarity.

    Attributes:
        dimensions: The dimensionality of stored vectors.
    """

    def __init__(self, dimensions: int = 1536) -> None:
        """Initialize the index.

        Args:
            dimensions: The dimensionality of vectors to store.
        """
        self.dimensions = dimensions
        self._namespaces: dict[str, dict[str, tuple[np.ndarray, dict[str, Any]]]] = {}
        self._lock = asyncio.Lock()

    def _normalize(self, values: Sequence[float]) -> np.ndarray:
        vec = np.asarray(values, dtype=np.float32)
        if vec.shape != (self.dimensions,):
            raise ValueError(
                f"Vector dimensions ({vec.shape[-1] if vec.ndim else 0}) don't match index dimensions ({self.dimensions})"
            )
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return vec

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> int:
        prepared = [
            (record.id, self._normalize(record.values), dict(record.metadata))
            for record in records
        ]
        async with self._lock:
            ns = self._namespaces.setdefault(namespace, {})
            for record_id, vec, metadata in prepared:
                ns[record_id] = (vec, metadata)
            return len(prepared)

    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int = 10,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[VectorMatch]:
        validate_filter(filter)
        query_vec = self._normalize(vector)
        async with self._lock:
            ns = self._namespaces.get(namespace)
            if not ns:
                return []
            matches = [
                VectorMatch(id=record_id, score=float(np.dot(query_vec, vec)), metadata=dict(metadata))
                for record_id, (vec, metadata) in ns.items()
                if matches_filter(metadata, filter)
            ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def delete(self, namespace: str, ids: Sequence[str]) -> int:
        async with self._lock:
            ns = self._namespaces.get(namespace, {})
            removed = 0
            for record_id in ids:
                if ns.pop(record_id, None) is not None:
                    removed += 1
            return removed

    async def delete_namespace(self, namespace: str) -> int:
        async with self._lock:
            ns = self._namespaces.pop(namespace, {})
            return len(ns)

    async def describe_index_stats(self) -> dict[str, Any]:
        async with self._lock:
            namespaces = {
                name: {"vector_count": len(records)}
                for name, records in self._namespaces.items()
            }
        return {
            "dimension": self.dimensions,
            "total_vector_count": sum(n["vector_count"] for n in namespaces.values()),
            "namespaces": namespaces,
        }

    def clear(self) -> None:
        """Clear all namespaces. Synchronous for easy use in test fixtures."""
        self._namespaces.clear()


# =============================================================================
# Memory Locking
# =============================================================================


class MemoryLocking:
    """In-memory locking using asyncio locks.

    Locks are only valid within the same process and are not distributed.
    A key's lock is dropped once nobody holds or waits for it.

    Example:
        >>> locking = MemoryLocking()
        >>> async with locking.lock("user_42"):
        ...     # Critical section
        ...     pass
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}
        self._global_lock = asyncio.Lock()

    @property
    def active_keys(self) -> int:
        """Number of keys with a holder or waiter."""
        return len(self._locks)

    async def _get_or_create_lock(self, key: str) -> asyncio.Lock:
        async with self._global_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return self._locks[key]

    async def _release_lock_ref(self, key: str) -> None:
        async with self._global_lock:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @asynccontextmanager
    async def lock(self, key: str, timeout: float = 30.0) -> AsyncIterator[None]:
        """Acquire a lock on key.

        Args:
            key: The unique key identifying the resource to lock.
            timeout: Maximum time in seconds to wait for the lock.

        Yields:
            Nothing. The lock is held while in the context.

        Raises:
            asyncio.TimeoutError: If the lock cannot be acquired within the timeout.
        """
        lock = await self._get_or_create_lock(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            await self._release_lock_ref(key)

    async def is_locked(self, key: str) -> bool:
        """Check if a key is currently locked."""
        async with self._global_lock:
            lock = self._locks.get(key)
            return lock is not None and lock.locked()


__all__ = [
    "InMemoryMemoryRepository",
    "InMemoryVectorIndex",
    "MemoryLocking",
]
