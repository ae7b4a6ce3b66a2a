"""Storage protocols for the Confidant memory engine.

This module defines the interfaces the engine consumes. The relational store
holding canonical memory rows and the vector index holding their embeddings
are both external collaborators; the engine only talks to them through these
protocols.

Protocols:
    MemoryRepository: Canonical memory rows (the source of truth).
    VectorIndex: Namespaced vector storage with metadata filtering.

Classes:
    MemoryQuery: Declarative query over a user's memory rows.

Example:
    >>> async def count_visible(repo: MemoryRepository, user_id: str) -> int:
    ...     return await repo.count(user_id, MemoryQuery(visible=True))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from confidant.config.schemas.memory import (
    Memory,
    MemoryCategory,
    VectorMatch,
    VectorRecord,
)


# =============================================================================
# Query Object
# =============================================================================


ORDER_FIELDS = {"importance", "access_count", "last_accessed", "created_at"}


@dataclass
class MemoryQuery:
    """Filter, ordering and limit for a memory row lookup.

    Attributes:
        visible: Only rows with this visibility; None matches both.
        min_importance: Importance lower bound (inclusive).
        max_importance: Importance upper bound (inclusive).
        categories: Restrict to these categories.
        created_before: Only rows created strictly before this instant.
        terms: Case-insensitive terms OR-matched against content, tags,
            category and emotional context.
        order_by: (field, descending) pairs applied in order. Missing
            ``last_accessed`` values sort as oldest.
        limit: Maximum rows returned; None for no limit.
    """

    visible: Optional[bool] = True
    min_importance: Optional[int] = None
    max_importance: Optional[int] = None
    categories: Optional[Sequence[MemoryCategory]] = None
    created_before: Optional[datetime] = None
    terms: Optional[Sequence[str]] = None
    order_by: list[tuple[str, bool]] = field(default_factory=list)
    limit: Optional[int] = None

    def __post_init__(self) -> None:
        for name, _ in self.order_by:
            if name not in ORDER_FIELDS:
                raise ValueError(
                    f"Cannot order by '{name}'. Must be one of: {', '.join(sorted(ORDER_FIELDS))}"
                )


# =============================================================================
# Memory Repository Protocol
# =============================================================================


@runtime_checkable
class MemoryRepository(Protocol):
    """Protocol for the relational store of canonical memory rows.

    Every method is scoped to a single user; implementations must never
    return rows owned by another user.

    Methods:
        create: Insert a new row.
        get: Fetch one row by id.
        get_many: Fetch several rows by id.
        update: Replace a row.
        find: Query rows.
        count: Count rows.
        record_access: Bump access telemetry.
    """

    async def create(self, memory: Memory) -> Memory:
        """Insert a new memory row.

        Args:
            memory: Row to insert.

        Returns:
            The stored row.

        Raises:
            MemoryWriteError: If the row cannot be written.
        """
        ...

    async def get(self, user_id: str, memory_id: str) -> Optional[Memory]:
        """Fetch a row owned by ``user_id``, or None."""
        ...

    async def get_many(
        self, user_id: str, memory_ids: Sequence[str]
    ) -> dict[str, Memory]:
        """Fetch rows owned by ``user_id`` keyed by id; unknown ids are omitted."""
        ...

    async def update(self, memory: Memory) -> Memory:
        """Persist changes to an existing row.

        Raises:
            MemoryWriteError: If the row does not exist or cannot be written.
        """
        ...

    async def find(self, user_id: str, query: MemoryQuery) -> list[Memory]:
        """Return rows of ``user_id`` matching ``query``."""
        ...

    async def count(self, user_id: str, query: Optional[MemoryQuery] = None) -> int:
        """Count rows of ``user_id`` matching ``query`` (visible rows by default)."""
        ...

    async def record_access(
        self, user_id: str, memory_ids: Sequence[str], accessed_at: datetime
    ) -> int:
        """Increment ``access_count`` and set ``last_accessed`` on rows.

        Returns:
            Number of rows updated.
        """
        ...


# =============================================================================
# Vector Index Protocol
# =============================================================================


@runtime_checkable
class VectorIndex(Protocol):
    """Protocol for namespaced vector storage and similarity search.

    Scores are cosine similarities in [-1, 1]. Metadata filters support
    ``{"field": value}`` equality and ``{"field": {"$eq"|"$gte"|"$lte"|"$in": ...}}``.

    Methods:
        upsert: Insert or replace records in a namespace.
        query: Nearest neighbours of a vector in a namespace.
        delete: Remove records by id.
        delete_namespace: Remove every record of a namespace.
        describe_index_stats: Dimensions and per-namespace counts.
    """

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> int:
        """Insert or replace ``records``; returns the number written."""
        ...

    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int = 10,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[VectorMatch]:
        """Return up to ``top_k`` matches sorted by descending score."""
        ...

    async def delete(self, namespace: str, ids: Sequence[str]) -> int:
        """Delete records by id; returns the number removed."""
        ...

    async def delete_namespace(self, namespace: str) -> int:
        """Delete a whole namespace; returns the number of records removed."""
        ...

    async def describe_index_stats(self) -> dict[str, Any]:
        """Return ``{"dimension": int, "total_vector_count": int, "namespaces": {name: {"vector_count": int}}}``."""
        ...


__all__ = [
    "ORDER_FIELDS",
    "MemoryQuery",
    "MemoryRepository",
    "VectorIndex",
]
