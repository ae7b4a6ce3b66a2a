"""Memory schemas for the Confidant memory engine.

This module defines the Pydantic models shared by every component: the
canonical memory row, extraction candidates, search options and results,
vector records, and the reports produced by storage, retrieval and
lifecycle operations.

Classes:
    MemoryType: What kind of fact a memory records
    MemoryCategory: Coarse grouping used for filtering
    Memory: Canonical memory row owned by the relational store
    ExtractedMemory: Validated candidate proposed from a chat turn
    SearchOptions: Retrieval parameters
    SearchedMemory: Ranked retrieval result
    VectorRecord / VectorMatch: Vector index payloads
    StoreResult / BatchStoreResult: Vector store outcomes
    HealthStatus / NamespaceStats: Vector store introspection
    MemoryStats / LimitCheckResult / MemoryConflict / ConflictReport /
    OptimizationResult / MaintenanceReport: Lifecycle reports
    PipelineResult: Outcome of one background extract-and-store run
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def generate_uuid() -> str:
    """Generate a UUID4 hex string for use as an identifier.

    Returns:
        A 32-character hex string UUID.
    """
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Get the current UTC datetime.

    Returns:
        Current datetime with UTC timezone.
    """
    return datetime.now(timezone.utc)


MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10


# =============================================================================
# Enumerations
# =============================================================================


class MemoryType(str, Enum):
    """Kind of fact a memory records."""

    PERSONALITY_TRAIT = "PERSONALITY_TRAIT"
    PREFERENCE = "PREFERENCE"
    LIFE_EVENT = "LIFE_EVENT"
    RELATIONSHIP_DYNAMIC = "RELATIONSHIP_DYNAMIC"
    EMOTIONAL_STATE = "EMOTIONAL_STATE"
    GOAL = "GOAL"
    FEAR = "FEAR"
    INTEREST = "INTEREST"
    BEHAVIORAL_PATTERN = "BEHAVIORAL_PATTERN"


class MemoryCategory(str, Enum):
    """Coarse grouping of memories used as a retrieval filter."""

    PERSONALITY = "personality"
    PREFERENCE = "preference"
    RELATIONSHIP = "relationship"
    LIFE_EVENT = "life_event"
    EMOTIONAL = "emotional"
    GOAL = "goal"


class RetrievalSource(str, Enum):
    """Which retrieval path produced a result.

    Attributes:
        VECTOR: Semantic search over the user's namespace
        KEYWORD: Relational keyword fallback
        RECENT: Most important recent memories
        CATEGORY: Direct category listing
    """

    VECTOR = "vector"
    KEYWORD = "keyword"
    RECENT = "recent"
    CATEGORY = "category"


IMPORTANCE_BUCKETS: dict[str, tuple[int, int]] = {
    "minor": (1, 3),
    "moderate": (4, 6),
    "important": (7, 8),
    "life_changing": (9, 10),
}


def importance_bucket(importance: int) -> str:
    """Map an importance score to its named bucket.

    Args:
        importance: Score in [1, 10].

    Returns:
        One of 'minor', 'moderate', 'important', 'life_changing'.
    """
    for name, (low, high) in IMPORTANCE_BUCKETS.items():
        if low <= importance <= high:
            return name
    raise ValueError(f"importance {importance} outside [1, 10]")


# =============================================================================
# Memory Models
# =============================================================================


class Memory(BaseModel):
    """Canonical memory row.

    The relational store owns memory rows; the vector index only holds a
    denormalized copy keyed by the same id. Hidden rows (``is_visible``
    False) are soft-deleted and never returned by retrieval or statistics.

    Attributes:
        id: Unique identifier, immutable
        user_id: Owner and isolation boundary
        content: Trimmed, non-empty memory text
        type: Kind of fact
        category: Coarse grouping
        importance: Score in [1, 10]
        tags: Short labels
        emotional_context: Optional emotional framing
        vector_id: Vector index id, None until the vector is stored
        access_count: Number of times retrieved
        last_accessed: When last retrieved
        is_visible: Soft-delete flag
        created_at: UTC creation timestamp

    Example:
        ```python
        memory = Memory(
            user_id="u1",
            content="User is a teacher",
            type=MemoryType.LIFE_EVENT,
            category=MemoryCategory.LIFE_EVENT,
            importance=7,
        )
        ```
    """

    id: str = Field(default_factory=generate_uuid)
    user_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    type: MemoryType
    category: MemoryCategory
    importance: int = Field(default=5, ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)
    tags: list[str] = Field(default_factory=list)
    emotional_context: Optional[str] = None
    vector_id: Optional[str] = None
    access_count: int = Field(default=0, ge=0)
    last_accessed: Optional[datetime] = None
    is_visible: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Strip content and reject whitespace-only text."""
        v = v.strip()
        if not v:
            raise ValueError("content cannot be empty")
        return v


class ExtractedMemory(BaseModel):
    """A validated memory candidate proposed from a chat turn.

    Attributes:
        content: Memory text (at least 10 characters)
        type: Kind of fact
        category: Coarse grouping
        importance: Score in [1, 10], already clamped
        tags: Up to five short labels
        emotional_context: Optional emotional framing
    """

    content: str
    type: MemoryType
    category: MemoryCategory
    importance: int = Field(default=5, ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)
    tags: list[str] = Field(default_factory=list)
    emotional_context: Optional[str] = None

    def to_memory(self, user_id: str) -> Memory:
        """Build a new memory row for ``user_id`` from this candidate."""
        return Memory(
            user_id=user_id,
            content=self.content,
            type=self.type,
            category=self.category,
            importance=self.importance,
            tags=list(self.tags),
            emotional_context=self.emotional_context,
        )


# =============================================================================
# Retrieval Models
# =============================================================================


class SearchOptions(BaseModel):
    """Parameters for a memory search.

    Attributes:
        limit: Maximum results
        min_importance: Importance floor
        min_score: Similarity floor for vector results
        categories: Restrict to these categories; None means all
    """

    limit: int = Field(default=15, ge=1)
    min_importance: int = Field(default=3, ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)
    min_score: float = Field(default=0.7, ge=-1.0, le=1.0)
    categories: Optional[list[MemoryCategory]] = None


class SearchedMemory(BaseModel):
    """A memory returned by retrieval with its relevance score.

    Attributes:
        id: Memory id
        content: Memory text
        type: Kind of fact
        category: Coarse grouping
        importance: Score in [1, 10]
        tags: Short labels
        emotional_context: Optional emotional framing
        created_at: Creation timestamp
        access_count: Accesses at retrieval time
        score: Relevance score (similarity, or a fixed score per fallback)
        source: Retrieval path that produced the result
    """

    id: str
    content: str
    type: MemoryType
    category: MemoryCategory
    importance: int
    tags: list[str] = Field(default_factory=list)
    emotional_context: Optional[str] = None
    created_at: datetime
    access_count: int = 0
    score: float
    source: RetrievalSource

    @classmethod
    def from_memory(
        cls, memory: Memory, score: float, source: RetrievalSource
    ) -> "SearchedMemory":
        """Build a result from a memory row."""
        return cls(
            id=memory.id,
            content=memory.content,
            type=memory.type,
            category=memory.category,
            importance=memory.importance,
            tags=list(memory.tags),
            emotional_context=memory.emotional_context,
            created_at=memory.created_at,
            access_count=memory.access_count,
            score=score,
            source=source,
        )


# =============================================================================
# Vector Store Models
# =============================================================================


class VectorRecord(BaseModel):
    """A vector and its metadata as written to the index."""

    id: str
    values: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)


class VectorMatch(BaseModel):
    """A query hit from the vector index."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class StoreResult(BaseModel):
    """Outcome of storing one memory vector.

    Attributes:
        success: Whether the call completed without error (a skipped
            duplicate counts as success)
        memory_id: Memory the call was for
        vector_id: Id written to the index; None when nothing was written
        is_duplicate: A near-identical vector already existed
        existing_id: Id of the existing near-duplicate
        similarity: Similarity to the existing near-duplicate
        error: Failure description when success is False
    """

    success: bool
    memory_id: str
    vector_id: Optional[str] = None
    is_duplicate: bool = False
    existing_id: Optional[str] = None
    similarity: Optional[float] = None
    error: Optional[str] = None


class BatchStoreResult(BaseModel):
    """Aggregate outcome of a batch store."""

    stored: int = 0
    duplicates: int = 0
    failed: int = 0
    results: list[StoreResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class HealthStatus(BaseModel):
    """Availability of a dependency.

    Attributes:
        available: Whether the dependency answered
        response_time_ms: Round trip of the probe in milliseconds
        error: Failure description when unavailable
        details: Provider specific information (e.g. index stats)
    """

    available: bool
    response_time_ms: float = 0.0
    error: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class NamespaceStats(BaseModel):
    """Vector and relational counts for one user's namespace."""

    user_id: str
    namespace: str
    vector_count: int = 0
    memory_count: int = 0


# =============================================================================
# Lifecycle Models
# =============================================================================


class MemoryStats(BaseModel):
    """Statistics over a user's visible memories."""

    total: int = 0
    by_importance: dict[str, int] = Field(
        default_factory=lambda: {name: 0 for name in IMPORTANCE_BUCKETS}
    )
    by_category: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    average_importance: float = 0.0
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None


class LimitCheckResult(BaseModel):
    """Outcome of a per-user limit check.

    Attributes:
        total: Visible memories before pruning
        limit: Configured per-user cap
        within_limits: True when below the soft limit
        action: 'none', 'soft_prune' or 'hard_prune'
        pruned: Memories hidden by this check
    """

    total: int
    limit: int
    within_limits: bool
    action: str = "none"
    pruned: int = 0


class MemoryConflict(BaseModel):
    """A pair of memories judged to say the same thing."""

    memory_id_1: str
    memory_id_2: str
    similarity: float
    hidden_id: Optional[str] = None


class ConflictReport(BaseModel):
    """Result of a conflict scan."""

    conflicts: list[MemoryConflict] = Field(default_factory=list)
    resolved: int = 0


class OptimizationResult(BaseModel):
    """Result of importance re-scoring."""

    updated: int = 0
    promoted: int = 0
    demoted: int = 0


class MaintenanceReport(BaseModel):
    """Result of a full maintenance run for one user."""

    user_id: str
    limits: LimitCheckResult
    conflicts: ConflictReport
    optimization: OptimizationResult


# =============================================================================
# Pipeline Models
# =============================================================================


class PipelineResult(BaseModel):
    """Outcome of one extract-and-store run.

    Attributes:
        user_id: Owner of the memories
        extracted: Candidates produced by extraction
        created: Memory rows created
        stored: Vectors written
        duplicates: Candidates suppressed as near-duplicates
        failed: Candidates that failed to persist or vectorize
        vector_store_available: Health of the vector store at start
        memory_ids: Ids of visible memories created by this run
    """

    user_id: str
    extracted: int = 0
    created: int = 0
    stored: int = 0
    duplicates: int = 0
    failed: int = 0
    vector_store_available: bool = True
    memory_ids: list[str] = Field(default_factory=list)


__all__ = [
    "generate_uuid",
    "utc_now",
    "MIN_IMPORTANCE",
    "MAX_IMPORTANCE",
    "IMPORTANCE_BUCKETS",
    "importance_bucket",
    "MemoryType",
    "MemoryCategory",
    "RetrievalSource",
    "Memory",
    "ExtractedMemory",
    "SearchOptions",
    "SearchedMemory",
    "VectorRecord",
    "VectorMatch",
    "StoreResult",
    "BatchStoreResult",
    "HealthStatus",
    "NamespaceStats",
    "MemoryStats",
    "LimitCheckResult",
    "MemoryConflict",
    "ConflictReport",
    "OptimizationResult",
    "MaintenanceReport",
    "PipelineResult",
]
