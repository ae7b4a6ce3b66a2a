"""Memory retrieval with graceful degradation.

Search tries progressively cheaper strategies until one produces results:

1. Vector search: embed the query and search the user's namespace,
   skipped outright while the embedding or vector-store circuit is open.
   Hits are cross-checked against the relational store so hidden or
   deleted memories never surface.
2. Keyword search: OR-match query terms against the relational store.
3. Most important recent: the user's most important memories, served from
   a warm per-user cache.

Every returned memory gets its access telemetry bumped in the background.
A search never raises; total failure yields an empty list.

Classes:
    MemoryCache: Per-user TTL cache of prefetched memories.
    RetrievalEngine: The search entry point.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Callable, Optional, Sequence

from confidant.config.schemas.memory import (
    Memory,
    MemoryCategory,
    RetrievalSource,
    SearchedMemory,
    SearchOptions,
    utc_now,
)
from confidant.config.settings import RetrievalSettings
from confidant.core.storage.protocols import MemoryQuery, MemoryRepository
from confidant.core.tasks import BackgroundTaskRunner
from confidant.memory.embeddings import EmbeddingService
from confidant.memory.vector_store import VectorStoreGateway

logger = logging.getLogger(__name__)

KEYWORD_SCORE = 0.5
RECENT_SCORE = 0.3
CATEGORY_SCORE = 1.0

_TERM_RE = re.compile(r"[\w']+")


def extract_terms(query: str, max_terms: int = 5, min_length: int = 3) -> list[str]:
    """Lowercase search terms of at least ``min_length`` characters, first ``max_terms``."""
    terms = [t for t in _TERM_RE.findall(query.lower()) if len(t) >= min_length]
    return terms[:max_terms]


# =============================================================================
# Cache
# =============================================================================


class MemoryCache:
    """Per-user TTL cache of prefetched memories."""

    def __init__(
        self,
        ttl: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, list[Memory]]] = {}

    def get(self, user_id: str) -> Optional[list[Memory]]:
        """Cached memories of ``user_id``, or None if missing or expired."""
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        expires_at, memories = entry
        if self._clock() >= expires_at:
            del self._entries[user_id]
            return None
        return list(memories)

    def set(self, user_id: str, memories: Sequence[Memory]) -> None:
        self._entries[user_id] = (self._clock() + self.ttl, list(memories))

    def invalidate(self, user_id: str) -> bool:
        """Drop ``user_id``'s entry; True if one existed."""
        return self._entries.pop(user_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Retrieval Engine
# =============================================================================


class RetrievalEngine:
    """Searches a user's memories, degrading from vector to keyword to recent.

    Attributes:
        repository: Relational store of memory rows.
        gateway: Vector store gateway.
        embeddings: Embedding service for queries.
        settings: Retrieval settings.
        cache: Warm cache of prefetched memories.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        gateway: VectorStoreGateway,
        embeddings: EmbeddingService,
        settings: Optional[RetrievalSettings] = None,
        task_runner: Optional[BackgroundTaskRunner] = None,
        cache: Optional[MemoryCache] = None,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.embeddings = embeddings
        self.settings = settings or RetrievalSettings()
        self.tasks = task_runner or BackgroundTaskRunner("retrieval")
        self.cache = cache or MemoryCache(ttl=self.settings.cache_ttl)

    def default_options(self) -> SearchOptions:
        return SearchOptions(
            limit=self.settings.limit,
            min_importance=self.settings.min_importance,
            min_score=self.settings.min_score,
        )

    async def search(
        self,
        user_id: str,
        query: str,
        options: Optional[SearchOptions] = None,
    ) -> list[SearchedMemory]:
        """Find the memories most relevant to ``query``.

        Args:
            user_id: Owner whose memories are searched.
            query: Usually the user's latest message.
            options: Limit, importance floor, score floor and categories.

        Returns:
            Ranked results, possibly empty. Never raises.
        """
        if not user_id or not isinstance(query, str) or not query.strip():
            return []
        options = options or self.default_options()

        try:
            results: list[SearchedMemory] = []
            if self._vector_path_open():
                logger.info("[Retrieval] Vector path circuit open, using fallback search")
            else:
                results = await self._vector_search(user_id, query, options)

            if not results:
                results = await self._fallback_search(user_id, query, options)

            self._schedule_access_update(user_id, results)
            return results
        except Exception as e:
            logger.error(f"[Retrieval] Search failed for user {user_id}: {e}", exc_info=True)
            return []

    def _vector_path_open(self) -> bool:
        return self.embeddings.breaker.is_open or self.gateway.breaker.is_open

    async def _vector_search(
        self, user_id: str, query: str, options: SearchOptions
    ) -> list[SearchedMemory]:
        filter: dict = {
            "user_id": {"$eq": user_id},
            "importance": {"$gte": options.min_importance},
        }
        if options.categories:
            filter["category"] = {"$in": [c.value for c in options.categories]}
        top_k = min(options.limit * 2, self.settings.max_top_k)

        try:
            vector = await self.embeddings.embed(query)
            matches = await self.gateway.query(user_id, vector, top_k=top_k, filter=filter)
        except Exception as e:
            logger.warning(f"[Retrieval] Vector search failed, falling back: {e}")
            return []

        matches = sorted(
            (m for m in matches if m.score >= options.min_score),
            key=lambda m: m.score,
            reverse=True,
        )
        if not matches:
            return []

        rows = await self.repository.get_many(user_id, [m.id for m in matches])
        results: list[SearchedMemory] = []
        for match in matches:
            memory = rows.get(match.id)
            if memory is None or not memory.is_visible:
                continue
            if memory.importance < options.min_importance:
                continue
            if options.categories and memory.category not in options.categories:
                continue
            results.append(SearchedMemory.from_memory(memory, match.score, RetrievalSource.VECTOR))
            if len(results) >= options.limit:
                break

        logger.debug(f"[Retrieval] Vector search returned {len(results)} memories")
        return results

    async def _fallback_search(
        self, user_id: str, query: str, options: SearchOptions
    ) -> list[SearchedMemory]:
        terms = extract_terms(
            query, self.settings.max_query_terms, self.settings.min_term_length
        )
        if not terms:
            return await self._recent_memories(user_id, options)

        rows = await self.repository.find(
            user_id,
            MemoryQuery(
                visible=True,
                min_importance=options.min_importance,
                categories=options.categories,
                terms=terms,
                order_by=[("importance", True), ("last_accessed", True), ("created_at", True)],
                limit=options.limit,
            ),
        )
        logger.debug(f"[Retrieval] Keyword search for {terms} returned {len(rows)} memories")
        return [SearchedMemory.from_memory(m, KEYWORD_SCORE, RetrievalSource.KEYWORD) for m in rows]

    async def _recent_memories(
        self, user_id: str, options: SearchOptions
    ) -> list[SearchedMemory]:
        memories = self.cache.get(user_id)
        if memories is None:
            memories = await self.prefetch_user_memories(user_id)

        floor = max(options.min_importance, self.settings.recent_min_importance)
        limit = min(options.limit, self.settings.recent_limit)
        selected = [
            m for m in memories
            if m.importance >= floor
            and (not options.categories or m.category in options.categories)
        ][:limit]
        return [SearchedMemory.from_memory(m, RECENT_SCORE, RetrievalSource.RECENT) for m in selected]

    # =========================================================================
    # Access Telemetry
    # =========================================================================

    def _schedule_access_update(self, user_id: str, results: Sequence[SearchedMemory]) -> None:
        if not results:
            return
        ids = [r.id for r in results]
        self.tasks.spawn(self._record_access(user_id, ids), name=f"record_access:{user_id}")

    async def _record_access(self, user_id: str, memory_ids: list[str]) -> None:
        try:
            updated = await self.repository.record_access(user_id, memory_ids, utc_now())
            logger.debug(f"[Retrieval] Recorded access for {updated} memories")
        except Exception as e:
            logger.warning(f"[Retrieval] Failed to record memory access: {e}")

    # =========================================================================
    # Cache and Direct Listings
    # =========================================================================

    async def prefetch_user_memories(self, user_id: str) -> list[Memory]:
        """Load and cache the user's most important memories."""
        memories = await self.repository.find(
            user_id,
            MemoryQuery(
                visible=True,
                min_importance=self.settings.prefetch_min_importance,
                order_by=[("importance", True), ("access_count", True), ("created_at", True)],
                limit=self.settings.prefetch_limit,
            ),
        )
        self.cache.set(user_id, memories)
        logger.debug(f"[Retrieval] Prefetched {len(memories)} memories for user {user_id}")
        return memories

    def get_cached_memories(self, user_id: str) -> Optional[list[Memory]]:
        return self.cache.get(user_id)

    def invalidate_cache(self, user_id: str) -> None:
        """Forget the prefetched memories of ``user_id``."""
        if self.cache.invalidate(user_id):
            logger.debug(f"[Retrieval] Invalidated cache for user {user_id}")

    async def search_by_category(
        self,
        user_id: str,
        category: MemoryCategory,
        limit: int = 10,
    ) -> list[SearchedMemory]:
        """List a user's visible memories in one category, most important first."""
        try:
            rows = await self.repository.find(
                user_id,
                MemoryQuery(
                    visible=True,
                    categories=[category],
                    order_by=[("importance", True), ("created_at", True)],
                    limit=limit,
                ),
            )
        except Exception as e:
            logger.error(f"[Retrieval] Category search failed for user {user_id}: {e}")
            return []
        results = [SearchedMemory.from_memory(m, CATEGORY_SCORE, RetrievalSource.CATEGORY) for m in rows]
        self._schedule_access_update(user_id, results)
        return results

    async def search_optimized(
        self,
        user_id: str,
        query: str,
        options: Optional[SearchOptions] = None,
    ) -> list[SearchedMemory]:
        """Search, warming the user's cache concurrently when it is cold."""
        if self.cache.get(user_id) is not None:
            return await self.search(user_id, query, options)

        results, prefetched = await asyncio.gather(
            self.search(user_id, query, options),
            self.prefetch_user_memories(user_id),
            return_exceptions=True,
        )
        if isinstance(prefetched, BaseException):
            logger.warning(f"[Retrieval] Prefetch failed for user {user_id}: {prefetched}")
        if isinstance(results, BaseException):
            logger.error(f"[Retrieval] Optimized search failed for user {user_id}: {results}")
            return []
        return results


__all__ = [
    "KEYWORD_SCORE",
    "RECENT_SCORE",
    "CATEGORY_SCORE",
    "extract_terms",
    "MemoryCache",
    "RetrievalEngine",
]
