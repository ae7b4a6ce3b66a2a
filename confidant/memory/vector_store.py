"""Vector store gateway: per-user namespaces over a vector index.

Every user's vectors live in their own namespace (``user_<id>``), so a
query can only ever see the owner's memories. Writes are embedded,
checked for near-duplicates and upserted with retries behind the
vector-store circuit breaker.

Duplicate suppression is best-effort: the duplicate check and the upsert
are separate calls, so two concurrent writes of the same fact can both
land. Setting ``vector_store.serialize_writes`` holds a per-user lock
across both calls.

Example:
    >>> gateway = VectorStoreGateway(index, embeddings)
    >>> result = await gateway.store_memory(memory)
    >>> if result.is_duplicate:
    ...     print(result.existing_id, result.similarity)
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

from confidant.config.schemas.memory import (
    BatchStoreResult,
    HealthStatus,
    Memory,
    NamespaceStats,
    StoreResult,
    VectorMatch,
    VectorRecord,
    utc_now,
)
from confidant.config.settings import VectorStoreSettings
from confidant.core.exceptions import (
    ConfidantError,
    InputValidationError,
    RetryExhaustedError,
    VectorStoreError,
)
from confidant.core.reliability.circuit_breaker import CircuitBreaker
from confidant.core.reliability.registry import VECTOR_STORE
from confidant.core.reliability.retry import ExponentialBackoff, retry_with_backoff
from confidant.core.storage.memory import MemoryLocking
from confidant.core.storage.protocols import MemoryQuery, MemoryRepository, VectorIndex
from confidant.memory.embeddings import EmbeddingService

logger = logging.getLogger(__name__)


class VectorStoreGateway:
    """Namespaced, deduplicating access to the vector index.

    Attributes:
        index: Underlying vector index.
        embeddings: Embedding service used for writes.
        breaker: Circuit breaker for the vector store dependency.
        settings: Vector store settings.
        repository: Optional relational store, used for namespace stats.
    """

    def __init__(
        self,
        index: VectorIndex,
        embeddings: EmbeddingService,
        breaker: Optional[CircuitBreaker] = None,
        backoff: Optional[ExponentialBackoff] = None,
        settings: Optional[VectorStoreSettings] = None,
        repository: Optional[MemoryRepository] = None,
        locking: Optional[MemoryLocking] = None,
    ) -> None:
        self.index = index
        self.embeddings = embeddings
        self.breaker = breaker or CircuitBreaker(VECTOR_STORE)
        self.backoff = backoff or ExponentialBackoff(max_delay=10.0)
        self.settings = settings or VectorStoreSettings()
        self.repository = repository
        self._locking = locking or MemoryLocking()

    # =========================================================================
    # Namespaces
    # =========================================================================

    def namespace_for(self, user_id: str) -> str:
        """Return the namespace holding ``user_id``'s vectors.

        Raises:
            InputValidationError: If ``user_id`` is empty.
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise InputValidationError("user_id is required", field="user_id")
        return f"{self.settings.namespace_prefix}{user_id}"

    @asynccontextmanager
    async def _write_guard(self, namespace: str) -> AsyncIterator[None]:
        if not self.settings.serialize_writes:
            yield
            return
        async with self._locking.lock(namespace):
            yield

    # =========================================================================
    # Writes
    # =========================================================================

    def build_metadata(
        self, user_id: str, content: str, metadata: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """Metadata stored beside a memory vector."""
        metadata = metadata or {}
        now = utc_now().isoformat()
        return {
            "content": content[: self.settings.metadata_content_limit],
            "user_id": user_id,
            "type": metadata.get("type"),
            "importance": metadata.get("importance", 5),
            "category": metadata.get("category"),
            "created_at": metadata.get("created_at", now),
            "last_accessed": now,
            "access_count": 0,
        }

    async def store(
        self,
        user_id: str,
        memory_id: str,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> StoreResult:
        """Embed and store one memory unless a near-duplicate exists.

        Args:
            user_id: Owner of the memory.
            memory_id: Memory id, reused as the vector id.
            content: Memory text.
            metadata: ``type``, ``importance``, ``category`` and
                ``created_at`` of the memory.

        Returns:
            The outcome. A skipped duplicate is a success with
            ``is_duplicate`` set. Failures are reported, not raised.
        """
        if not isinstance(memory_id, str) or not memory_id.strip():
            return StoreResult(success=False, memory_id=str(memory_id or ""), error="memory_id is required")
        if not isinstance(content, str) or not content.strip():
            return StoreResult(success=False, memory_id=memory_id, error="content is required")
        try:
            namespace = self.namespace_for(user_id)
        except InputValidationError as e:
            return StoreResult(success=False, memory_id=memory_id, error=e.message)

        async with self._write_guard(namespace):
            try:
                vector = await self.embeddings.embed(content)
            except ConfidantError as e:
                logger.warning(f"[VectorStore] Embedding failed for memory {memory_id}: {e}")
                return StoreResult(success=False, memory_id=memory_id, error=str(e))

            duplicate = await self._find_duplicate(namespace, vector, user_id, memory_id)
            if duplicate is not None:
                logger.info(
                    f"[VectorStore] Memory {memory_id} duplicates {duplicate.id} "
                    f"(similarity {duplicate.score:.3f}), skipping"
                )
                return StoreResult(
                    success=True,
                    memory_id=memory_id,
                    is_duplicate=True,
                    existing_id=duplicate.id,
                    similarity=duplicate.score,
                )

            record = VectorRecord(
                id=memory_id,
                values=vector,
                metadata=self.build_metadata(user_id, content, metadata),
            )
            try:
                await self._upsert(namespace, record)
            except Exception as e:
                logger.error(f"[VectorStore] Failed to store memory {memory_id}: {e}")
                return StoreResult(success=False, memory_id=memory_id, error=str(e))

        logger.debug(f"[VectorStore] Stored memory {memory_id} in {namespace}")
        return StoreResult(success=True, memory_id=memory_id, vector_id=memory_id)

    async def store_memory(self, memory: Memory) -> StoreResult:
        """Store a memory row's vector."""
        return await self.store(
            memory.user_id,
            memory.id,
            memory.content,
            {
                "type": memory.type.value,
                "importance": memory.importance,
                "category": memory.category.value,
                "created_at": memory.created_at.isoformat(),
            },
        )

    async def store_batch(
        self,
        memories: Sequence[Memory],
        batch_size: Optional[int] = None,
    ) -> BatchStoreResult:
        """Store many memories, concurrently within each batch.

        Args:
            memories: Memory rows to vectorize.
            batch_size: Memories per batch; defaults to settings.

        Returns:
            Counts of stored, duplicate and failed items with per-item results.
        """
        size = batch_size or self.settings.batch_size
        summary = BatchStoreResult()

        for start in range(0, len(memories), size):
            batch = memories[start:start + size]
            results = await asyncio.gather(*(self.store_memory(m) for m in batch))
            for result in results:
                summary.results.append(result)
                if not result.success:
                    summary.failed += 1
                    summary.errors.append(f"{result.memory_id}: {result.error}")
                elif result.is_duplicate:
                    summary.duplicates += 1
                else:
                    summary.stored += 1
            if start + size < len(memories) and self.settings.batch_delay > 0:
                await asyncio.sleep(self.settings.batch_delay)

        logger.info(
            f"[VectorStore] Batch store: {summary.stored} stored, "
            f"{summary.duplicates} duplicates, {summary.failed} failed"
        )
        return summary

    async def _upsert(self, namespace: str, record: VectorRecord) -> None:
        async def attempt() -> int:
            return await retry_with_backoff(
                lambda: self.index.upsert(namespace, [record]),
                max_attempts=self.settings.upsert_attempts,
                backoff=self.backoff,
                operation_name="vector_upsert",
            )

        try:
            await self.breaker.execute(attempt)
        except RetryExhaustedError as e:
            raise VectorStoreError(
                f"Upsert failed after {e.attempts} attempts: {e.last_error}"
            ) from e

    async def _find_duplicate(
        self,
        namespace: str,
        vector: Sequence[float],
        user_id: str,
        memory_id: str,
    ) -> Optional[VectorMatch]:
        try:
            matches = await self.breaker.execute(
                lambda: self.index.query(
                    namespace,
                    vector,
                    top_k=self.settings.duplicate_top_k,
                    filter={"user_id": {"$eq": user_id}},
                )
            )
        except Exception as e:
            logger.warning(f"[VectorStore] Duplicate check failed, storing anyway: {e}")
            return None

        for match in matches:
            # Re-storing the same memory is an overwrite, not a duplicate
            if match.id == memory_id or match.score < self.settings.duplicate_threshold:
                continue
            if await self._is_orphan(user_id, match.id):
                logger.info(
                    f"[VectorStore] Vector {match.id} has no visible memory, removing it"
                )
                await self._delete_in(namespace, match.id)
                continue
            return match
        return None

    async def _is_orphan(self, user_id: str, vector_id: str) -> bool:
        # A vector whose row is gone or hidden outlived a failed delete
        if self.repository is None:
            return False
        try:
            memory = await self.repository.get(user_id, vector_id)
        except Exception as e:
            logger.warning(f"[VectorStore] Could not look up memory {vector_id}: {e}")
            return False
        return memory is None or not memory.is_visible

    async def _delete_in(self, namespace: str, vector_id: str) -> None:
        try:
            await self.breaker.execute(lambda: self.index.delete(namespace, [vector_id]))
        except Exception as e:
            logger.warning(f"[VectorStore] Failed to delete orphan vector {vector_id}: {e}")

    # =========================================================================
    # Reads and Deletes
    # =========================================================================

    async def query(
        self,
        user_id: str,
        vector: Sequence[float],
        top_k: int = 10,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours in ``user_id``'s namespace.

        Raises:
            CircuitOpenError: If the vector store circuit is open.
            Exception: The index's error on failure.
        """
        namespace = self.namespace_for(user_id)
        return await self.breaker.execute(
            lambda: self.index.query(namespace, vector, top_k=top_k, filter=filter)
        )

    async def delete(self, user_id: str, memory_id: str) -> bool:
        """Delete one vector; failures are logged and reported as False."""
        try:
            namespace = self.namespace_for(user_id)
            removed = await self.breaker.execute(
                lambda: self.index.delete(namespace, [memory_id])
            )
            return removed > 0
        except Exception as e:
            logger.warning(f"[VectorStore] Failed to delete vector {memory_id}: {e}")
            return False

    async def delete_namespace(self, user_id: str) -> int:
        """Delete every vector of ``user_id``.

        Returns:
            Number of vectors removed.

        Raises:
            VectorStoreError: If the index could not delete the namespace.
        """
        namespace = self.namespace_for(user_id)
        try:
            removed = await self.breaker.execute(
                lambda: self.index.delete_namespace(namespace)
            )
        except Exception as e:
            raise VectorStoreError(
                f"Failed to delete namespace {namespace}: {e}",
                context={"namespace": namespace},
            ) from e
        logger.info(f"[VectorStore] Deleted namespace {namespace} ({removed} vectors)")
        return removed

    async def namespace_stats(self, user_id: str) -> NamespaceStats:
        """Vector count of the user's namespace and visible memory count."""
        namespace = self.namespace_for(user_id)
        stats = await self.index.describe_index_stats()
        vector_count = stats.get("namespaces", {}).get(namespace, {}).get("vector_count", 0)
        memory_count = 0
        if self.repository is not None:
            memory_count = await self.repository.count(user_id, MemoryQuery(visible=True))
        return NamespaceStats(
            user_id=user_id,
            namespace=namespace,
            vector_count=vector_count,
            memory_count=memory_count,
        )

    async def verify_isolation(self, user_id: str) -> bool:
        """True if the user's namespace holds no vectors owned by anyone else."""
        namespace = self.namespace_for(user_id)
        probe = [1.0] * self.embeddings.dimensions
        foreign = await self.index.query(
            namespace, probe, top_k=1, filter={"user_id": {"$ne": user_id}}
        )
        if foreign:
            logger.error(f"[VectorStore] Namespace {namespace} contains foreign vectors")
        return not foreign

    async def health_check(self) -> HealthStatus:
        """Probe the index with a stats call and time it."""
        started = time.perf_counter()
        try:
            stats = await self.index.describe_index_stats()
        except Exception as e:
            elapsed = (time.perf_counter() - started) * 1000
            logger.warning(f"[VectorStore] Health check failed: {e}")
            return HealthStatus(
                available=False,
                response_time_ms=elapsed,
                error=str(e),
                details={"circuit": self.breaker.state.value},
            )
        elapsed = (time.perf_counter() - started) * 1000
        return HealthStatus(
            available=True,
            response_time_ms=elapsed,
            details={
                "circuit": self.breaker.state.value,
                "dimension": stats.get("dimension"),
                "total_vector_count": stats.get("total_vector_count", 0),
            },
        )


__all__ = ["VectorStoreGateway"]
