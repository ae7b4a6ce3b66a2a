"""Memory pipeline: the chat handler's entry point to the memory engine.

After each chat turn the handler calls :meth:`MemoryPipeline.process_turn`,
which returns immediately and runs extraction and storage as a detached
background task. Before generating a reply the handler calls
:meth:`MemoryPipeline.retrieve` for relevant memories.

Storage order per candidate: the relational row is created first (it is
the source of truth), then its vector is stored when the vector store is
available, and finally the row's ``vector_id`` is set. A candidate judged
a near-duplicate of an existing vector is hidden again so it does not
surface twice.

Example:
    >>> pipeline = build_memory_pipeline(settings, repository)
    >>> pipeline.process_turn("u1", "I'm a teacher and I love hiking", "Nice!")
    >>> memories = await pipeline.retrieve("u1", "weekend plans?")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

from confidant.config.schemas.memory import (
    ExtractedMemory,
    PipelineResult,
    SearchedMemory,
    SearchOptions,
)
from confidant.config.settings import ConfidantSettings, get_settings
from confidant.core.reliability.registry import (
    EMBEDDING,
    EXTRACTION,
    VECTOR_STORE,
    CircuitBreakerRegistry,
)
from confidant.core.storage.faiss_index import FaissVectorIndex
from confidant.core.storage.memory import InMemoryVectorIndex, MemoryLocking
from confidant.core.storage.pinecone_index import PineconeVectorIndex
from confidant.core.storage.protocols import MemoryRepository, VectorIndex
from confidant.core.tasks import BackgroundTaskRunner
from confidant.memory.embeddings import (
    EmbeddingProvider,
    EmbeddingService,
    build_embedding_provider,
)
from confidant.memory.extraction import MemoryExtractor
from confidant.memory.lifecycle import LifecycleManager
from confidant.memory.llm import AnthropicChatClient, ChatClient
from confidant.memory.retrieval import RetrievalEngine
from confidant.memory.vector_store import VectorStoreGateway

logger = logging.getLogger(__name__)


class MemoryPipeline:
    """Wires extraction, storage, retrieval and lifecycle together.

    Attributes:
        repository: Relational store of memory rows.
        extractor: Memory extractor.
        gateway: Vector store gateway.
        retrieval: Retrieval engine.
        lifecycle: Lifecycle manager.
        registry: Circuit breakers shared by all components.
        tasks: Runner for background work.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        extractor: MemoryExtractor,
        gateway: VectorStoreGateway,
        retrieval: RetrievalEngine,
        lifecycle: LifecycleManager,
        registry: CircuitBreakerRegistry,
        tasks: Optional[BackgroundTaskRunner] = None,
    ) -> None:
        self.repository = repository
        self.extractor = extractor
        self.gateway = gateway
        self.retrieval = retrieval
        self.lifecycle = lifecycle
        self.registry = registry
        self.tasks = tasks or BackgroundTaskRunner("memory")

    def process_turn(
        self,
        user_id: str,
        user_message: str,
        ai_response: str,
        context: Optional[Sequence[dict[str, Any]]] = None,
    ) -> asyncio.Task:
        """Schedule extraction and storage for a finished chat turn.

        Returns:
            The background task; callers normally do not await it.
        """
        return self.tasks.spawn(
            self.extract_and_store(user_id, user_message, ai_response, context),
            name=f"extract_and_store:{user_id}",
        )

    async def extract_and_store(
        self,
        user_id: str,
        user_message: str,
        ai_response: str,
        context: Optional[Sequence[dict[str, Any]]] = None,
    ) -> PipelineResult:
        """Extract memories from a chat turn and persist them.

        Never raises; failures are logged and counted in the result.
        """
        result = PipelineResult(user_id=user_id)
        try:
            health = await self.gateway.health_check()
            result.vector_store_available = health.available
            if not health.available:
                logger.warning(
                    f"[Pipeline] Vector store unavailable ({health.error}), storing rows only"
                )

            candidates = await self.extractor.extract(user_message, ai_response, context)
            result.extracted = len(candidates)
            if not candidates:
                return result

            outcomes = await asyncio.gather(
                *(self._persist(user_id, c, health.available) for c in candidates),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    result.failed += 1
                    logger.error(f"[Pipeline] Failed to persist memory: {outcome}")
                    continue
                status, memory_id = outcome
                if status != "row_failed":
                    result.created += 1
                if status == "stored":
                    result.stored += 1
                elif status == "duplicate":
                    result.duplicates += 1
                elif status in ("row_failed", "vector_failed"):
                    result.failed += 1
                if memory_id and status != "duplicate":
                    result.memory_ids.append(memory_id)

            if result.created:
                self.retrieval.invalidate_cache(user_id)
            logger.info(
                f"[Pipeline] User {user_id}: extracted {result.extracted}, created {result.created}, "
                f"stored {result.stored}, duplicates {result.duplicates}, failed {result.failed}"
            )
        except Exception as e:
            logger.error(f"[Pipeline] Extract-and-store failed for user {user_id}: {e}", exc_info=True)
        return result

    async def _persist(
        self, user_id: str, candidate: ExtractedMemory, vector_available: bool
    ) -> tuple[str, Optional[str]]:
        try:
            memory = await self.repository.create(candidate.to_memory(user_id))
        except Exception as e:
            logger.error(f"[Pipeline] Failed to create memory row: {e}")
            return "row_failed", None

        if not vector_available:
            return "row_only", memory.id

        stored = await self.gateway.store_memory(memory)
        if stored.is_duplicate:
            memory.is_visible = False
            await self.repository.update(memory)
            return "duplicate", memory.id
        if not stored.success:
            # Row stays visible without a vector; keyword search still finds it
            logger.warning(f"[Pipeline] Vector storage failed for {memory.id}: {stored.error}")
            return "vector_failed", memory.id

        memory.vector_id = stored.vector_id
        await self.repository.update(memory)
        return "stored", memory.id

    async def retrieve(
        self,
        user_id: str,
        query: str,
        options: Optional[SearchOptions] = None,
    ) -> list[SearchedMemory]:
        """Memories relevant to ``query``; see RetrievalEngine.search."""
        return await self.retrieval.search(user_id, query, options)

    async def forget(self, user_id: str, memory_id: str) -> bool:
        """Hide a memory and delete its vector.

        Returns:
            False if the memory does not exist or was already hidden.
        """
        memory = await self.repository.get(user_id, memory_id)
        if memory is None or not memory.is_visible:
            return False
        memory.is_visible = False
        await self.repository.update(memory)
        if memory.vector_id:
            await self.gateway.delete(user_id, memory.vector_id)
        self.retrieval.invalidate_cache(user_id)
        logger.info(f"[Pipeline] Forgot memory {memory_id} for user {user_id}")
        return True

    async def health(self) -> dict[str, Any]:
        """Circuit states, vector store health and background task counts."""
        vector_health = await self.gateway.health_check()
        return {
            "circuits": self.registry.health(),
            "open_circuits": self.registry.open_circuits(),
            "vector_store": vector_health.model_dump(),
            "background_tasks": self.tasks.stats(),
        }

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Let pending background work finish, then cancel the rest."""
        await self.tasks.drain(timeout=timeout)
        await self.tasks.shutdown()


def build_vector_index(settings: ConfidantSettings) -> VectorIndex:
    """Create the vector index named by ``settings.vector_store.backend``."""
    dimensions = settings.embedding.dimensions
    if settings.vector_store.backend == "memory":
        return InMemoryVectorIndex(dimensions=dimensions)
    if settings.vector_store.backend == "pinecone":
        return PineconeVectorIndex.from_settings(settings)
    return FaissVectorIndex(dimensions=dimensions)


def build_memory_pipeline(
    settings: Optional[ConfidantSettings] = None,
    repository: Optional[MemoryRepository] = None,
    *,
    index: Optional[VectorIndex] = None,
    embedding_provider: Optional[EmbeddingProvider] = None,
    chat_client: Optional[ChatClient] = None,
    registry: Optional[CircuitBreakerRegistry] = None,
) -> MemoryPipeline:
    """Construct every component once and wire them together.

    Args:
        settings: Engine settings; defaults to the cached settings.
        repository: Relational store. Required.
        index: Vector index; defaults to the configured backend.
        embedding_provider: Defaults to the configured provider.
        chat_client: Extraction LLM client. Defaults to Anthropic when an
            API key is configured, otherwise pattern-only extraction.
        registry: Circuit breakers; defaults to one built from settings.

    Returns:
        A ready MemoryPipeline.
    """
    if repository is None:
        raise ValueError("A MemoryRepository is required to build the memory pipeline")
    settings = settings or get_settings()
    registry = registry or CircuitBreakerRegistry.from_settings(settings)

    if chat_client is None and settings.api_keys.anthropic_api_key:
        chat_client = AnthropicChatClient.from_settings(settings)
    if chat_client is None:
        logger.warning("[Pipeline] No extraction LLM configured, using pattern extraction only")

    embeddings = EmbeddingService(
        embedding_provider or build_embedding_provider(settings),
        breaker=registry.get(EMBEDDING),
        backoff=registry.backoff,
        settings=settings.embedding,
    )
    gateway = VectorStoreGateway(
        index or build_vector_index(settings),
        embeddings,
        breaker=registry.get(VECTOR_STORE),
        backoff=registry.backoff,
        settings=settings.vector_store,
        repository=repository,
        locking=MemoryLocking(),
    )
    extractor = MemoryExtractor(
        chat_client,
        breaker=registry.get(EXTRACTION),
        backoff=registry.backoff,
        settings=settings.extraction,
    )
    tasks = BackgroundTaskRunner("memory")
    retrieval = RetrievalEngine(
        repository, gateway, embeddings, settings=settings.retrieval, task_runner=tasks
    )
    lifecycle = LifecycleManager(
        repository, gateway, settings=settings.lifecycle, on_change=retrieval.invalidate_cache
    )
    return MemoryPipeline(
        repository=repository,
        extractor=extractor,
        gateway=gateway,
        retrieval=retrieval,
        lifecycle=lifecycle,
        registry=registry,
        tasks=tasks,
    )


__all__ = ["MemoryPipeline", "build_vector_index", "build_memory_pipeline"]
