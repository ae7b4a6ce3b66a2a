"""Shared fixtures for memory engine tests."""

from datetime import timedelta
from typing import Any, Callable, Optional

import pytest

from confidant.config.schemas.memory import Memory, MemoryCategory, MemoryType, utc_now
from confidant.config.settings import (
    APIKeySettings,
    ConfidantSettings,
    EmbeddingSettings,
    ExtractionSettings,
    ReliabilitySettings,
    VectorStoreSettings,
)
from confidant.core.reliability.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from confidant.core.reliability.retry import ExponentialBackoff
from confidant.core.storage.memory import InMemoryMemoryRepository, InMemoryVectorIndex
from confidant.core.tasks import BackgroundTaskRunner
from confidant.memory.embeddings import EmbeddingService, HashingEmbeddingProvider
from confidant.memory.lifecycle import LifecycleManager
from confidant.memory.retrieval import RetrievalEngine
from confidant.memory.vector_store import VectorStoreGateway

DIMENSIONS = 64


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChatClient:
    """ChatClient returning canned replies and recording calls."""

    def __init__(self, replies: Optional[list[Any]] = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[dict[str, Any]] = []

    async def complete(self, system, user, temperature=0.1, max_tokens=800):
        self.calls.append(
            {"system": system, "user": user, "temperature": temperature, "max_tokens": max_tokens}
        )
        reply = self.replies.pop(0) if self.replies else '{"memories": []}'
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def clock():
    """A manually advanced clock."""
    return FakeClock()


@pytest.fixture
def fast_backoff():
    """Backoff with zero delays so retries do not sleep."""
    return ExponentialBackoff(initial_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def settings():
    """Settings using local providers, no API keys and no delays."""
    return ConfidantSettings(
        environment="test",
        embedding=EmbeddingSettings(provider="hashing", dimensions=DIMENSIONS, batch_delay=0.0),
        extraction=ExtractionSettings(),
        vector_store=VectorStoreSettings(backend="memory", batch_delay=0.0),
        reliability=ReliabilitySettings(
            backoff_initial_delay=0.0, backoff_max_delay=0.0, backoff_jitter=False
        ),
        api_keys=APIKeySettings(openai_api_key=None, anthropic_api_key=None),
    )


@pytest.fixture
def repository():
    """An empty in-memory memory repository."""
    return InMemoryMemoryRepository()


@pytest.fixture
def vector_index():
    """An empty in-memory vector index."""
    return InMemoryVectorIndex(dimensions=DIMENSIONS)


@pytest.fixture
def embeddings(settings, fast_backoff):
    """Embedding service over the hashing provider."""
    return EmbeddingService(
        HashingEmbeddingProvider(dimensions=DIMENSIONS),
        breaker=CircuitBreaker("embedding", CircuitBreakerConfig(failure_threshold=3)),
        backoff=fast_backoff,
        settings=settings.embedding,
    )


@pytest.fixture
def gateway(vector_index, embeddings, settings, fast_backoff, repository):
    """Vector store gateway over the in-memory index."""
    return VectorStoreGateway(
        vector_index,
        embeddings,
        breaker=CircuitBreaker("vector_store", CircuitBreakerConfig(failure_threshold=3)),
        backoff=fast_backoff,
        settings=settings.vector_store,
        repository=repository,
    )


@pytest.fixture
def task_runner():
    """Background task runner."""
    return BackgroundTaskRunner("test")


@pytest.fixture
def retrieval(repository, gateway, embeddings, settings, task_runner):
    """Retrieval engine wired to the in-memory backends."""
    return RetrievalEngine(
        repository, gateway, embeddings, settings=settings.retrieval, task_runner=task_runner
    )


@pytest.fixture
def lifecycle(repository, gateway, settings):
    """Lifecycle manager wired to the in-memory backends."""
    return LifecycleManager(repository, gateway, settings=settings.lifecycle)


@pytest.fixture
def make_memory() -> Callable[..., Memory]:
    """Factory for memory rows; ``age_days`` sets created_at in the past."""

    def _make(
        content: str = "User enjoys long walks on the beach",
        user_id: str = "user-1",
        importance: int = 5,
        type: MemoryType = MemoryType.PREFERENCE,
        category: MemoryCategory = MemoryCategory.PREFERENCE,
        age_days: float = 0,
        **kwargs: Any,
    ) -> Memory:
        return Memory(
            user_id=user_id,
            content=content,
            type=type,
            category=category,
            importance=importance,
            created_at=utc_now() - timedelta(days=age_days),
            **kwargs,
        )

    return _make
