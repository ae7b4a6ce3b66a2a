"""Reliability primitives: circuit breakers, retry with backoff, registry."""

from confidant.core.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStats,
    CircuitState,
)
from confidant.core.reliability.registry import (
    EMBEDDING,
    EXTRACTION,
    VECTOR_STORE,
    CircuitBreakerRegistry,
)
from confidant.core.reliability.retry import ExponentialBackoff, retry_with_backoff

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitState",
    "CircuitBreakerRegistry",
    "EMBEDDING",
    "EXTRACTION",
    "VECTOR_STORE",
    "ExponentialBackoff",
    "retry_with_backoff",
]
