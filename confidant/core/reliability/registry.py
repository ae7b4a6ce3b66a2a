"""Registry holding one circuit breaker per external dependency.

The registry is built once per process from settings and passed to every
component that talks to an external service, so breaker state is shared by
all callers of the same dependency.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from confidant.config.settings import CircuitSettings, ConfidantSettings
from confidant.core.exceptions import ConfigurationError
from confidant.core.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from confidant.core.reliability.retry import ExponentialBackoff

logger = logging.getLogger(__name__)

EMBEDDING = "embedding"
EXTRACTION = "extraction"
VECTOR_STORE = "vector_store"

DEPENDENCIES = (EMBEDDING, EXTRACTION, VECTOR_STORE)


def _to_config(circuit: CircuitSettings) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        failure_threshold=circuit.failure_threshold,
        recovery_timeout=circuit.recovery_timeout,
        success_threshold=circuit.success_threshold,
        monitoring_window=circuit.monitoring_window,
    )


class CircuitBreakerRegistry:
    """Named circuit breakers for the engine's dependencies.

    Example:
        >>> registry = CircuitBreakerRegistry.from_settings(settings)
        >>> await registry.get("embedding").execute(call)
    """

    def __init__(
        self,
        configs: Optional[dict[str, CircuitBreakerConfig]] = None,
        backoff: Optional[ExponentialBackoff] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the registry.

        Args:
            configs: Breaker config per dependency name. Dependencies not
                listed get CircuitBreakerConfig() defaults.
            backoff: Shared retry delay schedule
            clock: Time source handed to every breaker
        """
        configs = configs or {}
        self.backoff = backoff or ExponentialBackoff()
        self._breakers: dict[str, CircuitBreaker] = {}
        for name in set(DEPENDENCIES) | set(configs):
            self._breakers[name] = CircuitBreaker(
                name, configs.get(name), clock=clock
            )

    @classmethod
    def from_settings(
        cls,
        settings: ConfidantSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CircuitBreakerRegistry":
        """Build the registry from reliability settings."""
        reliability = settings.reliability
        backoff = ExponentialBackoff(
            initial_delay=reliability.backoff_initial_delay,
            max_delay=reliability.backoff_max_delay,
            factor=reliability.backoff_factor,
            jitter=reliability.backoff_jitter,
        )
        configs = {
            EMBEDDING: _to_config(reliability.embedding),
            EXTRACTION: _to_config(reliability.extraction),
            VECTOR_STORE: _to_config(reliability.vector_store),
        }
        return cls(configs=configs, backoff=backoff, clock=clock)

    def get(self, name: str) -> CircuitBreaker:
        """Return the breaker for ``name``.

        Raises:
            ConfigurationError: If no breaker is registered under ``name``
        """
        try:
            return self._breakers[name]
        except KeyError:
            raise ConfigurationError(
                f"No circuit breaker registered for '{name}'",
                config_key=f"reliability.{name}",
            ) from None

    def any_open(self, *names: str) -> bool:
        """True if any of the named circuits is currently rejecting calls."""
        return any(self.get(name).is_open for name in names)

    def health(self) -> dict[str, dict[str, Any]]:
        """Stats of every breaker keyed by dependency name."""
        return {
            name: breaker.stats().to_dict()
            for name, breaker in sorted(self._breakers.items())
        }

    def open_circuits(self) -> list[str]:
        """Names of breakers currently in the OPEN state."""
        return sorted(
            name
            for name, breaker in self._breakers.items()
            if breaker.state == CircuitState.OPEN
        )

    def reset_all(self) -> None:
        """Reset every breaker to CLOSED."""
        for breaker in self._breakers.values():
            breaker.reset()
        logger.info("[Circuits] All circuit breakers reset")


__all__ = [
    "EMBEDDING",
    "EXTRACTION",
    "VECTOR_STORE",
    "DEPENDENCIES",
    "CircuitBreakerRegistry",
]
