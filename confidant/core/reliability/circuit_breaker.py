"""Circuit breaker guarding calls to external services.

A breaker tracks consecutive failures of one dependency and, once a
threshold is reached, short-circuits further calls for a recovery period so
a failing provider is not hammered while it recovers.

Classes:
    CircuitState: CLOSED, OPEN or HALF_OPEN
    CircuitBreakerConfig: Thresholds and timeouts for one breaker
    CircuitBreakerStats: Snapshot of a breaker's counters
    CircuitBreaker: The breaker itself

Example:
    >>> breaker = CircuitBreaker("embedding", CircuitBreakerConfig(failure_threshold=3))
    >>> vector = await breaker.execute(lambda: provider.embed(text))
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from confidant.core.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """State of a circuit breaker.

    Attributes:
        CLOSED: Normal operation, requests pass through
        OPEN: Failing, requests are blocked
        HALF_OPEN: Testing, requests pass through as recovery probes
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for a circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds after the last failure before a probe
        success_threshold: Consecutive probe successes that close the circuit
        monitoring_window: Reporting window in seconds
    """

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3
    monitoring_window: float = 300.0


@dataclass
class CircuitBreakerStats:
    """Snapshot of a breaker's counters."""

    name: str
    state: CircuitState
    failures: int
    successes: int
    last_failure_time: Optional[float]
    last_success_time: Optional[float]
    total_requests: int
    total_failures: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreaker:
    """Circuit breaker for one external dependency.

    Circuit states:
    - CLOSED: calls pass through; consecutive failures are counted
    - OPEN: calls are rejected (or served by the fallback) until
      ``recovery_timeout`` has elapsed since the last failure
    - HALF_OPEN: calls pass through as probes; one failure reopens the
      circuit, ``success_threshold`` consecutive successes close it

    Attributes:
        name: Dependency name, used in logs and errors
        config: Thresholds and timeouts
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the breaker.

        Args:
            name: Dependency name
            config: Thresholds; defaults to CircuitBreakerConfig()
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_time: Optional[float] = None
        self._last_success_time: Optional[float] = None
        self._total_requests = 0
        self._total_failures = 0

    @property
    def state(self) -> CircuitState:
        """Current state, without applying the recovery timeout."""
        return self._state

    @property
    def is_open(self) -> bool:
        """True while calls would be rejected without reaching the dependency."""
        return self._state == CircuitState.OPEN and not self._recovery_elapsed()

    def _recovery_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time >= self.config.recovery_timeout

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: Optional[Callable[[], Awaitable[T]]] = None,
    ) -> T:
        """Run ``operation`` through the breaker.

        Args:
            operation: Zero-argument coroutine function to call
            fallback: Optional coroutine function used when the circuit is
                open or the operation fails

        Returns:
            The operation's result, or the fallback's result

        Raises:
            CircuitOpenError: If the circuit is open and no fallback was given
            Exception: The operation's error when no fallback was given
        """
        self._total_requests += 1

        if self._state == CircuitState.OPEN:
            if self._recovery_elapsed():
                self._transition(CircuitState.HALF_OPEN)
                self._successes = 0
            elif fallback is not None:
                logger.debug(f"[Circuit:{self.name}] OPEN, using fallback")
                return await fallback()
            else:
                raise CircuitOpenError(self.name)

        try:
            result = await operation()
        except Exception as e:
            self._on_failure(e)
            if fallback is not None:
                logger.debug(f"[Circuit:{self.name}] Operation failed, using fallback")
                return await fallback()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        self._failures = 0
        self._last_success_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)
                self._successes = 0

    def _on_failure(self, error: Exception) -> None:
        self._failures += 1
        self._total_failures += 1
        self._last_failure_time = self._clock()

        logger.debug(
            f"[Circuit:{self.name}] Failure {self._failures}/"
            f"{self.config.failure_threshold}: {error}"
        )

        if self._state == CircuitState.HALF_OPEN:
            # Any failure while probing reopens the circuit
            self._transition(CircuitState.OPEN)
            self._successes = 0
        elif (
            self._state == CircuitState.CLOSED
            and self._failures >= self.config.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            logger.warning(
                f"[Circuit:{self.name}] {old_state.value} -> OPEN after "
                f"{self._failures} consecutive failures"
            )
        else:
            logger.info(
                f"[Circuit:{self.name}] {old_state.value} -> {new_state.value}"
            )

    def stats(self) -> CircuitBreakerStats:
        """Return a snapshot of the breaker's counters."""
        return CircuitBreakerStats(
            name=self.name,
            state=self._state,
            failures=self._failures,
            successes=self._successes,
            last_failure_time=self._last_failure_time,
            last_success_time=self._last_success_time,
            total_requests=self._total_requests,
            total_failures=self._total_failures,
        )

    def reset(self) -> None:
        """Return to CLOSED and clear consecutive counters."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_time = None
        logger.info(f"[Circuit:{self.name}] Manually reset to CLOSED")

    def force_open(self) -> None:
        """Open the circuit now, starting a fresh recovery period."""
        self._state = CircuitState.OPEN
        self._successes = 0
        self._last_failure_time = self._clock()
        logger.warning(f"[Circuit:{self.name}] Forced OPEN")


__all__ = [
    "CircuitState",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitBreaker",
]
