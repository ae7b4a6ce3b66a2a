"""Tests for circuit breakers, retry with backoff and the breaker registry.

This module tests:
- CircuitBreaker state transitions, fallbacks and stats
- ExponentialBackoff delay schedule
- retry_with_backoff attempts and error handling
- CircuitBreakerRegistry construction from settings
"""

import random
from unittest.mock import AsyncMock, patch

import pytest

from confidant.config.settings import ConfidantSettings
from confidant.core.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    InputValidationError,
    RetryExhaustedError,
)
from confidant.core.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from confidant.core.reliability.registry import (
    EMBEDDING,
    EXTRACTION,
    VECTOR_STORE,
    CircuitBreakerRegistry,
)
from confidant.core.reliability.retry import ExponentialBackoff, retry_with_backoff


async def _fail():
    raise ConnectionError("boom")


async def _ok():
    return "ok"


# =============================================================================
# CircuitBreaker Tests
# =============================================================================


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(
            "test",
            CircuitBreakerConfig(failure_threshold=3, recovery_timeout=30.0, success_threshold=2),
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_starts_closed_and_passes_results(self, breaker):
        """Test that a closed circuit passes calls through."""
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.execute(_ok) == "ok"

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self, breaker):
        """Test that three consecutive failures open the circuit."""
        for _ in range(3):
            with pytest.raises(ConnectionError):
                await breaker.execute(_fail)

        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self, breaker):
        """Test that the fourth call fails fast without invoking the operation."""
        for _ in range(3):
            with pytest.raises(ConnectionError):
                await breaker.execute(_fail)

        operation = AsyncMock(return_value="never")
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(operation)

        operation.assert_not_called()
        assert exc_info.value.code == "CIRCUIT_OPEN"

    @pytest.mark.asyncio
    async def test_open_circuit_uses_fallback(self, breaker):
        """Test that an open circuit serves the fallback."""
        breaker.force_open()
        fallback = AsyncMock(return_value="fallback")

        assert await breaker.execute(_ok, fallback=fallback) == "fallback"
        fallback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_with_fallback_records_failure(self, breaker):
        """Test that a failing operation with fallback still counts a failure."""
        fallback = AsyncMock(return_value="fallback")

        assert await breaker.execute(_fail, fallback=fallback) == "fallback"
        assert breaker.stats().failures == 1
        assert breaker.stats().total_failures == 1

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, breaker):
        """Test that a success clears the consecutive failure count."""
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(_fail)
        await breaker.execute(_ok)

        with pytest.raises(ConnectionError):
            await breaker.execute(_fail)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats().failures == 1

    @pytest.mark.asyncio
    async def test_half_open_after_recovery_timeout(self, breaker, clock):
        """Test that a call after the recovery timeout probes the dependency."""
        breaker.force_open()
        clock.advance(30.0)

        assert not breaker.is_open
        assert await breaker.execute(_ok) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_half_open_closes_after_success_threshold(self, breaker, clock):
        """Test that enough probe successes close the circuit."""
        breaker.force_open()
        clock.advance(31.0)

        await breaker.execute(_ok)
        await breaker.execute(_ok)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        """Test that a failure while half-open reopens immediately."""
        breaker.force_open()
        clock.advance(31.0)
        await breaker.execute(_ok)

        with pytest.raises(ConnectionError):
            await breaker.execute(_fail)

        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_stats_track_totals(self, breaker):
        """Test request and failure totals."""
        await breaker.execute(_ok)
        with pytest.raises(ConnectionError):
            await breaker.execute(_fail)

        stats = breaker.stats()
        assert stats.total_requests == 2
        assert stats.total_failures == 1
        assert stats.last_failure_time is not None
        assert stats.to_dict()["state"] == "closed"

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        """Test manual reset to CLOSED."""
        breaker.force_open()
        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert await breaker.execute(_ok) == "ok"


# =============================================================================
# ExponentialBackoff Tests
# =============================================================================


class TestExponentialBackoff:
    """Tests for ExponentialBackoff."""

    def test_delays_double_without_jitter(self):
        """Test the nominal schedule."""
        backoff = ExponentialBackoff(initial_delay=1.0, max_delay=30.0, jitter=False)

        assert [backoff.calculate_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delays_are_monotonic_and_capped(self):
        """Test that delays never decrease and never exceed the cap."""
        backoff = ExponentialBackoff(initial_delay=1.0, max_delay=30.0, jitter=False)
        delays = [backoff.calculate_delay(n) for n in range(1, 12)]

        assert delays == sorted(delays)
        assert max(delays) == 30.0

    def test_jitter_stays_within_half_to_full(self):
        """Test that jitter keeps delays in [50%, 100%] of nominal."""
        backoff = ExponentialBackoff(initial_delay=2.0, jitter=True, rng=random.Random(7))

        for _ in range(50):
            delay = backoff.calculate_delay(2)
            assert 2.0 <= delay <= 4.0


# =============================================================================
# retry_with_backoff Tests
# =============================================================================


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_returns_after_transient_failures(self, fast_backoff):
        """Test that a later success is returned."""
        operation = AsyncMock(side_effect=[ConnectionError("a"), ConnectionError("b"), "done"])

        result = await retry_with_backoff(operation, max_attempts=3, backoff=fast_backoff)

        assert result == "done"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_raises_retry_exhausted_with_cause(self, fast_backoff):
        """Test the error raised when every attempt fails."""
        operation = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_with_backoff(operation, max_attempts=3, backoff=fast_backoff)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_does_not_sleep_after_last_attempt(self):
        """Test that N attempts sleep N-1 times."""
        backoff = ExponentialBackoff(initial_delay=1.0, jitter=False)
        operation = AsyncMock(side_effect=ConnectionError("down"))

        with patch("confidant.core.reliability.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RetryExhaustedError):
                await retry_with_backoff(operation, max_attempts=3, backoff=backoff)

        assert sleep.await_count == 2
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_validation_errors_are_not_retried(self, fast_backoff):
        """Test that InputValidationError is raised on the first attempt."""
        operation = AsyncMock(side_effect=InputValidationError("bad"))

        with pytest.raises(InputValidationError):
            await retry_with_backoff(operation, max_attempts=5, backoff=fast_backoff)

        assert operation.await_count == 1


# =============================================================================
# CircuitBreakerRegistry Tests
# =============================================================================


class TestCircuitBreakerRegistry:
    """Tests for CircuitBreakerRegistry."""

    def test_from_settings_uses_per_dependency_config(self):
        """Test that each dependency gets its configured thresholds."""
        registry = CircuitBreakerRegistry.from_settings(ConfidantSettings())

        assert registry.get(EMBEDDING).config.failure_threshold == 3
        assert registry.get(EMBEDDING).config.recovery_timeout == 30.0
        assert registry.get(EXTRACTION).config.failure_threshold == 10
        assert registry.get(VECTOR_STORE).config.failure_threshold == 7

    def test_same_breaker_is_returned(self):
        """Test that breakers are shared, not recreated."""
        registry = CircuitBreakerRegistry()

        assert registry.get(EMBEDDING) is registry.get(EMBEDDING)

    def test_unknown_breaker_raises(self):
        """Test lookup of an unregistered dependency."""
        registry = CircuitBreakerRegistry()

        with pytest.raises(ConfigurationError):
            registry.get("pinecone")

    def test_health_and_reset_all(self):
        """Test health reporting and bulk reset."""
        registry = CircuitBreakerRegistry()
        registry.get(VECTOR_STORE).force_open()

        assert registry.open_circuits() == [VECTOR_STORE]
        assert registry.health()[VECTOR_STORE]["state"] == "open"
        assert registry.any_open(EMBEDDING, VECTOR_STORE)

        registry.reset_all()

        assert registry.open_circuits() == []
