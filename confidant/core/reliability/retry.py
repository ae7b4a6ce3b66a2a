"""Retry with exponential backoff.

Classes:
    ExponentialBackoff: Delay schedule for retry attempts

Functions:
    retry_with_backoff: Call an async operation until it succeeds or the
        attempts run out
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from confidant.core.exceptions import InputValidationError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExponentialBackoff:
    """Exponential delay schedule.

    The nominal delay before retry ``attempt`` (1-based) is
    ``initial_delay * factor ** (attempt - 1)`` capped at ``max_delay``.
    With jitter the delay is scaled into [50%, 100%] of the nominal value.

    Example:
        >>> backoff = ExponentialBackoff(initial_delay=1.0, jitter=False)
        >>> [backoff.calculate_delay(n) for n in (1, 2, 3)]
        [1.0, 2.0, 4.0]
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        factor: float = 2.0,
        jitter: bool = True,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.factor = factor
        self.jitter = jitter
        self._rng = rng or random.Random()

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds to wait after failed attempt ``attempt``."""
        attempt = max(1, attempt)
        delay = self.initial_delay * (self.factor ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= 0.5 + self._rng.random() * 0.5

        return delay

    async def sleep(self, attempt: int) -> float:
        """Sleep for the delay of ``attempt`` and return it."""
        delay = self.calculate_delay(attempt)
        await asyncio.sleep(delay)
        return delay


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    backoff: Optional[ExponentialBackoff] = None,
    give_up_on: tuple[type[BaseException], ...] = (InputValidationError,),
    operation_name: Optional[str] = None,
) -> T:
    """Call ``operation`` until it succeeds.

    No delay follows the final attempt. Exceptions listed in ``give_up_on``
    are re-raised immediately without further attempts.

    Args:
        operation: Zero-argument coroutine function
        max_attempts: Total attempts, at least 1
        backoff: Delay schedule; defaults to ExponentialBackoff()
        give_up_on: Exception types that are never retried
        operation_name: Label used in logs and the final error

    Returns:
        The first successful result

    Raises:
        RetryExhaustedError: If every attempt failed (last error chained)
    """
    backoff = backoff or ExponentialBackoff()
    label = operation_name or getattr(operation, "__name__", "operation")
    attempts = max(1, max_attempts)
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except give_up_on:
            raise
        except Exception as e:
            last_error = e
            if attempt >= attempts:
                break
            delay = backoff.calculate_delay(attempt)
            logger.warning(
                f"{label} failed (attempt {attempt}/{attempts}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)

    logger.error(f"{label} failed after {attempts} attempts: {last_error}")
    raise RetryExhaustedError(attempts, last_error, label) from last_error


__all__ = ["ExponentialBackoff", "retry_with_backoff"]
