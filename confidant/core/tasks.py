"""Background task runner for fire-and-forget memory work.

Extraction and storage run after the chat reply has been sent; their
failures must never reach the chat handler. The runner keeps a strong
reference to every task until it finishes and logs any exception it raised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Spawns detached tasks behind an error boundary.

    Example:
        >>> runner = BackgroundTaskRunner()
        >>> runner.spawn(pipeline.extract_and_store(...), name="extract:u1")
        >>> await runner.drain()
    """

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self._active_tasks: set[asyncio.Task] = set()
        self._failed = 0
        self._completed = 0

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._active_tasks)

    def spawn(
        self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None
    ) -> asyncio.Task:
        """Schedule ``coro`` on the running loop and return its task."""
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._active_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._failed += 1
            logger.error(
                f"[{self.name}] Background task {task.get_name()} failed: {error}",
                exc_info=error,
            )
        else:
            self._completed += 1

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every pending task to finish.

        Args:
            timeout: Give up waiting after this many seconds. Tasks keep running.
        """
        if not self._active_tasks:
            return
        logger.info(f"[{self.name}] Waiting for {len(self._active_tasks)} background task(s)")
        pending = list(self._active_tasks)
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(
                f"[{self.name}] {len(still_running)} background task(s) still running after {timeout}s"
            )

    async def shutdown(self) -> None:
        """Cancel pending tasks and wait for them to exit."""
        tasks = list(self._active_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"[{self.name}] Cancelled {len(tasks)} background task(s)")

    def stats(self) -> dict[str, int]:
        """Counts of pending, completed and failed tasks."""
        return {
            "pending": self.pending,
            "completed": self._completed,
            "failed": self._failed,
        }


__all__ = ["BackgroundTaskRunner"]
