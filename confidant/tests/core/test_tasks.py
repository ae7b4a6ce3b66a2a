"""Tests for the background task runner."""

import asyncio

import pytest

from confidant.core.tasks import BackgroundTaskRunner


async def _succeed():
    return "done"


async def _explode():
    raise RuntimeError("background failure")


async def _hang():
    await asyncio.sleep(3600)


class TestBackgroundTaskRunner:
    """Tests for BackgroundTaskRunner."""

    @pytest.mark.asyncio
    async def test_spawn_runs_task(self):
        """Test that spawned work runs and is counted."""
        runner = BackgroundTaskRunner("test")

        task = runner.spawn(_succeed(), name="ok")
        await runner.drain()

        assert task.result() == "done"
        assert runner.stats() == {"pending": 0, "completed": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self, caplog):
        """Test that task errors stay inside the runner."""
        runner = BackgroundTaskRunner("test")

        runner.spawn(_explode(), name="boom")
        await runner.drain()
        await asyncio.sleep(0)

        assert runner.stats()["failed"] == 1
        assert "background failure" in caplog.text

    @pytest.mark.asyncio
    async def test_drain_timeout_leaves_tasks_running(self):
        """Test that drain gives up after the timeout."""
        runner = BackgroundTaskRunner("test")
        runner.spawn(_hang(), name="hang")

        await runner.drain(timeout=0.01)

        assert runner.pending == 1
        await runner.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending(self):
        """Test that shutdown cancels and clears pending tasks."""
        runner = BackgroundTaskRunner("test")
        task = runner.spawn(_hang(), name="hang")

        await runner.shutdown()
        await asyncio.sleep(0)

        assert task.cancelled()
        assert runner.pending == 0
