"""
Background Tasks
================

Detached asyncio tasks that outlive the request that started them.

The event loop only keeps weak references to tasks, so the runner holds
each one until it finishes and logs anything it raised.
"""

import asyncio
from typing import Coroutine, Set

from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class BackgroundTaskRunner:
    """Spawns fire-and-forget coroutines and keeps them alive."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task cancelled", extra={"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed",
                extra={"task": task.get_name(), "error": str(exc), "error_type": type(exc).__name__}
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks at application shutdown."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
