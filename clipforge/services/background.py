"""
Background runner for detached pipeline tasks.
"""

import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger(__name__)


class BackgroundRunner:
    """
    Spawns pipeline coroutines as tasks detached from the request.

    Strong references are kept until each task finishes, uncaught failures
    are logged, and anything still running is cancelled on shutdown.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Spawned background task {name} ({len(self._tasks)} active)")
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def wait_idle(self) -> None:
        """Wait until every task spawned so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel and await all running tasks."""
        if not self._tasks:
            return
        logger.info(f"Cancelling {len(self._tasks)} background tasks...")
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
