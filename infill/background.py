"""Detached background work: bounded fire-and-forget tasks and periodic timers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundExecutor:
    """Runs coroutines off the request path.

    At most ``max_concurrency`` submitted coroutines run at once and at most
    ``max_pending`` are held (running or waiting). Work submitted beyond that
    is dropped. Failures are logged and swallowed; nothing is retried.
    """

    def __init__(self, max_concurrency: int = 4, max_pending: int = 16) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")
        if max_pending < max_concurrency:
            raise ValueError("max_pending must be at least max_concurrency")
        self._max_concurrency = max_concurrency
        self._max_pending = max_pending
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self.failures = 0
        self.dropped = 0

    def _sem(self) -> asyncio.Semaphore:
        # Created lazily so the semaphore binds to the running loop.
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)
        return self._semaphore

    def submit(self, make: Callable[[], Awaitable[Any]], name: str) -> asyncio.Task[None] | None:
        """Schedule ``make()`` to run in the background; returns immediately.

        Returns ``None`` when the executor is full and the work was dropped.
        """
        if len(self._tasks) >= self._max_pending:
            self.dropped += 1
            logger.debug("Dropping background task %r (%d pending)", name, len(self._tasks))
            return None

        async def _run() -> None:
            async with self._sem():
                try:
                    await make()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.failures += 1
                    logger.warning("Background task %r failed", name, exc_info=True)

        task = asyncio.get_running_loop().create_task(_run(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every submitted task, including ones they submit, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()


class PeriodicTask:
    """Calls ``callback`` every ``interval_s`` seconds until stopped."""

    def __init__(self, callback: Callable[[], Any], interval_s: float, *, name: str = "periodic") -> None:
        self._callback = callback
        self.interval_s = interval_s
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self._name)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                result = self._callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning("Periodic task %r failed", self._name, exc_info=True)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
