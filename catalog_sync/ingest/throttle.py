"""Serialized request queue with a minimum gap between upstream calls."""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from catalog_sync.config import settings
from catalog_sync.metrics import throttle_queue_depth

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class RequestThrottle:
    """
    Single-worker FIFO queue in front of one external API.

    At most one task runs at a time and two task starts are never closer
    together than ``delay_seconds``. A failing task resolves its own caller
    with the exception and the queue keeps draining.
    """

    def __init__(
        self,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delay_seconds = (
            delay_seconds if delay_seconds is not None else settings.throttle_delay_seconds
        )
        self._sleep = sleep
        self._clock = clock
        self._queue: deque[tuple[TaskFactory, asyncio.Future]] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._last_finished: Optional[float] = None

    @property
    def pending(self) -> int:
        """Number of tasks waiting to run."""
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def enqueue(self, task: TaskFactory) -> Any:
        """
        Queue a task and wait for its outcome.

        Args:
            task: Zero-argument callable returning an awaitable

        Returns:
            Whatever the task returns

        Raises:
            Whatever the task raises
        """
        future = asyncio.get_running_loop().create_future()
        self._queue.append((task, future))
        throttle_queue_depth.set(len(self._queue))

        if not self.is_draining:
            self._worker = asyncio.create_task(self._drain())

        return await future

    async def _drain(self) -> None:
        while self._queue:
            task, future = self._queue.popleft()
            throttle_queue_depth.set(len(self._queue))

            # Caller went away while waiting
            if future.cancelled():
                continue

            try:
                await self._wait_for_slot()
                if future.cancelled():
                    continue
                result = await task()
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
                self._last_finished = self._clock()
            else:
                if not future.done():
                    future.set_result(result)
                self._last_finished = self._clock()

    async def _wait_for_slot(self) -> None:
        if self._last_finished is None:
            return

        remaining = self.delay_seconds - (self._clock() - self._last_finished)
        if remaining > 0:
            logger.debug(f"Throttle waiting {remaining:.2f}s before next call")
            await self._sleep(remaining)

    async def close(self) -> None:
        """Stop the worker and cancel every task still waiting."""
        if self.is_draining:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        while self._queue:
            _, future = self._queue.popleft()
            if not future.done():
                future.cancel()

        throttle_queue_depth.set(0)
