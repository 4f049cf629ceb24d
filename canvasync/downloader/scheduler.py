"""Bounded-concurrency scheduler for download tasks."""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Set

logger = logging.getLogger(__name__)

TaskBody = Callable[[], Awaitable[Any]]


class DownloadScheduler:
    """Runs at most ``max_concurrent`` task bodies at once.

    Submissions beyond capacity wait in FIFO order. Each submission gets its
    own future; a body that raises only fails that future. Must be used from
    a single event loop.
    """

    def __init__(self, max_concurrent: int):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._active = 0
        self._waiting: Deque[Callable[[], None]] = deque()
        self._running: Set[asyncio.Task] = set()

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return len(self._waiting)

    def submit(self, task_body: TaskBody) -> asyncio.Future:
        """Schedule ``task_body`` and return a future for its result."""
        loop = asyncio.get_running_loop()
        handle = loop.create_future()

        def start() -> None:
            self._active += 1
            task = loop.create_task(self._run(task_body, handle))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        if self._active < self.max_concurrent:
            start()
        else:
            self._waiting.append(start)
            logger.debug("Download queued (%d active, %d waiting)", self._active, len(self._waiting))

        return handle

    async def _run(self, task_body: TaskBody, handle: asyncio.Future) -> None:
        try:
            result = await task_body()
        except asyncio.CancelledError:
            if not handle.done():
                handle.cancel()
            raise
        except Exception as e:
            if not handle.done():
                handle.set_exception(e)
        else:
            if not handle.done():
                handle.set_result(result)
        finally:
            self._release()

    def _release(self) -> None:
        self._active -= 1
        # Hand the slot over before control returns to the event loop
        if self._waiting:
            next_start = self._waiting.popleft()
            next_start()
