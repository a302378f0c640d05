"""
Per-session FIFO command queue.

An engine handle models a single remote-control connection, so every
mutating operation against it runs through one DispatchQueue worker.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from wagate.logger import get_logger

logger = get_logger(__name__)

Task = Callable[[], Awaitable[Any]]

_STOP = object()


class QueueClosed(RuntimeError):
    """Raised when work is added to a closed queue."""


class DispatchQueue:
    """
    Unbounded FIFO task sequencer consumed by exactly one worker.

    ``add`` returns a future that resolves with the task's result or
    rejects with its exception. A failed task never stops the worker.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False
        self._running = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Tasks waiting behind the one currently running."""
        return self._queue.qsize()

    @property
    def busy(self) -> bool:
        return self._running

    def add(self, task: Task) -> asyncio.Future:
        """Queue a zero-argument coroutine function."""
        if self._closed:
            raise QueueClosed(f"Queue '{self.name}' is closed")

        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((task, future))
        self._ensure_worker()
        return future

    def close(self) -> None:
        """
        Stop accepting work. Tasks already queued still run, in order, and
        the worker exits once it reaches the end of the queue.
        """
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait((_STOP, None))

    async def join(self) -> None:
        """Wait until every queued task has finished."""
        await self._queue.join()

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            task, future = await self._queue.get()
            try:
                if task is _STOP:
                    return
                await self._execute(task, future)
            finally:
                self._queue.task_done()

    async def _execute(self, task: Task, future: asyncio.Future) -> None:
        self._running = True
        try:
            result = await task()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            logger.debug(f"[{self.name}] Queued task failed: {e}")
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running = False
