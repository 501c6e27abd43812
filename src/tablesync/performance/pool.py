"""Bounded task pool and rate limiting for fetch tasks."""

import asyncio
import contextvars
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Set

from ..utils.logging import get_logger


_holds_slot: contextvars.ContextVar[bool] = contextvars.ContextVar("tablesync_holds_slot", default=False)


class AsyncRateLimiter:
    """Sliding window limit on resolver invocations across all fetch tasks.

    At most ``max_calls`` invocations start within any ``time_window``
    seconds. Waiters are served in arrival order.
    """

    def __init__(self, max_calls: int, time_window: float):
        if max_calls < 1 or time_window <= 0:
            raise ValueError("Rate limit needs max_calls >= 1 and a positive time_window")
        self.max_calls = max_calls
        self.time_window = time_window
        self._starts: Deque[float] = deque()
        self._lock = asyncio.Lock()

        self.logger = get_logger(self.__class__.__name__)

    async def acquire(self) -> None:
        """Wait until one more invocation fits in the window."""
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._starts and now - self._starts[0] >= self.time_window:
                    self._starts.popleft()

                if len(self._starts) < self.max_calls:
                    self._starts.append(now)
                    return

                delay = self.time_window - (now - self._starts[0])
                self.logger.debug("Resolver rate limit reached", delay_seconds=round(delay, 3))
                await asyncio.sleep(delay)


class FetchPool:
    """Worker pool shared by every fetch task of a sync.

    At most ``max_concurrency`` tasks run at once and at most ``max_pending``
    wait for a run slot. ``submit`` blocks while the waiting queue is full.
    A running task that submits children gives its run slot back while it is
    blocked, so queued tasks can always make progress.
    """

    def __init__(self, max_concurrency: int = 10, max_pending: int = 100):
        """Initialize fetch pool.

        Args:
            max_concurrency: Maximum tasks running at the same time
            max_pending: Maximum tasks waiting for a run slot
        """
        if max_concurrency < 1 or max_pending < 1:
            raise ValueError("Pool limits must be at least 1")

        self.max_concurrency = max_concurrency
        self.max_pending = max_pending

        self._running = asyncio.Semaphore(max_concurrency)
        self._pending = asyncio.Semaphore(max_pending)
        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

        # Statistics tracking
        self.active = 0
        self.peak_active = 0
        self.submitted = 0

        self.logger = get_logger(self.__class__.__name__)

    @property
    def outstanding(self) -> int:
        """Tasks submitted and not yet finished."""
        return len(self._tasks)

    async def submit(self, func: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
        """Schedule ``func(*args)`` on the pool, blocking while the queue is full."""
        if _holds_slot.get() and self._pending.locked():
            self.active -= 1
            self._running.release()
            try:
                await self._pending.acquire()
            finally:
                await self._running.acquire()
                self.active += 1
                self.peak_active = max(self.peak_active, self.active)
        else:
            await self._pending.acquire()

        task = asyncio.create_task(self._run(func, *args))
        self._tasks.add(task)
        self._idle.clear()
        self.submitted += 1
        task.add_done_callback(self._task_done)
        return task

    async def join(self) -> None:
        """Wait until every submitted task, including ones submitted meanwhile, has finished."""
        await self._idle.wait()

    async def cancel(self) -> None:
        """Cancel every queued and running task and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            await self._running.acquire()
        finally:
            self._pending.release()
        _holds_slot.set(True)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            return await func(*args)
        finally:
            self.active -= 1
            self._running.release()

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Pool task failed", error=str(task.exception()))
        if not self._tasks:
            self._idle.set()
