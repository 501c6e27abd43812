"""Tests for the fetch pool and rate limiter."""

import asyncio
import time

import pytest

from tablesync.performance import AsyncRateLimiter, FetchPool


class TestFetchPool:
    """Test bounded task execution."""

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        """Test that no more than max_concurrency tasks run at once."""
        pool = FetchPool(max_concurrency=3, max_pending=50)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for _ in range(20):
            await pool.submit(work)
        await pool.join()

        assert peak <= 3
        assert pool.peak_active == peak
        assert pool.submitted == 20
        assert pool.outstanding == 0

    @pytest.mark.asyncio
    async def test_submit_blocks_when_queue_full(self):
        """Test backpressure on the submitter."""
        pool = FetchPool(max_concurrency=1, max_pending=1)
        release = asyncio.Event()

        async def work():
            await release.wait()

        await pool.submit(work)
        await asyncio.sleep(0)  # first task takes the run slot
        await pool.submit(work)

        blocked = asyncio.create_task(pool.submit(work))
        await asyncio.sleep(0.02)
        assert not blocked.done()

        release.set()
        await blocked
        await pool.join()
        assert pool.submitted == 3

    @pytest.mark.asyncio
    async def test_nested_submission_does_not_deadlock(self):
        """Test that tasks submitting children always drain."""
        pool = FetchPool(max_concurrency=2, max_pending=2)
        finished = []

        async def child(name):
            await asyncio.sleep(0.001)
            finished.append(name)

        async def parent(index):
            for child_index in range(5):
                await pool.submit(child, f"{index}-{child_index}")
            finished.append(f"parent-{index}")

        for index in range(4):
            await pool.submit(parent, index)
        await asyncio.wait_for(pool.join(), timeout=5)

        assert len(finished) == 24
        assert pool.peak_active <= 2

    @pytest.mark.asyncio
    async def test_join_waits_for_late_children(self):
        """Test that join covers tasks submitted while joining."""
        pool = FetchPool(max_concurrency=2, max_pending=10)
        done = []

        async def grandchild():
            await asyncio.sleep(0.01)
            done.append("grandchild")

        async def child():
            await asyncio.sleep(0.01)
            await pool.submit(grandchild)

        await pool.submit(child)
        await pool.join()

        assert done == ["grandchild"]

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Test that cancel stops running and queued tasks."""
        pool = FetchPool(max_concurrency=1, max_pending=5)
        started = []

        async def work(index):
            started.append(index)
            await asyncio.sleep(10)

        for index in range(3):
            await pool.submit(work, index)
        await asyncio.sleep(0.01)

        await pool.cancel()

        assert started == [0]
        assert pool.outstanding == 0

    @pytest.mark.asyncio
    async def test_failed_task_does_not_block_join(self):
        """Test that an exception in one task leaves the pool usable."""
        pool = FetchPool(max_concurrency=2, max_pending=5)

        async def fail():
            raise RuntimeError("boom")

        async def ok():
            return "ok"

        failed = await pool.submit(fail)
        succeeded = await pool.submit(ok)
        await pool.join()

        assert isinstance(failed.exception(), RuntimeError)
        assert succeeded.result() == "ok"

    def test_invalid_limits(self):
        """Test limit validation."""
        with pytest.raises(ValueError):
            FetchPool(max_concurrency=0)


class TestAsyncRateLimiter:
    """Test the sliding window rate limiter."""

    @pytest.mark.asyncio
    async def test_rate_limiter(self):
        """Test that calls beyond the window limit are delayed."""
        limiter = AsyncRateLimiter(max_calls=3, time_window=0.2)

        start_time = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        assert time.monotonic() - start_time < 0.1

        await limiter.acquire()

        assert time.monotonic() - start_time >= 0.15

    def test_invalid_limits(self):
        """Test that empty windows are rejected."""
        with pytest.raises(ValueError):
            AsyncRateLimiter(max_calls=0, time_window=1.0)
        with pytest.raises(ValueError):
            AsyncRateLimiter(max_calls=1, time_window=0)
