"""Test the bounded-concurrency task queue"""

import asyncio

import pytest

from music_catalog.orchestration.task_queue import Priority, TaskQueue


class TestTaskQueue:
    """Test admission, concurrency bound and priority"""

    def test_rejects_zero_concurrency(self):
        """Test concurrency below 1 is refused"""
        with pytest.raises(ValueError):
            TaskQueue("test", concurrency=0)

    @pytest.mark.asyncio
    async def test_never_exceeds_concurrency(self):
        """Test N+1 blocking tasks only start N bodies"""
        queue = TaskQueue("test", concurrency=3)
        release = asyncio.Event()
        started = []
        peak = 0

        async def blocking(index):
            nonlocal peak
            started.append(index)
            peak = max(peak, queue.running)
            await release.wait()
            return index

        futures = [queue.submit(blocking, i) for i in range(4)]
        await asyncio.sleep(0.01)

        assert started == [0, 1, 2]
        assert queue.running == 3
        assert queue.pending == 1

        release.set()
        assert await asyncio.gather(*futures) == [0, 1, 2, 3]
        assert peak == 3
        assert queue.running == 0
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_high_priority_is_admitted_first(self):
        """Test a HIGH task submitted last runs before pending NORMAL tasks"""
        queue = TaskQueue("test", concurrency=1)
        release = asyncio.Event()
        order = []

        async def blocker():
            await release.wait()

        async def record(name):
            order.append(name)

        first = queue.submit(blocker)
        normal = [queue.submit(record, f"normal-{i}") for i in range(3)]
        retry = queue.submit(record, "retry", priority=Priority.HIGH)

        release.set()
        await asyncio.gather(first, retry, *normal)

        assert order == ["retry", "normal-0", "normal-1", "normal-2"]

    @pytest.mark.asyncio
    async def test_fifo_within_priority(self):
        """Test NORMAL tasks run in submission order"""
        queue = TaskQueue("test", concurrency=1)
        order = []

        async def record(name):
            order.append(name)

        await asyncio.gather(*(queue.submit(record, i) for i in range(5)))

        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_failure_propagates_and_frees_slot(self):
        """Test a failing task rejects its future and the next task still runs"""
        queue = TaskQueue("test", concurrency=1)

        async def boom():
            raise RuntimeError("boom")

        async def ok():
            return "ok"

        failing = queue.submit(boom)
        following = queue.submit(ok)

        with pytest.raises(RuntimeError, match="boom"):
            await failing
        assert await following == "ok"
        assert queue.running == 0

    @pytest.mark.asyncio
    async def test_keyword_arguments_are_forwarded(self):
        """Test producer kwargs reach the coroutine"""
        queue = TaskQueue("test", concurrency=2)

        async def join(a, b, sep="-"):
            return f"{a}{sep}{b}"

        assert await queue.submit(join, "x", "y", sep="+") == "x+y"
