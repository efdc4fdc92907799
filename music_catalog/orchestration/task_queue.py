"""
Bounded-concurrency task queue.

Every provider call goes through a TaskQueue. Each adapter owns one queue
per entity type (track, album, artist, playlist); queues never share slots.

Admission Rules:
    - submit() never blocks: it records the task and returns a future.
    - At most `concurrency` task bodies run at any instant.
    - Priority.NORMAL appends to the pending list, Priority.HIGH prepends.
      HIGH is reserved for same-request retries so a retried attempt is
      serviced before newly arriving requests.
    - When a running task settles, the head of the pending list is admitted.
    - Completion order is unconstrained.

Cancellation is not supported: once submitted, a task runs to completion
or failure and holds its slot until it settles, even if nobody awaits the
returned future.

Usage:
    queue = TaskQueue("deezer:track", concurrency=4)
    future = queue.submit(fetch_track, "3135556")
    track = await future
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from music_catalog.core.logger import get_logger

logger = get_logger(__name__)


class Priority(Enum):
    """Admission class of a submitted task."""
    NORMAL = "normal"
    HIGH = "high"


@dataclass
class _Task:
    producer: Callable[..., Awaitable[Any]]
    args: tuple
    kwargs: dict
    future: asyncio.Future = field(repr=False)


class TaskQueue:
    """
    FIFO-within-priority admission queue bounding in-flight coroutines.

    Attributes:
        name: Label used in log messages (e.g., "spotify:album").
        concurrency: Maximum number of concurrently running task bodies.
    """

    def __init__(self, name: str, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError(f"TaskQueue concurrency must be >= 1, got {concurrency}")
        self.name = name
        self.concurrency = concurrency
        self._pending: deque[_Task] = deque()
        self._running = 0
        self._workers: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return (
            f"TaskQueue({self.name!r}, concurrency={self.concurrency}, "
            f"running={self._running}, pending={len(self._pending)})"
        )

    @property
    def running(self) -> int:
        """Number of task bodies currently executing."""
        return self._running

    @property
    def pending(self) -> int:
        """Number of submitted tasks waiting for a slot."""
        return len(self._pending)

    def submit(
        self,
        producer: Callable[..., Awaitable[Any]],
        *args: Any,
        priority: Priority = Priority.NORMAL,
        **kwargs: Any
    ) -> asyncio.Future:
        """
        Submit a coroutine function for bounded execution.

        Must be called from inside a running event loop.

        Args:
            producer: Coroutine function producing the task's result.
            *args: Positional arguments for producer.
            priority: NORMAL appends to the pending list, HIGH prepends.
            **kwargs: Keyword arguments for producer.

        Returns:
            Future resolving to the producer's result or raising its exception.
        """
        loop = asyncio.get_running_loop()
        task = _Task(producer, args, kwargs, loop.create_future())

        if priority is Priority.HIGH:
            self._pending.appendleft(task)
        else:
            self._pending.append(task)

        self._admit()
        return task.future

    def _admit(self) -> None:
        while self._running < self.concurrency and self._pending:
            task = self._pending.popleft()
            self._running += 1
            worker = asyncio.ensure_future(self._run(task))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

        if self._pending:
            logger.debug(f"{self.name}: {self._running} running, {len(self._pending)} waiting")

    async def _run(self, task: _Task) -> None:
        try:
            result = await task.producer(*task.args, **task.kwargs)
        except asyncio.CancelledError:
            task.future.cancel()
            raise
        except Exception as e:
            if not task.future.done():
                task.future.set_exception(e)
        else:
            if not task.future.done():
                task.future.set_result(result)
        finally:
            self._running -= 1
            self._admit()
