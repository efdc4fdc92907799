"""
Quota governor: fixed-window rate limiting with prioritized retries.

Some providers (Deezer: 50 requests per 5 seconds) reject calls beyond a
rolling quota with an error payload. The governor keeps callers inside the
quota and retries the calls that are rejected anyway.

States:
    OPEN      - the current window has capacity, tickets are issued at once
    THROTTLED - the window is full, the ticket issuer sleeps until
                window_start + window_ms, then resets the window

Tickets are issued by the governor's own TaskQueue with concurrency 1, so
they come out FIFO within a priority class. A call rejected with
QuotaExceededError asks for its next ticket with Priority.HIGH and jumps
ahead of fresh requests. After `total_trials` attempts the last quota
error is raised with `attempts` set.

Nothing here is provider specific. Clock and sleep are injectable so the
window arithmetic can be tested without waiting.

Usage:
    governor = QuotaGovernor(max_per_window=50, window_ms=5000, total_trials=5)
    body = await governor.call(send_request, "track/3135556")
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from music_catalog.core.exceptions import QuotaExceededError
from music_catalog.core.logger import get_logger
from music_catalog.orchestration.task_queue import Priority, TaskQueue

logger = get_logger(__name__)


class GovernorState(Enum):
    OPEN = "open"
    THROTTLED = "throttled"


@dataclass
class QuotaWindow:
    """
    Mutable accounting for the current quota window.

    Attributes:
        window_start: Clock reading (seconds) when the window opened, or
                      None before the first ticket.
        window_count: Tickets issued in this window. Never exceeds
                      max_per_window.
        max_per_window: Ticket budget per window.
        window_ms: Window length in milliseconds.
    """
    window_start: float | None = None
    window_count: int = 0
    max_per_window: int = 50
    window_ms: int = 5000

    @property
    def window_end(self) -> float:
        return (self.window_start or 0.0) + self.window_ms / 1000

    def expired(self, now: float) -> bool:
        return self.window_start is None or now >= self.window_end

    @property
    def full(self) -> bool:
        return self.window_count >= self.max_per_window

    def reset(self, now: float) -> None:
        self.window_start = now
        self.window_count = 0


class QuotaGovernor:
    """
    Issues quota tickets and retries quota-rejected calls.

    Attributes:
        window: Current QuotaWindow.
        total_trials: Attempts per call, including the first.
        state: GovernorState, THROTTLED while waiting for a rollover.
    """

    def __init__(
        self,
        name: str = "quota",
        max_per_window: int = 50,
        window_ms: int = 5000,
        total_trials: int = 5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ) -> None:
        if max_per_window < 1:
            raise ValueError(f"max_per_window must be >= 1, got {max_per_window}")
        if total_trials < 1:
            raise ValueError(f"total_trials must be >= 1, got {total_trials}")
        self.name = name
        self.window = QuotaWindow(max_per_window=max_per_window, window_ms=window_ms)
        self.total_trials = total_trials
        self.state = GovernorState.OPEN
        self._clock = clock
        self._sleep = sleep
        self._tickets = TaskQueue(f"{name}:tickets", concurrency=1)

    async def acquire(self, priority: Priority = Priority.NORMAL) -> None:
        """
        Wait for a ticket in the current (or next) window.

        Args:
            priority: HIGH for retries of a rejected call, NORMAL otherwise.
        """
        await self._tickets.submit(self._issue, priority=priority)

    async def _issue(self) -> None:
        now = self._clock()
        if self.window.expired(now):
            self.window.reset(now)
        elif self.window.full:
            delay = max(self.window.window_end - now, 0.0)
            self.state = GovernorState.THROTTLED
            logger.warning(
                f"{self.name}: {self.window.window_count} requests in window, "
                f"throttling for {delay:.2f}s"
            )
            try:
                await self._sleep(delay)
            finally:
                self.state = GovernorState.OPEN
            self.window.reset(self._clock())
        self.window.window_count += 1

    async def call(
        self,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any
    ) -> Any:
        """
        Run fn under the quota, retrying quota rejections.

        Args:
            fn: Coroutine function performing one remote call.
            *args, **kwargs: Passed to fn on every attempt.

        Returns:
            fn's result from the first attempt that is not quota-rejected.

        Raises:
            QuotaExceededError: When all total_trials attempts were rejected.
                                Its `attempts` equals total_trials.
            Any other exception from fn, immediately and without retry.
        """
        priority = Priority.NORMAL
        attempt = 0
        while True:
            attempt += 1
            await self.acquire(priority)
            try:
                return await fn(*args, **kwargs)
            except QuotaExceededError as e:
                e.attempts = attempt
                if attempt >= self.total_trials:
                    logger.error(
                        f"{self.name}: quota still exceeded after {attempt} attempt(s), giving up"
                    )
                    raise
                logger.warning(
                    f"{self.name}: quota exceeded (attempt {attempt}/{self.total_trials}), retrying"
                )
                priority = Priority.HIGH
