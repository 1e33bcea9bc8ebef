"""
Rolling-window rate limiting for illustration service calls.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class SlidingWindowRateLimiter:
    """
    Admit at most ``max_calls`` acquisitions in any window of ``period`` seconds.

    Waiters are served in arrival order. Use as ``async with limiter:`` around
    each call; releasing is a no-op because a call counts from the moment it starts.
    """

    def __init__(
        self,
        max_calls: int,
        period: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1.")
        if period <= 0:
            raise ValueError("period must be positive.")
        self.max_calls = max_calls
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._calls: Deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._calls and now - self._calls[0] >= self.period:
                    self._calls.popleft()
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                await self._sleep(self.period - (now - self._calls[0]))

    def in_window(self) -> int:
        """Number of calls counted in the current window."""
        now = self._clock()
        return sum(1 for started in self._calls if now - started < self.period)

    async def __aenter__(self) -> "SlidingWindowRateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None
