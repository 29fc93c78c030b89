from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable


class SimpleRateLimiter:
    """
    Sliding one-second window: at most `max_per_sec` requests in any trailing second.

    Binance limits by request weight per IP; every bot talking to the same base URL shares one
    instance so a fleet of loops cannot burst past the budget together.
    """

    def __init__(self, max_per_sec: int = 8, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_per_sec = max(1, int(max_per_sec))
        self._clock = clock
        self._sent: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        while self._sent and now - self._sent[0] >= 1.0:
            self._sent.popleft()

    def in_window(self) -> int:
        self._expire(self._clock())
        return len(self._sent)

    async def acquire(self) -> None:
        # waiters queue on the lock, so slots are handed out in arrival order
        async with self._lock:
            while True:
                now = self._clock()
                self._expire(now)
                if len(self._sent) < self.max_per_sec:
                    self._sent.append(now)
                    return
                await asyncio.sleep(1.0 - (now - self._sent[0]))


class LimiterPool:
    """One limiter per base URL, created on first use."""

    def __init__(self, max_per_sec: int = 8) -> None:
        self._max_per_sec = max_per_sec
        self._limiters: dict[str, SimpleRateLimiter] = {}

    def get(self, base_url: str) -> SimpleRateLimiter:
        if base_url not in self._limiters:
            self._limiters[base_url] = SimpleRateLimiter(self._max_per_sec)
        return self._limiters[base_url]
