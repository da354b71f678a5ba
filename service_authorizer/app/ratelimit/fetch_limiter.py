"""
Sliding-window ceiling on upstream key-set fetches.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Any

from shared.errors import RateLimitedError
from shared.logging import get_logger


class FetchRateLimiter:
    """Allows at most ``max_requests`` acquisitions per ``window_seconds``.

    Callers over the ceiling queue for a free slot instead of failing,
    but only up to ``max_wait``; after that they get ``RateLimitedError``.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._granted: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self.logger = get_logger("authorizer.fetch_limiter")

    def _prune(self, now: float) -> None:
        while self._granted and now - self._granted[0] >= self.window_seconds:
            self._granted.popleft()

    async def acquire(self, max_wait: float) -> None:
        """Take a slot, waiting at most ``max_wait`` seconds for one."""
        deadline = self._clock() + max_wait
        while True:
            async with self._lock:
                now = self._clock()
                self._prune(now)
                if len(self._granted) < self.max_requests:
                    self._granted.append(now)
                    return
                wait = self._granted[0] + self.window_seconds - now

            if now + wait > deadline:
                self.logger.warning(
                    "Key fetch rate ceiling reached",
                    limit=self.max_requests,
                    window_seconds=self.window_seconds,
                    max_wait=max_wait,
                )
                raise RateLimitedError(details={"retry_in_seconds": round(wait, 3)})
            await self._sleep(wait)

    def status(self) -> Dict[str, Any]:
        """Current window usage."""
        self._prune(self._clock())
        return {
            "limit": self.max_requests,
            "window_seconds": self.window_seconds,
            "in_window": len(self._granted),
            "remaining": max(0, self.max_requests - len(self._granted)),
        }
