"""
Rate Gate - Sliding-Window Admission Control

Bounds how many outbound provider requests start within a rolling time
window. One gate is shared by every caller that draws on the same quota.

Algorithm:
1. Drop admission timestamps older than the window
2. Below capacity: record now and admit
3. At capacity: sleep until the oldest timestamp expires, then re-check

Features:
- Lock-protected check-then-admit (no over-admission under concurrency)
- Lock released while sleeping (waiters do not block each other)
- Injectable clock and sleep for deterministic tests
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Any

from config.logging_config import get_logger
from config.settings import settings

logger = get_logger(__name__)


class RateGate:
    """
    Sliding-window rate gate.

    At most `capacity` admissions happen in any interval of
    `window_seconds`.

    Example:
        >>> gate = RateGate(capacity=60, window_seconds=60.0)
        >>> await gate.acquire()  # returns immediately while below capacity
    """

    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.capacity = capacity
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._sleep = sleep
        self._admissions: Deque[float] = deque()
        self._lock = asyncio.Lock()

        self.stats = {
            "admitted": 0,
            "waits": 0,
            "total_wait_seconds": 0.0
        }

    @classmethod
    def from_settings(cls) -> "RateGate":
        """Gate sized from SEARCH_RATE_LIMIT / SEARCH_RATE_WINDOW_SECONDS."""
        return cls(
            capacity=settings.SEARCH_RATE_LIMIT,
            window_seconds=settings.SEARCH_RATE_WINDOW_SECONDS
        )

    def _prune(self, now: float) -> None:
        while self._admissions and now - self._admissions[0] >= self.window_seconds:
            self._admissions.popleft()

    async def acquire(self) -> None:
        """Wait until a slot is free in the current window, then take it."""
        while True:
            async with self._lock:
                now = self._clock()
                self._prune(now)

                if len(self._admissions) < self.capacity:
                    self._admissions.append(now)
                    self.stats["admitted"] += 1
                    return

                wait = self.window_seconds - (now - self._admissions[0])

            self.stats["waits"] += 1
            self.stats["total_wait_seconds"] += wait
            logger.debug(
                "Rate gate full, waiting",
                extra={"wait_seconds": round(wait, 3), "capacity": self.capacity}
            )
            await self._sleep(wait)

    @property
    def in_window(self) -> int:
        """Admissions currently counted against the window."""
        self._prune(self._clock())
        return len(self._admissions)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "capacity": self.capacity,
            "window_seconds": self.window_seconds
        }


__all__ = ["RateGate"]
