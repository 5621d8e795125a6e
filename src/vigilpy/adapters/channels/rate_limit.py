"""Sliding-window rate limiting keyed by recipient."""

import asyncio
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after: float | None


class SlidingWindowRateLimiter:
    """Allows at most `limit` hits per key within a sliding window.

    Args:
        limit: Maximum hits per key inside the window.
        window_seconds: Window length.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 3600.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._limit = limit
        self._window = window_seconds
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._clock = clock or time.time

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    async def check(self, key: str) -> RateLimitResult:
        """Record a hit for key if it is still within its allowance."""
        async with self._lock:
            now = self._clock()
            hits = self._hits[key]
            cutoff = now - self._window
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self._limit:
                return RateLimitResult(False, max(0.0, self._window - (now - hits[0])))
            hits.append(now)
            return RateLimitResult(True, None)

    async def remaining(self, key: str) -> int:
        """Return how many hits key has left in the current window."""
        async with self._lock:
            cutoff = self._clock() - self._window
            hits = self._hits.get(key, deque())
            return max(self._limit - sum(1 for hit in hits if hit > cutoff), 0)
