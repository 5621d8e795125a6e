"""In-memory implementation of the shared key-value store."""

import asyncio
import time
from collections.abc import Callable
from typing import Any

DEFAULT_SWEEP_INTERVAL = 60.0


class InMemoryStore:
    """In-memory implementation of KeyValueStorePort.

    Strings, counter hashes and lists live in one dict with a per-key
    expiry. Suitable for testing and single-process deployments where the
    store does not need to be shared. Expired keys are dropped when read,
    and writes sweep every expired key at most once per sweep_interval.

    Args:
        clock: Monotonic-enough time source, injectable for TTL tests.
        sweep_interval: Seconds between full expiry sweeps.
    """

    def __init__(
        self,
        clock: Callable[[], float] | None = None,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self._data: dict[str, Any] = {}
        self._expiry: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or time.time
        self._sweep_interval = sweep_interval
        self._next_sweep = self._clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._data)

    def _alive(self, key: str) -> bool:
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= self._clock():
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return key in self._data

    def _touch(self, key: str, ttl_seconds: float | None) -> None:
        now = self._clock()
        if ttl_seconds is not None:
            self._expiry[key] = now + ttl_seconds
        if now >= self._next_sweep:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        expired = [key for key, deadline in self._expiry.items() if deadline <= now]
        for key in expired:
            self._data.pop(key, None)
            del self._expiry[key]
        self._next_sweep = now + self._sweep_interval
        return len(expired)

    async def purge_expired(self) -> int:
        """Drop every expired key now and return how many were removed."""
        async with self._lock:
            return self._sweep(self._clock())

    async def get(self, key: str) -> str | None:
        """Return the string stored at key, or None."""
        async with self._lock:
            if not self._alive(key):
                return None
            value = self._data[key]
            return value if isinstance(value, str) else str(value)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Store a string, replacing any previous value and expiry."""
        async with self._lock:
            self._data[key] = value
            self._expiry.pop(key, None)
            self._touch(key, ttl_seconds)

    async def incr(
        self, key: str, amount: int = 1, ttl_seconds: float | None = None
    ) -> int:
        """Increment a counter, creating it at zero first."""
        async with self._lock:
            current = int(self._data[key]) if self._alive(key) else 0
            current += amount
            self._data[key] = current
            self._touch(key, ttl_seconds)
            return current

    async def hincr(
        self,
        key: str,
        field: str,
        amount: int = 1,
        ttl_seconds: float | None = None,
    ) -> int:
        """Increment one field of a counter hash."""
        async with self._lock:
            table: dict[str, int] = self._data[key] if self._alive(key) else {}
            table[field] = table.get(field, 0) + amount
            self._data[key] = table
            self._touch(key, ttl_seconds)
            return table[field]

    async def hgetall(self, key: str) -> dict[str, int]:
        """Return a copy of a counter hash."""
        async with self._lock:
            if not self._alive(key):
                return {}
            return dict(self._data[key])

    async def push_trim(
        self, key: str, value: str, max_len: int, ttl_seconds: float | None
    ) -> None:
        """Prepend, trim to max_len and refresh expiry in one step."""
        async with self._lock:
            items: list[str] = self._data[key] if self._alive(key) else []
            items.insert(0, value)
            del items[max_len:]
            self._data[key] = items
            self._touch(key, ttl_seconds)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Return items start..stop inclusive; stop=-1 means the end."""
        async with self._lock:
            if not self._alive(key):
                return []
            items: list[str] = self._data[key]
            end = None if stop == -1 else stop + 1
            return list(items[start:end])

    async def expire(self, key: str, ttl_seconds: float) -> None:
        """Reset the expiry of an existing key."""
        async with self._lock:
            if self._alive(key):
                self._touch(key, ttl_seconds)

    async def delete(self, key: str) -> None:
        """Remove a key."""
        async with self._lock:
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    async def ping(self) -> bool:
        """In-memory store is always reachable."""
        return True

    async def close(self) -> None:
        """Nothing to release."""
