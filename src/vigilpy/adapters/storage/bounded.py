"""Timeout and error normalization around any KeyValueStorePort."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from vigilpy.core.exceptions import StoreUnavailableError
from vigilpy.core.ports import KeyValueStorePort

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 2.0


class BoundedStore:
    """Wraps a store so every call is bounded and fails uniformly.

    Each operation is raced against a timeout; a timeout or any adapter
    error surfaces as StoreUnavailableError so callers only need to handle
    one failure type.

    Args:
        inner: The store adapter doing the actual work.
        timeout: Per-operation timeout in seconds.
    """

    def __init__(
        self, inner: KeyValueStorePort, timeout: float = DEFAULT_TIMEOUT_SECONDS
    ) -> None:
        self.inner = inner
        self.timeout = timeout

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except TimeoutError as exc:
            raise StoreUnavailableError(
                operation, f"timed out after {self.timeout}s"
            ) from exc
        except StoreUnavailableError:
            raise
        except Exception as exc:
            raise StoreUnavailableError(operation, repr(exc)) from exc

    async def get(self, key: str) -> str | None:
        return await self._call("get", self.inner.get(key))

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        await self._call("set", self.inner.set(key, value, ttl_seconds))

    async def incr(
        self, key: str, amount: int = 1, ttl_seconds: float | None = None
    ) -> int:
        return await self._call("incr", self.inner.incr(key, amount, ttl_seconds))

    async def hincr(
        self,
        key: str,
        field: str,
        amount: int = 1,
        ttl_seconds: float | None = None,
    ) -> int:
        return await self._call(
            "hincr", self.inner.hincr(key, field, amount, ttl_seconds)
        )

    async def hgetall(self, key: str) -> dict[str, int]:
        return await self._call("hgetall", self.inner.hgetall(key))

    async def push_trim(
        self, key: str, value: str, max_len: int, ttl_seconds: float | None
    ) -> None:
        await self._call(
            "push_trim", self.inner.push_trim(key, value, max_len, ttl_seconds)
        )

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return await self._call("lrange", self.inner.lrange(key, start, stop))

    async def expire(self, key: str, ttl_seconds: float) -> None:
        await self._call("expire", self.inner.expire(key, ttl_seconds))

    async def delete(self, key: str) -> None:
        await self._call("delete", self.inner.delete(key))

    async def ping(self) -> bool:
        return await self._call("ping", self.inner.ping())

    async def close(self) -> None:
        """Close the wrapped adapter if it holds resources."""
        close = getattr(self.inner, "close", None)
        if close is not None:
            await close()
