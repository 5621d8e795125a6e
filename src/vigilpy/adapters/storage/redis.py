"""Redis implementation of the shared key-value store."""

import redis.asyncio as aioredis
from redis.asyncio import Redis


def _ms(ttl_seconds: float) -> int:
    return max(int(ttl_seconds * 1000), 1)


class RedisStore:
    """Redis implementation of KeyValueStorePort.

    Compound primitives (incr+expire, lpush+ltrim+expire) run as one
    MULTI/EXEC pipeline, so concurrent processes never observe a half
    applied update.

    Args:
        client: A redis.asyncio client created with decode_responses=True.
    """

    def __init__(self, client: Redis) -> None:
        self.redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        """Create a store with its own connection pool."""
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        value = await self.redis.get(key)
        return None if value is None else str(value)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        if ttl_seconds is None:
            await self.redis.set(key, value)
        else:
            await self.redis.set(key, value, px=_ms(ttl_seconds))

    async def incr(
        self, key: str, amount: int = 1, ttl_seconds: float | None = None
    ) -> int:
        pipe = self.redis.pipeline(transaction=True)
        pipe.incrby(key, amount)
        if ttl_seconds is not None:
            pipe.pexpire(key, _ms(ttl_seconds))
        results = await pipe.execute()
        return int(results[0])

    async def hincr(
        self,
        key: str,
        field: str,
        amount: int = 1,
        ttl_seconds: float | None = None,
    ) -> int:
        pipe = self.redis.pipeline(transaction=True)
        pipe.hincrby(key, field, amount)
        if ttl_seconds is not None:
            pipe.pexpire(key, _ms(ttl_seconds))
        results = await pipe.execute()
        return int(results[0])

    async def hgetall(self, key: str) -> dict[str, int]:
        raw = await self.redis.hgetall(key)
        return {str(field): int(value) for field, value in raw.items()}

    async def push_trim(
        self, key: str, value: str, max_len: int, ttl_seconds: float | None
    ) -> None:
        pipe = self.redis.pipeline(transaction=True)
        pipe.lpush(key, value)
        pipe.ltrim(key, 0, max_len - 1)
        if ttl_seconds is not None:
            pipe.pexpire(key, _ms(ttl_seconds))
        await pipe.execute()

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return [str(item) for item in await self.redis.lrange(key, start, stop)]

    async def expire(self, key: str, ttl_seconds: float) -> None:
        await self.redis.pexpire(key, _ms(ttl_seconds))

    async def delete(self, key: str) -> None:
        await self.redis.delete(key)

    async def ping(self) -> bool:
        return bool(await self.redis.ping())

    async def close(self) -> None:
        """Release the connection pool."""
        await self.redis.aclose()
