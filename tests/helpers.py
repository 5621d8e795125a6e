"""Test doubles shared across test modules."""

from typing import Any

from vigilpy.adapters.storage import InMemoryStore
from vigilpy.core.ports import OutboundMessage


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport:
    """DeliveryTransport that records messages and replays scripted outcomes.

    Each outcome is either a bool returned by send() or an exception
    instance raised by it. Once the script runs out, send() succeeds.
    """

    def __init__(self, outcomes: list[Any] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.sent: list[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> bool:
        self.sent.append(message)
        if not self.outcomes:
            return True
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return bool(outcome)


class BrokenStore:
    """Store whose every operation fails, as if the backend were down."""

    async def _fail(self) -> Any:
        raise ConnectionError("store is down")

    async def get(self, key: str) -> str | None:
        return await self._fail()

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        await self._fail()

    async def incr(self, key: str, amount: int = 1, ttl_seconds: float | None = None) -> int:
        return await self._fail()

    async def hincr(
        self, key: str, field: str, amount: int = 1, ttl_seconds: float | None = None
    ) -> int:
        return await self._fail()

    async def hgetall(self, key: str) -> dict[str, int]:
        return await self._fail()

    async def push_trim(
        self, key: str, value: str, max_len: int, ttl_seconds: float | None
    ) -> None:
        await self._fail()

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return await self._fail()

    async def expire(self, key: str, ttl_seconds: float) -> None:
        await self._fail()

    async def delete(self, key: str) -> None:
        await self._fail()

    async def ping(self) -> bool:
        return await self._fail()


class FlakyStore(InMemoryStore):
    """In-memory store whose next ``failures`` set() calls fail."""

    def __init__(self, failures: int = 1, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.failures = failures

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("write rejected")
        await super().set(key, value, ttl_seconds)


class RecordingSink:
    """LogSinkPort that records batches; fails while ``failing`` is set."""

    def __init__(self, failing: bool = False) -> None:
        self.failing = failing
        self.batches: list[list[Any]] = []
        self.closed = False

    async def send_batch(self, entries) -> None:
        if self.failing:
            raise ConnectionError("sink unreachable")
        self.batches.append(list(entries))

    async def aclose(self) -> None:
        self.closed = True
