"""Port interfaces for the pipeline's external collaborators.

These protocols define the contracts that adapters must implement.
The core services depend only on these interfaces, not concrete
implementations.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from vigilpy.core.models import Alert, AlertLevel, LogEntry


@runtime_checkable
class KeyValueStorePort(Protocol):
    """Port for the shared TTL-keyed store.

    Every mutating method is a single atomic primitive: there is no way to
    read, modify and write back a value through this port.
    Examples: InMemoryStore, SQLiteStore, RedisStore.
    """

    async def get(self, key: str) -> str | None:
        """Return the string stored at key, or None."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Store a string, optionally expiring after ttl_seconds."""
        ...

    async def incr(
        self, key: str, amount: int = 1, ttl_seconds: float | None = None
    ) -> int:
        """Increment an integer counter and refresh its expiry.

        Returns:
            The counter value after the increment.
        """
        ...

    async def hincr(
        self,
        key: str,
        field: str,
        amount: int = 1,
        ttl_seconds: float | None = None,
    ) -> int:
        """Increment one field of a hash and refresh the hash's expiry."""
        ...

    async def hgetall(self, key: str) -> dict[str, int]:
        """Return every field of a counter hash (empty if missing)."""
        ...

    async def push_trim(
        self, key: str, value: str, max_len: int, ttl_seconds: float | None
    ) -> None:
        """Prepend to a list, trim it to max_len and refresh its expiry."""
        ...

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Return list items from start to stop inclusive (newest first)."""
        ...

    async def expire(self, key: str, ttl_seconds: float) -> None:
        """Reset the expiry of an existing key."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key of any type."""
        ...

    async def ping(self) -> bool:
        """Return True if the store is reachable."""
        ...


@dataclass(frozen=True)
class OutboundMessage:
    """A message handed to a delivery transport.

    Attributes:
        recipient: Address the transport delivers to (URL, email, channel).
        subject: Short subject line.
        body: Plain-text or pre-escaped body.
        payload: Structured form of the message for JSON transports.
    """

    recipient: str
    subject: str
    body: str
    payload: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DeliveryTransport(Protocol):
    """Port for outbound email/chat/webhook delivery."""

    async def send(self, message: OutboundMessage) -> bool:
        """Deliver one message.

        Returns:
            True on success, False on a transient failure.

        Raises:
            DeliveryError: On transient failures the caller may retry.
            PermanentDeliveryError: When retrying cannot help.
        """
        ...


@runtime_checkable
class LogSinkPort(Protocol):
    """Port for the external log-aggregation sink."""

    async def send_batch(self, entries: Sequence[LogEntry]) -> None:
        """Deliver a batch of entries, raising on failure."""
        ...


@runtime_checkable
class AlertChannelPort(Protocol):
    """Port for one alert delivery channel (webhook, email, chat).

    The dispatcher owns retries and timeouts; a channel only knows its
    recipients, how to admit them and how to render an alert for them.
    """

    name: str
    min_level: AlertLevel
    transport: DeliveryTransport

    def recipients(self) -> list[str]:
        """Return the configured recipients."""
        ...

    def is_valid_recipient(self, recipient: str) -> bool:
        """Return False for recipients that can never be delivered to."""
        ...

    async def admit(self, recipient: str) -> bool:
        """Return False if the recipient is currently rate limited."""
        ...

    def render(self, alert: Alert, recipient: str) -> OutboundMessage:
        """Build the escaped outbound message for one recipient."""
        ...
