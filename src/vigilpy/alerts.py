"""Alert dispatcher: audit trail, bounded history and multi-channel delivery."""

import asyncio
import logging
import secrets
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from vigilpy.config import AlertConfig
from vigilpy.core.exceptions import DeliveryError, PermanentDeliveryError
from vigilpy.core.models import (
    Alert,
    AlertLevel,
    LogCategory,
    LogLevel,
    coerce_enum,
)
from vigilpy.core.ports import AlertChannelPort, OutboundMessage
from vigilpy.core.redaction import redact
from vigilpy.logger import StructuredLogger
from vigilpy.tasks import BackgroundTaskQueue

LOGGER = logging.getLogger(__name__)

_AUDIT_LEVELS = {
    AlertLevel.INFO: LogLevel.INFO,
    AlertLevel.WARNING: LogLevel.WARN,
    AlertLevel.ERROR: LogLevel.ERROR,
    AlertLevel.CRITICAL: LogLevel.ERROR,
}


class DeliveryStatus(str, Enum):
    """Outcome of one channel for one alert."""

    DELIVERED = "delivered"
    PARTIAL = "partial"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ChannelResult:
    """Per-channel delivery outcome.

    Attributes:
        channel: Channel name.
        status: Overall status of the channel.
        delivered: Recipients that received the alert.
        rate_limited: Recipients skipped by the rate limiter.
        invalid: Recipients rejected by validation.
        failed: Recipients whose delivery failed after retries.
        attempts: Delivery attempts across all recipients.
        error: Last delivery error, if any.
    """

    channel: str
    status: DeliveryStatus
    delivered: tuple[str, ...] = ()
    rate_limited: tuple[str, ...] = ()
    invalid: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    attempts: int = 0
    error: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    alert: Alert
    channels: list[ChannelResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return any(result.delivered for result in self.channels)

    def for_channel(self, name: str) -> ChannelResult | None:
        return next((r for r in self.channels if r.channel == name), None)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient delivery failures.

    Attributes:
        max_attempts: Attempts per recipient, including the first.
        base_delay: Delay after the first failed attempt, in seconds.
        max_delay: Upper bound on any delay.
        attempt_timeout: Bound on a single attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    attempt_timeout: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Return the delay after the given failed attempt (1-based)."""
        return min(self.max_delay, self.base_delay * 2 ** (attempt - 1))

    @classmethod
    def from_config(cls, config: AlertConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            attempt_timeout=config.attempt_timeout_seconds,
        )


def _channel_status(
    delivered: list[str], rate_limited: list[str], failed: list[str]
) -> DeliveryStatus:
    if delivered:
        return DeliveryStatus.PARTIAL if rate_limited or failed else DeliveryStatus.DELIVERED
    if rate_limited and not failed:
        return DeliveryStatus.RATE_LIMITED
    return DeliveryStatus.FAILED


class AlertDispatcher:
    """Records alerts and fans them out to delivery channels.

    send_alert() returns at once; delivery runs on the background queue.
    No channel failure ever reaches the caller.

    Args:
        channels: Delivery channels.
        logger: Structured logger for the audit trail, optional.
        tasks: Background queue running deliveries.
        config: Dispatcher settings.
        retry: Backoff policy (built from config if omitted).
        sleep: Awaitable sleep, injectable for tests.
        clock: Time source for alert timestamps.
    """

    def __init__(
        self,
        channels: Sequence[AlertChannelPort] = (),
        logger: StructuredLogger | None = None,
        tasks: BackgroundTaskQueue | None = None,
        config: AlertConfig | None = None,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or AlertConfig()
        self.channels = list(channels)
        self.retry = retry or RetryPolicy.from_config(self.config)
        self._logger = logger
        self._tasks = tasks or BackgroundTaskQueue()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._history: deque[Alert] = deque(maxlen=self.config.history_max)
        self._delivery_counts: dict[str, int] = {status.value: 0 for status in DeliveryStatus}
        self.last_result: DispatchResult | None = None

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    # --- Sending ---

    def send_alert(
        self,
        level: AlertLevel | str,
        message: str,
        source: str,
        metadata: dict[str, Any] | None = None,
    ) -> Alert | None:
        """Record an alert and schedule its delivery.

        Returns:
            The alert, or None if alerting is disabled.
        """
        if not self.enabled:
            return None
        now = self._clock()
        alert = Alert(
            id=f"alert_{int(now * 1000)}_{secrets.token_hex(4)}",
            level=coerce_enum(AlertLevel, level, AlertLevel.ERROR),
            message=message,
            source=source,
            timestamp=now,
            metadata=redact(metadata),
        )
        with self._lock:
            self._history.append(alert)
        self._audit(alert)
        if self.channels:
            self._tasks.submit(lambda: self.deliver(alert), "alert.deliver")
        return alert

    def info(
        self, message: str, source: str, metadata: dict[str, Any] | None = None
    ) -> Alert | None:
        return self.send_alert(AlertLevel.INFO, message, source, metadata)

    def warning(
        self, message: str, source: str, metadata: dict[str, Any] | None = None
    ) -> Alert | None:
        return self.send_alert(AlertLevel.WARNING, message, source, metadata)

    def error(
        self, message: str, source: str, metadata: dict[str, Any] | None = None
    ) -> Alert | None:
        return self.send_alert(AlertLevel.ERROR, message, source, metadata)

    def critical(
        self, message: str, source: str, metadata: dict[str, Any] | None = None
    ) -> Alert | None:
        return self.send_alert(AlertLevel.CRITICAL, message, source, metadata)

    def _audit(self, alert: Alert) -> None:
        if self._logger is None:
            return
        self._logger.log(
            _AUDIT_LEVELS[alert.level],
            LogCategory.INFRASTRUCTURE,
            f"Alert [{alert.level.value}] {alert.source}: {alert.message}",
            {
                "alert": {
                    "id": alert.id,
                    "level": alert.level.value,
                    "source": alert.source,
                    "metadata": alert.metadata,
                }
            },
        )

    # --- Delivery ---

    async def deliver(self, alert: Alert) -> DispatchResult:
        """Deliver an alert through every channel concurrently.

        Returns:
            One ChannelResult per channel; never raises.
        """
        outcomes = await asyncio.gather(
            *(self._deliver_channel(channel, alert) for channel in self.channels),
            return_exceptions=True,
        )
        results: list[ChannelResult] = []
        for channel, outcome in zip(self.channels, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                LOGGER.warning(
                    "Channel %s crashed delivering %s",
                    channel.name,
                    alert.id,
                    exc_info=outcome,
                )
                outcome = ChannelResult(
                    channel=channel.name,
                    status=DeliveryStatus.FAILED,
                    failed=tuple(channel.recipients()),
                    error=repr(outcome),
                )
            results.append(outcome)
        with self._lock:
            for result in results:
                self._delivery_counts[result.status.value] += 1
        result = DispatchResult(alert=alert, channels=results)
        self.last_result = result
        for failed in (r for r in results if r.status is DeliveryStatus.FAILED):
            LOGGER.warning(
                "Alert %s not delivered via %s: %s", alert.id, failed.channel, failed.error
            )
        return result

    async def _deliver_channel(
        self, channel: AlertChannelPort, alert: Alert
    ) -> ChannelResult:
        if alert.level.rank < channel.min_level.rank:
            return ChannelResult(channel=channel.name, status=DeliveryStatus.SKIPPED)
        delivered: list[str] = []
        rate_limited: list[str] = []
        invalid: list[str] = []
        failed: list[str] = []
        attempts = 0
        last_error: str | None = None
        for recipient in channel.recipients():
            if not channel.is_valid_recipient(recipient):
                invalid.append(recipient)
                continue
            if not await channel.admit(recipient):
                rate_limited.append(recipient)
                continue
            message = channel.render(alert, recipient)
            ok, used, error = await self._send_with_retry(channel, message)
            attempts += used
            if ok:
                delivered.append(recipient)
            else:
                failed.append(recipient)
                last_error = error
        if invalid and not (delivered or rate_limited or failed):
            last_error = "no valid recipients"
        return ChannelResult(
            channel=channel.name,
            status=_channel_status(delivered, rate_limited, failed),
            delivered=tuple(delivered),
            rate_limited=tuple(rate_limited),
            invalid=tuple(invalid),
            failed=tuple(failed),
            attempts=attempts,
            error=last_error,
        )

    async def _send_with_retry(
        self, channel: AlertChannelPort, message: OutboundMessage
    ) -> tuple[bool, int, str | None]:
        policy = self.retry
        last_error: str | None = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                ok = await asyncio.wait_for(
                    channel.transport.send(message), policy.attempt_timeout
                )
            except PermanentDeliveryError as exc:
                return False, attempt, str(exc)
            except TimeoutError:
                last_error = f"timed out after {policy.attempt_timeout}s"
            except DeliveryError as exc:
                last_error = str(exc)
            except Exception as exc:
                LOGGER.warning("Transport for %s raised", channel.name, exc_info=True)
                last_error = repr(exc)
            else:
                if ok:
                    return True, attempt, None
                last_error = "transport reported failure"
            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                LOGGER.info(
                    "%s delivery attempt %d failed (%s); retrying in %.1fs",
                    channel.name,
                    attempt,
                    last_error,
                    delay,
                )
                await self._sleep(delay)
        return False, policy.max_attempts, last_error

    # --- History ---

    def _prune(self, max_age_seconds: float) -> int:
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            before = len(self._history)
            kept = [alert for alert in self._history if alert.timestamp > cutoff]
            self._history.clear()
            self._history.extend(kept)
            return before - len(kept)

    def get_recent_alerts(self, limit: int = 50) -> list[Alert]:
        """Return the newest alerts first, after dropping expired ones."""
        self._prune(self.config.history_max_age_seconds)
        with self._lock:
            alerts = list(self._history)
        alerts.sort(key=lambda alert: alert.timestamp, reverse=True)
        return alerts[:limit]

    def clear_old_alerts(self, older_than_hours: float = 24) -> int:
        """Drop alerts older than the given age.

        Returns:
            Number of alerts removed.
        """
        return self._prune(older_than_hours * 3600)

    def get_alert_stats(self) -> dict[str, Any]:
        """Summarize the alert history and delivery outcomes."""
        alerts = self.get_recent_alerts(self.config.history_max)
        hour_ago = self._clock() - 3600
        by_level: dict[str, int] = {level.value: 0 for level in AlertLevel}
        by_source: dict[str, int] = {}
        for alert in alerts:
            by_level[alert.level.value] += 1
            by_source[alert.source] = by_source.get(alert.source, 0) + 1
        with self._lock:
            deliveries = dict(self._delivery_counts)
        return {
            "enabled": self.enabled,
            "total": len(alerts),
            "last_hour": sum(1 for alert in alerts if alert.timestamp > hour_ago),
            "by_level": by_level,
            "by_source": by_source,
            "deliveries": deliveries,
            "channels": [channel.name for channel in self.channels],
        }
