"""Composition root wiring the store, queue and the four components."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from types import TracebackType
from typing import Any

import httpx

from vigilpy.adapters.channels import (
    ChatChannel,
    EmailChannel,
    HttpEmailTransport,
    HttpJsonTransport,
    SlidingWindowRateLimiter,
    WebhookChannel,
)
from vigilpy.adapters.probes import store_probe
from vigilpy.adapters.sinks import HttpLogSink
from vigilpy.adapters.storage import BoundedStore, create_store
from vigilpy.alerts import AlertDispatcher
from vigilpy.config import AlertConfig, PipelineConfig, load_config
from vigilpy.core.ports import AlertChannelPort, KeyValueStorePort, LogSinkPort
from vigilpy.health import HealthOrchestrator
from vigilpy.logger import StructuredLogger
from vigilpy.tasks import BackgroundTaskQueue
from vigilpy.tracker import ErrorTracker

LOGGER = logging.getLogger(__name__)

STORE_CHECK = "store"


def build_channels(
    config: AlertConfig, client: httpx.AsyncClient | None = None
) -> list[AlertChannelPort]:
    """Create the delivery channels configured in AlertConfig.

    Email needs both recipients and an email service URL; channels without
    recipients are left out.
    """
    channels: list[AlertChannelPort] = []
    http = HttpJsonTransport(client)
    if config.webhook_urls:
        channels.append(WebhookChannel(http, list(config.webhook_urls)))
    if config.email_recipients and config.email_service_url:
        transport = HttpEmailTransport(
            config.email_service_url,
            config.email_service_api_key or "",
            config.from_email,
            client,
        )
        limiter = SlidingWindowRateLimiter(
            config.email_rate_limit, config.email_rate_window_seconds
        )
        channels.append(
            EmailChannel(
                transport,
                list(config.email_recipients),
                min_level=config.email_min_level,
                limiter=limiter,
            )
        )
    elif config.email_recipients:
        LOGGER.warning("Email recipients configured without EMAIL_SERVICE_URL")
    if config.chat_webhook_urls:
        channels.append(ChatChannel(http, list(config.chat_webhook_urls)))
    return channels


class Pipeline:
    """Owns every pipeline component and their shared resources.

    Args:
        store: Store adapter; wrapped in a BoundedStore unless it is one.
        config: Pipeline settings.
        channels: Alert channels (built from config.alerts if omitted).
        sink: Log-aggregation sink, optional.
        clock: Time source shared by all components.
        sleep: Awaitable sleep used for alert retry backoff.

    Example:
        ```python
        async with Pipeline.from_config() as pipeline:
            pipeline.logger.info("started")
            pipeline.tracker.track(exc, {"endpoint": "/deposit"})
        ```
    """

    def __init__(
        self,
        store: KeyValueStorePort,
        config: PipelineConfig | None = None,
        channels: Sequence[AlertChannelPort] | None = None,
        sink: LogSinkPort | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        if isinstance(store, BoundedStore):
            self.store = store
        else:
            self.store = BoundedStore(store, self.config.store.timeout_seconds)
        self.sink = sink
        self.tasks = BackgroundTaskQueue(
            maxsize=self.config.queue_maxsize, workers=self.config.queue_workers
        )
        self.logger = StructuredLogger(
            self.store, self.tasks, sink, self.config.logger, clock=clock
        )
        self.dispatcher = AlertDispatcher(
            build_channels(self.config.alerts) if channels is None else channels,
            logger=self.logger,
            tasks=self.tasks,
            config=self.config.alerts,
            sleep=sleep,
            clock=clock,
        )
        self.tracker = ErrorTracker(
            self.store, self.tasks, self.config.tracker, self.dispatcher, clock
        )
        self.health = HealthOrchestrator(
            self.config.health, version=self.config.tracker.version, clock=clock
        )
        self.health.register(STORE_CHECK, store_probe(self.store))

    @classmethod
    def from_config(cls, config: PipelineConfig | None = None, **kwargs: Any) -> "Pipeline":
        """Build a pipeline from configuration (environment if omitted)."""
        config = config or load_config()
        store = create_store(config.store.url)
        sink = kwargs.pop("sink", None)
        if sink is None and config.logger.sink_url:
            sink = HttpLogSink(
                config.logger.sink_url,
                api_key=config.logger.sink_api_key,
                source=config.logger.source,
            )
        return cls(store, config, sink=sink, **kwargs)

    def start(self) -> None:
        """Start the background workers and the periodic log flush.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        self.tasks.start()
        self.logger.start()

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued background work, including jobs it spawns."""
        return await self.tasks.drain(timeout)

    async def aclose(self, timeout: float | None = 5.0) -> None:
        """Finish queued work, flush logs and release resources."""
        await self.tasks.drain(timeout)
        await self.logger.aclose()
        await self.tasks.stop(timeout)
        closeables: list[Any] = [self.sink, self.store]
        for channel in self.dispatcher.channels:
            closeables.append(getattr(channel, "transport", None))
        seen: set[int] = set()
        for resource in closeables:
            close = getattr(resource, "aclose", None) or getattr(resource, "close", None)
            if close is None or id(resource) in seen:
                continue
            seen.add(id(resource))
            try:
                result = close()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.warning("Failed to close %r", resource, exc_info=True)

    async def __aenter__(self) -> "Pipeline":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
