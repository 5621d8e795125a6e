"""BDD step definitions for pipeline scenarios.

Steps are synchronous; each scenario owns one event loop so the pipeline's
background workers survive from one step to the next.
"""

import asyncio
from collections.abc import Coroutine, Iterator
from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when
from tests.helpers import RecordingTransport

from vigilpy.adapters.channels import EmailChannel, WebhookChannel
from vigilpy.adapters.storage import InMemoryStore
from vigilpy.alerts import DeliveryStatus, DispatchResult
from vigilpy.config import LoggerConfig, PipelineConfig
from vigilpy.core.exceptions import PermanentDeliveryError
from vigilpy.core.models import AlertLevel, ErrorReport, HealthCheckResult, HealthStatus
from vigilpy.health import HealthOrchestrator
from vigilpy.pipeline import Pipeline


@dataclass
class PipelineScenario:
    """State shared between the steps of one scenario."""

    loop: asyncio.AbstractEventLoop = field(default_factory=asyncio.new_event_loop)
    pipeline: Pipeline | None = None
    health: HealthOrchestrator | None = None
    report: ErrorReport | None = None
    dispatch: DispatchResult | None = None
    health_result: HealthCheckResult | None = None

    def run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        return self.loop.run_until_complete(coro)

    def start(self, channels: list[Any]) -> Pipeline:
        async def _start() -> Pipeline:
            pipeline = Pipeline(
                InMemoryStore(),
                PipelineConfig(logger=LoggerConfig(sample_rate=1.0)),
                channels=channels,
                sleep=_no_sleep,
            )
            pipeline.start()
            return pipeline

        self.pipeline = self.run(_start())
        return self.pipeline

    def close(self) -> None:
        if self.pipeline is not None:
            self.run(self.pipeline.aclose())
        pending = asyncio.all_tasks(self.loop)
        for task in pending:
            task.cancel()
        if pending:
            self.run(asyncio.gather(*pending, return_exceptions=True))
        self.loop.close()


async def _no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def ctx() -> Iterator[PipelineScenario]:
    """Fresh scenario state with its own event loop."""
    scenario = PipelineScenario()
    yield scenario
    scenario.close()


# === Error tracking ===


@given("a running pipeline")
def step_running_pipeline(ctx: PipelineScenario) -> None:
    ctx.start(channels=[])


@when(
    parsers.parse(
        'a "{name}" with message "{message}" is tracked on "{endpoint}" {times:d} times'
    )
)
def step_track_errors(
    ctx: PipelineScenario, name: str, message: str, endpoint: str, times: int
) -> None:
    assert ctx.pipeline is not None
    error_type = type(name, (Exception,), {})

    async def _track() -> None:
        assert ctx.pipeline is not None
        for _ in range(times):
            ctx.report = ctx.pipeline.tracker.track(
                error_type(message), {"endpoint": endpoint, "method": "POST"}
            )
        assert await ctx.pipeline.drain(timeout=2)

    ctx.run(_track())


@then(parsers.parse('the error is categorized as "{category}" with severity "{severity}"'))
def step_error_classified(ctx: PipelineScenario, category: str, severity: str) -> None:
    assert ctx.report is not None
    assert ctx.report.category.value == category
    assert ctx.report.severity.value == severity


@then(parsers.parse("the error has been seen {count:d} times"))
def step_error_count(ctx: PipelineScenario, count: int) -> None:
    assert ctx.pipeline is not None
    entries = ctx.run(ctx.pipeline.tracker.get_recent())
    assert len(entries) == 1
    assert entries[0].count == count
    assert entries[0].first_seen <= entries[0].last_seen


# === Alert dispatch ===


@given("a running pipeline with a failing webhook and a working email channel")
def step_pipeline_with_channels(ctx: PipelineScenario) -> None:
    ctx.start(
        channels=[
            WebhookChannel(
                RecordingTransport([PermanentDeliveryError("410 Gone")]),
                ["https://hooks.example.com/gone"],
            ),
            EmailChannel(RecordingTransport(), ["ops@example.com"]),
        ]
    )


@when(parsers.parse('a "{level}" alert "{message}" is sent from "{source}"'))
def step_send_alert(ctx: PipelineScenario, level: str, message: str, source: str) -> None:
    async def _send() -> DispatchResult | None:
        assert ctx.pipeline is not None
        ctx.pipeline.dispatcher.send_alert(AlertLevel(level), message, source)
        assert await ctx.pipeline.drain(timeout=2)
        return ctx.pipeline.dispatcher.last_result

    ctx.dispatch = ctx.run(_send())


@then(parsers.parse('the "{channel}" channel reports "{status}"'))
def step_channel_status(ctx: PipelineScenario, channel: str, status: str) -> None:
    assert ctx.dispatch is not None
    assert ctx.dispatch.for_channel(channel).status is DeliveryStatus(status)


@then("the alert is in the recent history")
def step_alert_in_history(ctx: PipelineScenario) -> None:
    assert ctx.pipeline is not None and ctx.dispatch is not None
    recent = ctx.pipeline.dispatcher.get_recent_alerts()
    assert recent[0].id == ctx.dispatch.alert.id


# === Health ===


@given("a health orchestrator")
def step_health_orchestrator(ctx: PipelineScenario) -> None:
    ctx.health = HealthOrchestrator(version="1.0.0")


@given(parsers.parse('a "{status}" probe named "{name}"'))
def step_probe(ctx: PipelineScenario, status: str, name: str) -> None:
    assert ctx.health is not None

    async def probe() -> HealthStatus:
        return HealthStatus(status)

    ctx.health.register(name, probe)


@given(parsers.parse('a probe named "{name}" that hangs past its timeout'))
def step_hanging_probe(ctx: PipelineScenario, name: str) -> None:
    assert ctx.health is not None

    async def probe() -> HealthStatus:
        await asyncio.sleep(30)
        return HealthStatus.HEALTHY

    ctx.health.register(name, probe, timeout=0.05)


@when("the health checks run")
def step_run_health(ctx: PipelineScenario) -> None:
    assert ctx.health is not None
    ctx.health_result = ctx.run(ctx.health.run_all())


@then(parsers.parse('the system is "{status}" with {count:d} checks'))
def step_health_status(ctx: PipelineScenario, status: str, count: int) -> None:
    assert ctx.health_result is not None
    assert ctx.health_result.status is HealthStatus(status)
    assert len(ctx.health_result.checks) == count


@then(parsers.parse('the "{name}" check reports a timeout'))
def step_check_timeout(ctx: PipelineScenario, name: str) -> None:
    assert ctx.health_result is not None
    check = next(c for c in ctx.health_result.checks if c.name == name)
    assert check.status is HealthStatus.UNHEALTHY
    assert check.message == "timed out after 0.05s"
