"""Health-check orchestrator: concurrent probes with per-probe timeouts."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from vigilpy.config import HealthConfig
from vigilpy.core.exceptions import UnknownCheckError
from vigilpy.core.health import aggregate_status
from vigilpy.core.models import HealthCheck, HealthCheckResult, HealthStatus

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """Detailed probe outcome.

    A probe may return a bare HealthStatus, a ProbeResult, or a complete
    HealthCheck.
    """

    status: HealthStatus
    message: str | None = None
    metadata: dict[str, Any] | None = None


ProbeOutcome = HealthStatus | ProbeResult | HealthCheck
Probe = Callable[[], Awaitable[ProbeOutcome]]


@dataclass(frozen=True)
class _Registration:
    probe: Probe
    timeout: float


def _discard_outcome(task: asyncio.Task) -> None:
    # Consume the result of an abandoned probe so it is never reported.
    if not task.cancelled():
        task.exception()


class HealthOrchestrator:
    """Runs registered probes on demand.

    Args:
        config: Default timeout settings.
        version: Application version reported with every result.
        clock: Time source for result timestamps.
    """

    def __init__(
        self,
        config: HealthConfig | None = None,
        version: str = "",
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or HealthConfig()
        self.version = version
        self._clock = clock or time.time
        self._checks: dict[str, _Registration] = {}

    def register(self, name: str, probe: Probe, timeout: float | None = None) -> None:
        """Register a probe under a unique name.

        Raises:
            TypeError: If probe is not callable.
            ValueError: If the name is taken or the timeout is not positive.
        """
        if not callable(probe):
            raise TypeError(f"Probe for '{name}' must be callable")
        if name in self._checks:
            raise ValueError(f"Health check '{name}' is already registered")
        effective = self.config.default_timeout_seconds if timeout is None else timeout
        if effective <= 0:
            raise ValueError(f"Timeout for '{name}' must be positive, got {effective}")
        self._checks[name] = _Registration(probe, effective)

    def unregister(self, name: str) -> bool:
        """Remove a probe. Returns False if it was not registered."""
        return self._checks.pop(name, None) is not None

    @property
    def registered_checks(self) -> list[str]:
        return list(self._checks)

    async def run_one(self, name: str) -> HealthCheck:
        """Run a single probe by name.

        Raises:
            UnknownCheckError: If no probe has that name.
        """
        registration = self._checks.get(name)
        if registration is None:
            raise UnknownCheckError(name)
        return await self._run(name, registration)

    async def run_all(self) -> HealthCheckResult:
        """Run every probe concurrently and aggregate the results."""
        checks = await asyncio.gather(
            *(self._run(name, reg) for name, reg in list(self._checks.items()))
        )
        return HealthCheckResult(
            status=aggregate_status(checks),
            checks=list(checks),
            timestamp=self._clock(),
            version=self.version,
        )

    async def _run(self, name: str, registration: _Registration) -> HealthCheck:
        started = time.perf_counter()
        try:
            task = asyncio.ensure_future(registration.probe())
        except Exception as exc:
            return self._unhealthy(name, str(exc) or type(exc).__name__, started)

        done, _ = await asyncio.wait({task}, timeout=registration.timeout)
        if not done:
            task.cancel()
            task.add_done_callback(_discard_outcome)
            LOGGER.warning("Health check %s timed out after %ss", name, registration.timeout)
            return HealthCheck(
                name=name,
                status=HealthStatus.UNHEALTHY,
                response_time_ms=registration.timeout * 1000,
                timestamp=self._clock(),
                message=f"timed out after {registration.timeout}s",
            )

        if task.cancelled():
            return self._unhealthy(name, "probe was cancelled", started)
        exc = task.exception()
        if exc is not None:
            LOGGER.info("Health check %s failed: %r", name, exc)
            return self._unhealthy(name, str(exc) or type(exc).__name__, started)
        return self._to_check(name, task.result(), started)

    def _elapsed_ms(self, started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 3)

    def _unhealthy(self, name: str, message: str, started: float) -> HealthCheck:
        return HealthCheck(
            name=name,
            status=HealthStatus.UNHEALTHY,
            response_time_ms=self._elapsed_ms(started),
            timestamp=self._clock(),
            message=message,
        )

    def _to_check(self, name: str, outcome: Any, started: float) -> HealthCheck:
        if isinstance(outcome, HealthCheck):
            return outcome
        if isinstance(outcome, ProbeResult):
            status, message, metadata = outcome.status, outcome.message, outcome.metadata
        else:
            try:
                status, message, metadata = HealthStatus(outcome), None, None
            except ValueError:
                return self._unhealthy(
                    name, f"probe returned unsupported value {outcome!r}", started
                )
        return HealthCheck(
            name=name,
            status=status,
            response_time_ms=self._elapsed_ms(started),
            timestamp=self._clock(),
            message=message,
            metadata=metadata,
        )
