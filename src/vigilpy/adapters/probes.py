"""Ready-made health probes for common dependencies."""

import httpx

from vigilpy.core.models import HealthStatus
from vigilpy.core.ports import KeyValueStorePort
from vigilpy.health import Probe, ProbeResult


def store_probe(store: KeyValueStorePort) -> Probe:
    """Probe that pings the shared store.

    A failed ping is unhealthy; exceptions propagate to the orchestrator,
    which reports them as unhealthy with the error message.
    """

    async def probe() -> ProbeResult:
        if await store.ping():
            return ProbeResult(HealthStatus.HEALTHY)
        return ProbeResult(HealthStatus.UNHEALTHY, "store did not answer ping")

    return probe


def http_probe(
    url: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 5.0,
) -> Probe:
    """Probe that issues GET against a URL.

    2xx/3xx is healthy, 4xx degraded, 5xx unhealthy.

    Args:
        url: Endpoint to probe.
        client: Shared AsyncClient, optional.
        timeout: Request timeout for a client created by the probe.
    """

    async def probe() -> ProbeResult:
        if client is not None:
            response = await client.get(url)
        else:
            async with httpx.AsyncClient(timeout=timeout) as own:
                response = await own.get(url)
        metadata = {"status_code": response.status_code}
        if response.status_code >= 500:
            return ProbeResult(
                HealthStatus.UNHEALTHY, f"HTTP {response.status_code}", metadata
            )
        if response.status_code >= 400:
            return ProbeResult(
                HealthStatus.DEGRADED, f"HTTP {response.status_code}", metadata
            )
        return ProbeResult(HealthStatus.HEALTHY, metadata=metadata)

    return probe
