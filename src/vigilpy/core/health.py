"""Health status aggregation."""

from collections.abc import Iterable

from vigilpy.core.models import HealthCheck, HealthStatus

_STATUS_RANK = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


def aggregate_status(checks: Iterable[HealthCheck]) -> HealthStatus:
    """Reduce individual check results to one overall status.

    Any unhealthy check makes the whole unhealthy; otherwise any degraded
    check makes it degraded. An empty set of checks is healthy.
    """
    worst = HealthStatus.HEALTHY
    for check in checks:
        if _STATUS_RANK[check.status] > _STATUS_RANK[worst]:
            worst = check.status
    return worst
