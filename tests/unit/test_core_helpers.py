"""Tests for health aggregation and log-level helpers."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vigilpy.core.health import aggregate_status
from vigilpy.core.logs import (
    level_for_duration,
    level_for_status,
    mask_address,
    performance_threshold,
)
from vigilpy.core.models import HealthCheck, HealthStatus, LogLevel


def _check(status: HealthStatus) -> HealthCheck:
    return HealthCheck(name="c", status=status, response_time_ms=1.0, timestamp=0.0)


class TestAggregateStatus:
    @pytest.mark.tra("Core.Health.Aggregate.Empty")
    @pytest.mark.tier(0)
    @pytest.mark.health
    def test_empty_set_is_healthy(self) -> None:
        assert aggregate_status([]) is HealthStatus.HEALTHY

    @pytest.mark.tra("Core.Health.Aggregate.Worst")
    @pytest.mark.tier(0)
    @pytest.mark.health
    @given(statuses=st.lists(st.sampled_from(HealthStatus), max_size=8))
    def test_worst_status_wins(self, statuses: list[HealthStatus]) -> None:
        result = aggregate_status([_check(s) for s in statuses])

        if HealthStatus.UNHEALTHY in statuses:
            assert result is HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            assert result is HealthStatus.DEGRADED
        else:
            assert result is HealthStatus.HEALTHY


class TestLogLevels:
    @pytest.mark.tra("Core.Logs.Duration")
    @pytest.mark.tier(0)
    @pytest.mark.core
    @pytest.mark.parametrize(
        ("duration_ms", "level", "threshold"),
        [
            (10_001, LogLevel.ERROR, "SLOW"),
            (10_000, LogLevel.WARN, "SLOW"),
            (5_001, LogLevel.WARN, "SLOW"),
            (5_000, LogLevel.INFO, "ACCEPTABLE"),
            (1_001, LogLevel.INFO, "ACCEPTABLE"),
            (1_000, LogLevel.DEBUG, "FAST"),
            (3, LogLevel.DEBUG, "FAST"),
        ],
    )
    def test_duration_boundaries(
        self, duration_ms: float, level: LogLevel, threshold: str
    ) -> None:
        assert level_for_duration(duration_ms) is level
        assert performance_threshold(duration_ms) == threshold

    @pytest.mark.tra("Core.Logs.Status")
    @pytest.mark.tier(0)
    @pytest.mark.core
    @pytest.mark.parametrize(
        ("status", "level"),
        [
            (503, LogLevel.ERROR),
            (500, LogLevel.ERROR),
            (404, LogLevel.WARN),
            (301, LogLevel.INFO),
            (200, LogLevel.DEBUG),
        ],
    )
    def test_status_levels(self, status: int, level: LogLevel) -> None:
        assert level_for_status(status) is level

    @pytest.mark.tra("Core.Logs.MaskAddress")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_mask_address(self) -> None:
        address = "0x1234567890abcdef1234567890abcdef12345678"

        assert mask_address(address) == "0x1234...5678"
        assert mask_address("0xshort") == "0xshort"
        assert mask_address(None) is None
