"""Tests for per-level log sampling."""

import random

import pytest

from vigilpy.core.models import LogLevel
from vigilpy.core.sampling import DEFAULT_SAMPLE_RATES, Sampler


@pytest.mark.tra("Core.Sampling.Defaults")
@pytest.mark.tier(0)
@pytest.mark.core
def test_default_rates() -> None:
    sampler = Sampler()

    assert sampler.rate_for(LogLevel.ERROR) == 1.0
    assert sampler.rate_for(LogLevel.WARN) == 1.0
    assert sampler.rate_for(LogLevel.INFO) == DEFAULT_SAMPLE_RATES[LogLevel.INFO] == 0.1
    assert sampler.rate_for(LogLevel.DEBUG) == 0.01


@pytest.mark.tra("Core.Sampling.AlwaysKeep")
@pytest.mark.tier(0)
@pytest.mark.core
@pytest.mark.parametrize("level", [LogLevel.ERROR, LogLevel.WARN])
def test_error_and_warn_are_never_sampled_out(level: LogLevel) -> None:
    sampler = Sampler(override=0.0, draw=lambda: 0.999999)

    assert all(sampler.should_emit(level) for _ in range(1000))


@pytest.mark.tra("Core.Sampling.Override")
@pytest.mark.tier(0)
@pytest.mark.core
def test_override_replaces_info_and_debug_rates() -> None:
    sampler = Sampler(override=0.5)

    assert sampler.rate_for(LogLevel.INFO) == 0.5
    assert sampler.rate_for(LogLevel.DEBUG) == 0.5

    sampler.set_override(None)

    assert sampler.rate_for(LogLevel.INFO) == 0.1


@pytest.mark.tra("Core.Sampling.Override.Range")
@pytest.mark.tier(0)
@pytest.mark.core
@pytest.mark.parametrize("rate", [-0.1, 1.5])
def test_override_outside_unit_interval_is_rejected(rate: float) -> None:
    with pytest.raises(ValueError, match="sample rate"):
        Sampler().set_override(rate)


@pytest.mark.tra("Core.Sampling.Draw")
@pytest.mark.tier(0)
@pytest.mark.core
def test_draw_is_compared_to_rate() -> None:
    draws = iter([0.05, 0.15])
    sampler = Sampler(draw=lambda: next(draws))

    assert sampler.should_emit(LogLevel.INFO)
    assert not sampler.should_emit(LogLevel.INFO)


@pytest.mark.tra("Core.Sampling.DebugRate")
@pytest.mark.tier(0)
@pytest.mark.core
def test_debug_is_kept_about_one_percent_of_the_time() -> None:
    rng = random.Random(1234)
    sampler = Sampler(draw=rng.random)

    kept = sum(sampler.should_emit(LogLevel.DEBUG) for _ in range(100_000))

    assert 700 <= kept <= 1300
