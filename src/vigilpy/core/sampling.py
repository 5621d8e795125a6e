"""Per-level probabilistic sampling of log entries."""

import random
from collections.abc import Callable, Mapping

from vigilpy.core.models import LogLevel

DEFAULT_SAMPLE_RATES: dict[LogLevel, float] = {
    LogLevel.ERROR: 1.0,
    LogLevel.WARN: 1.0,
    LogLevel.INFO: 0.1,
    LogLevel.DEBUG: 0.01,
}

# Levels that are never dropped, whatever the configured rates say.
ALWAYS_KEEP = frozenset({LogLevel.ERROR, LogLevel.WARN})


class Sampler:
    """Decides per entry whether it is emitted.

    Args:
        rates: Per-level sample rates (defaults to DEFAULT_SAMPLE_RATES).
        override: Single runtime knob replacing the INFO and DEBUG rates.
        draw: Uniform [0, 1) random source, injectable for tests.
    """

    def __init__(
        self,
        rates: Mapping[LogLevel, float] | None = None,
        override: float | None = None,
        draw: Callable[[], float] | None = None,
    ) -> None:
        self._rates = dict(DEFAULT_SAMPLE_RATES)
        if rates:
            self._rates.update(rates)
        self._override = override
        self._draw = draw or random.random

    @property
    def override(self) -> float | None:
        return self._override

    def set_override(self, rate: float | None) -> None:
        """Change the runtime sample-rate knob (None restores the defaults)."""
        if rate is not None and not 0.0 <= rate <= 1.0:
            raise ValueError(f"sample rate must be within [0, 1], got {rate}")
        self._override = rate

    def rate_for(self, level: LogLevel) -> float:
        """Return the effective sample rate for a level."""
        if level in ALWAYS_KEEP:
            return 1.0
        if self._override is not None:
            return self._override
        return self._rates.get(level, DEFAULT_SAMPLE_RATES[LogLevel.DEBUG])

    def should_emit(self, level: LogLevel) -> bool:
        """Evaluate one uniform draw against the level's rate."""
        rate = self.rate_for(level)
        if rate >= 1.0:
            return True
        return self._draw() < rate
