"""vigilpy: an in-process observability pipeline.

Structured logging, error deduplication, alert dispatch and health checks
that never block or break the request path they instrument.
"""

from vigilpy.alerts import AlertDispatcher, ChannelResult, DispatchResult, RetryPolicy
from vigilpy.config import PipelineConfig, load_config
from vigilpy.core.models import (
    Alert,
    AlertLevel,
    ErrorCategory,
    HealthStatus,
    LogCategory,
    LogLevel,
    Severity,
)
from vigilpy.health import HealthOrchestrator, ProbeResult
from vigilpy.logger import StructuredLogger
from vigilpy.pipeline import Pipeline
from vigilpy.snapshot import collect_snapshot
from vigilpy.tasks import BackgroundTaskQueue
from vigilpy.tracker import ErrorTracker, TrackOptions

__version__ = "0.1.0"

__all__ = [
    "Alert",
    "AlertDispatcher",
    "AlertLevel",
    "BackgroundTaskQueue",
    "ChannelResult",
    "DispatchResult",
    "ErrorCategory",
    "ErrorTracker",
    "HealthOrchestrator",
    "HealthStatus",
    "LogCategory",
    "LogLevel",
    "Pipeline",
    "PipelineConfig",
    "ProbeResult",
    "RetryPolicy",
    "Severity",
    "StructuredLogger",
    "TrackOptions",
    "collect_snapshot",
    "load_config",
]
