"""Pipeline configuration loaded from environment variables.

Every setting has a default; malformed values fall back to it instead of
failing startup.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from vigilpy.core.models import AlertLevel, LogLevel


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_float(
    value: str | None,
    default: float,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    if value is None:
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        return default
    if parsed != parsed:
        return default
    if minimum is not None and parsed < minimum:
        return default
    if maximum is not None and parsed > maximum:
        return default
    return parsed


def _parse_rate(value: str | None) -> float | None:
    rate = _parse_float(value, -1.0, minimum=0.0, maximum=1.0)
    return None if rate < 0 else rate


def _parse_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_level(value: str | None, default: LogLevel) -> LogLevel:
    if not value:
        return default
    name = value.strip().upper()
    if name == "WARNING":
        name = "WARN"
    try:
        return LogLevel(name)
    except ValueError:
        return default


def _optional(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class LoggerConfig:
    """Structured logger settings.

    Attributes:
        min_level: Entries below this level are discarded before sampling.
        sample_rate: Runtime override of the INFO/DEBUG sample rates.
        json_output: JSON lines (True) or human-readable text (False).
        sink_url: Log-aggregation endpoint; batching is off without it.
        sink_api_key: Bearer token for the sink.
        source: Source name sent with every batch.
        batch_size: Pending entries that trigger an immediate flush.
        flush_interval_seconds: Maximum age of the oldest unflushed entry.
        flush_timeout_seconds: Bound on one sink delivery.
        buffer_max: Length of the persisted recent-log list.
        buffer_ttl_seconds: Expiry of the recent-log list, refreshed per push.
        max_payload_chars: Character budget for serialized payloads.
    """

    min_level: LogLevel = LogLevel.INFO
    sample_rate: float | None = None
    json_output: bool = True
    sink_url: str | None = None
    sink_api_key: str | None = None
    source: str = "vigilpy"
    batch_size: int = 100
    flush_interval_seconds: float = 5.0
    flush_timeout_seconds: float = 10.0
    buffer_max: int = 1000
    buffer_ttl_seconds: float = 86400.0
    max_payload_chars: int = 4000


@dataclass(frozen=True)
class TrackerConfig:
    """Error tracker settings.

    Attributes:
        environment: Deployment environment recorded with each report.
        version: Application version recorded with each report.
        retention_seconds: Sliding TTL of deduplicated error state.
        recent_max: Length of the recent-fingerprint index.
        stats_bucket_seconds: Width of a statistics bucket.
        stats_ttl_seconds: Expiry of a statistics bucket.
        forward_critical: Forward critical reports to the alert dispatcher.
        alert_rate_limit: Alerts per fingerprint per window; 0 disables
            the limit.
        alert_rate_window_seconds: Window of the per-fingerprint limit.
    """

    environment: str = "development"
    version: str = "0.0.0"
    retention_seconds: float = 86400.0
    recent_max: int = 100
    stats_bucket_seconds: int = 300
    stats_ttl_seconds: float = 3600.0
    forward_critical: bool = True
    alert_rate_limit: int = 0
    alert_rate_window_seconds: float = 300.0


@dataclass(frozen=True)
class AlertConfig:
    """Alert dispatcher and channel settings."""

    enabled: bool = True
    webhook_urls: tuple[str, ...] = ()
    email_recipients: tuple[str, ...] = ()
    chat_webhook_urls: tuple[str, ...] = ()
    email_service_url: str | None = None
    email_service_api_key: str | None = None
    from_email: str = "alerts@localhost"
    email_min_level: AlertLevel = AlertLevel.WARNING
    email_rate_limit: int = 10
    email_rate_window_seconds: float = 3600.0
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    attempt_timeout_seconds: float = 10.0
    history_max: int = 500
    history_max_age_seconds: float = 86400.0


@dataclass(frozen=True)
class HealthConfig:
    """Health orchestrator settings."""

    default_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class StoreConfig:
    """Shared store settings."""

    url: str = "memory://"
    timeout_seconds: float = 2.0


@dataclass(frozen=True)
class PipelineConfig:
    """All pipeline settings."""

    logger: LoggerConfig = field(default_factory=LoggerConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    queue_maxsize: int = 1000
    queue_workers: int = 4

    @classmethod
    def default(cls) -> "PipelineConfig":
        return cls()


def load_config(env: Mapping[str, str] | None = None) -> PipelineConfig:
    """Build a PipelineConfig from environment variables.

    Args:
        env: Mapping to read instead of os.environ (for tests).

    Returns:
        The parsed configuration.
    """
    source = env if env is not None else os.environ
    logger = LoggerConfig(
        min_level=_parse_level(source.get("LOG_LEVEL"), LogLevel.INFO),
        sample_rate=_parse_rate(source.get("LOG_SAMPLE_RATE")),
        json_output=(source.get("LOG_FORMAT") or "json").strip().lower() != "text",
        sink_url=_optional(source.get("LOG_SERVICE_URL")),
        sink_api_key=_optional(source.get("LOG_SERVICE_API_KEY")),
        source=(source.get("LOG_SOURCE") or "vigilpy").strip(),
    )
    tracker = TrackerConfig(
        environment=(source.get("ENVIRONMENT") or "development").strip(),
        version=(source.get("APP_VERSION") or "0.0.0").strip(),
    )
    alerts = AlertConfig(
        enabled=_parse_bool(source.get("ALERTS_ENABLED"), True),
        webhook_urls=_parse_list(source.get("ALERT_WEBHOOK_URL")),
        email_recipients=_parse_list(source.get("ALERT_EMAIL_RECIPIENTS")),
        chat_webhook_urls=_parse_list(source.get("CHAT_WEBHOOK_URL")),
        email_service_url=_optional(source.get("EMAIL_SERVICE_URL")),
        email_service_api_key=_optional(source.get("EMAIL_SERVICE_API_KEY")),
        from_email=(source.get("ALERT_FROM_EMAIL") or "alerts@localhost").strip(),
    )
    health = HealthConfig(
        default_timeout_seconds=_parse_float(
            source.get("HEALTH_CHECK_TIMEOUT_SECONDS"), 5.0, minimum=0.001
        ),
    )
    store = StoreConfig(
        url=(
            _optional(source.get("STORE_URL"))
            or _optional(source.get("REDIS_URL"))
            or "memory://"
        ),
        timeout_seconds=_parse_float(
            source.get("STORE_TIMEOUT_SECONDS"), 2.0, minimum=0.001
        ),
    )
    return PipelineConfig(
        logger=logger, tracker=tracker, alerts=alerts, health=health, store=store
    )
