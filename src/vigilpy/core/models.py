"""Core domain models for the observability pipeline."""

import logging
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


class LogLevel(str, Enum):
    """Log levels, most severe first."""

    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DEBUG"


class LogCategory(str, Enum):
    """Domain tag attached to every log entry."""

    API = "API"
    PAYMENT = "PAYMENT"
    TRADING = "TRADING"
    AUTH = "AUTH"
    WEBHOOK = "WEBHOOK"
    DATABASE = "DATABASE"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    USER_ACTION = "USER_ACTION"


class Severity(str, Enum):
    """Error severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error category assigned by the tracker."""

    PAYMENT = "payment"
    TRADING = "trading"
    AUTH = "auth"
    API = "api"
    INFRASTRUCTURE = "infrastructure"
    USER_ERROR = "user_error"


class AlertLevel(str, Enum):
    """Alert level, least severe first."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _ALERT_LEVEL_ORDER.index(self)


_ALERT_LEVEL_ORDER = list(AlertLevel)


class HealthStatus(str, Enum):
    """Health of a single probe or of the whole system."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


def coerce_enum(enum_type: type[E], value: Any, default: E) -> E:
    """Parse an enum member, falling back to default on unknown values.

    Instrumented call sites pass plain strings; a typo there must not raise.
    """
    try:
        return enum_type(value)
    except ValueError:
        LOGGER.warning(
            "Unknown %s %r; using %s", enum_type.__name__, value, default.value
        )
        return default


@dataclass(frozen=True)
class ErrorDetail:
    """Serialized error payload.

    Attributes:
        name: Exception class name (e.g. ValueError).
        message: Exception message.
        stack: Formatted traceback, if one was available.
    """

    name: str
    message: str
    stack: str | None = None

    @classmethod
    def from_error(cls, error: BaseException | str) -> "ErrorDetail":
        """Build an ErrorDetail from an exception or a bare message."""
        if isinstance(error, str):
            return cls(name="Error", message=error)
        stack = None
        if error.__traceback__ is not None:
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        return cls(name=type(error).__name__, message=str(error), stack=stack)


@dataclass(frozen=True)
class LogEntry:
    """A structured log entry.

    Attributes:
        timestamp: Unix timestamp in seconds.
        level: Log level.
        category: Domain tag.
        message: The log message.
        context: Redacted structured fields.
        request_id: Opaque per-request identifier.
        duration_ms: Duration of the logged operation, if any.
        error: Error attached to the entry, if any.
    """

    timestamp: float
    level: LogLevel
    category: LogCategory
    message: str
    context: dict[str, Any] | None = None
    request_id: str | None = None
    duration_ms: float | None = None
    error: ErrorDetail | None = None


@dataclass(frozen=True)
class ErrorContext:
    """Where and for whom an error happened.

    Attributes:
        timestamp: Unix timestamp of the occurrence.
        environment: Deployment environment name.
        version: Application version.
        user_id: Acting user, if known.
        wallet_address: Acting wallet, masked.
        request_id: Request identifier.
        endpoint: Request path.
        method: HTTP method.
        user_agent: Client user agent.
        extra: Additional redacted fields supplied by the call site.
    """

    timestamp: float
    environment: str
    version: str
    user_id: str | None = None
    wallet_address: str | None = None
    request_id: str | None = None
    endpoint: str | None = None
    method: str | None = None
    user_agent: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorReport:
    """A fully classified error."""

    error: ErrorDetail
    severity: Severity
    category: ErrorCategory
    context: ErrorContext


@dataclass(frozen=True)
class ErrorEntry:
    """Deduplicated error state for one fingerprint.

    Attributes:
        fingerprint: Deduplication key.
        count: Occurrences within the retention window.
        first_seen: Timestamp of the first occurrence.
        last_seen: Timestamp of the latest occurrence.
        report: Report captured at the first occurrence.
    """

    fingerprint: str
    count: int
    first_seen: float
    last_seen: float
    report: ErrorReport


@dataclass(frozen=True)
class Alert:
    """A notifiable condition."""

    id: str
    level: AlertLevel
    message: str
    source: str
    timestamp: float
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class HealthCheck:
    """Outcome of one probe.

    Attributes:
        name: Registered check name.
        status: Probe status.
        response_time_ms: Time the probe took (or the timeout, if it timed out).
        timestamp: Unix timestamp when the check finished.
        message: Optional human-readable detail.
        metadata: Optional probe-specific details.
    """

    name: str
    status: HealthStatus
    response_time_ms: float
    timestamp: float
    message: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class HealthCheckResult:
    """Aggregate of one orchestration run."""

    status: HealthStatus
    checks: list[HealthCheck]
    timestamp: float
    version: str = ""
