"""Pure helpers that derive log levels and context for common log shapes."""

from vigilpy.core.models import LogLevel

SLOW_MS = 10_000
ACCEPTABLE_MS = 5_000
NOTICEABLE_MS = 1_000


def level_for_duration(duration_ms: float) -> LogLevel:
    """Map an operation duration to a log level.

    Args:
        duration_ms: Elapsed time in milliseconds.

    Returns:
        ERROR above 10s, WARN above 5s, INFO above 1s, DEBUG otherwise.
    """
    if duration_ms > SLOW_MS:
        return LogLevel.ERROR
    if duration_ms > ACCEPTABLE_MS:
        return LogLevel.WARN
    if duration_ms > NOTICEABLE_MS:
        return LogLevel.INFO
    return LogLevel.DEBUG


def performance_threshold(duration_ms: float) -> str:
    """Return the FAST/ACCEPTABLE/SLOW tag for a duration."""
    if duration_ms > ACCEPTABLE_MS:
        return "SLOW"
    if duration_ms > NOTICEABLE_MS:
        return "ACCEPTABLE"
    return "FAST"


def level_for_status(status_code: int) -> LogLevel:
    """Map an HTTP status code to a log level.

    Args:
        status_code: HTTP status code of a response.

    Returns:
        ERROR for 5xx, WARN for 4xx, INFO for 3xx, DEBUG otherwise.
    """
    if status_code >= 500:
        return LogLevel.ERROR
    if status_code >= 400:
        return LogLevel.WARN
    if status_code >= 300:
        return LogLevel.INFO
    return LogLevel.DEBUG


def mask_address(address: str | None) -> str | None:
    """Show only the first 6 and last 4 characters of a wallet address."""
    if not address:
        return address
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"
