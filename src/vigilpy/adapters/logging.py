"""Bridges between the standard library logging module and the pipeline."""

import logging
import sys
from typing import TYPE_CHECKING, Any

from vigilpy.core.models import LogCategory, LogLevel

if TYPE_CHECKING:
    from vigilpy.logger import StructuredLogger

PACKAGE_LOGGER = "vigilpy"

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "category",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


def level_for_record(levelno: int) -> LogLevel:
    """Map a stdlib level number to a pipeline log level."""
    if levelno >= logging.ERROR:
        return LogLevel.ERROR
    if levelno >= logging.WARNING:
        return LogLevel.WARN
    if levelno >= logging.INFO:
        return LogLevel.INFO
    return LogLevel.DEBUG


def _category_for(record: logging.LogRecord) -> LogCategory:
    value = getattr(record, "category", None)
    if value is None:
        return LogCategory.API
    try:
        return LogCategory(str(value).upper())
    except ValueError:
        return LogCategory.API


class PipelineLogHandler(logging.Handler):
    """Logging handler that forwards records to a StructuredLogger.

    The category comes from ``extra={"category": ...}`` (API when absent or
    unknown). Other primitive extras land in the entry context. Records
    from the ``vigilpy`` namespace are ignored so the pipeline never logs
    its own diagnostics back into itself.

    Example:
        ```python
        handler = PipelineLogHandler(pipeline.logger)
        logging.getLogger().addHandler(handler)
        ```
    """

    def __init__(self, logger: "StructuredLogger", level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._logger = logger

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == PACKAGE_LOGGER or record.name.startswith(PACKAGE_LOGGER + "."):
            return
        try:
            context: dict[str, Any] = {
                "logger": record.name,
                "module": record.module,
                "funcName": record.funcName or "",
                "lineno": record.lineno,
            }
            for key, value in record.__dict__.items():
                if key not in _STANDARD_LOGRECORD_ATTRS and isinstance(
                    value, (str, int, float, bool)
                ):
                    context[key] = value
            error = None
            if record.exc_info and record.exc_info[1] is not None:
                error = record.exc_info[1]
            self._logger.log(
                level_for_record(record.levelno),
                _category_for(record),
                record.getMessage(),
                context,
                error,
            )
        except Exception:
            self.handleError(record)


def configure_logging(
    level: int | str = logging.INFO, json_output: bool = True
) -> logging.Handler:
    """Install a stderr handler on the ``vigilpy`` logger namespace.

    JSON mode writes the message alone, since structured entries are
    already serialized; text mode prefixes time, level and logger name.

    Returns:
        The installed handler.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(package_logger.handlers):
        if getattr(existing, "_vigilpy_installed", False):
            package_logger.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    handler._vigilpy_installed = True  # type: ignore[attr-defined]
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    return handler
