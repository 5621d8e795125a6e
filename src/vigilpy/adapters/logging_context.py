"""Per-request log context carried in a context variable.

asyncio tasks copy the current context when they are created, so a request
id set by middleware is visible to everything the request handler awaits
or spawns, and never leaks into concurrent requests.
"""

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "vigilpy_log_context", default=None
)


def clear_log_context() -> None:
    """Remove every field from the current log context."""
    _log_context.set(None)


def get_request_id() -> str | None:
    """Return the request id of the current context, if any."""
    value = (_log_context.get() or {}).get("request_id")
    return None if value is None else str(value)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Temporarily extend the log context."""
    token = _log_context.set({**(_log_context.get() or {}), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)
