"""ASGI middleware instrumenting requests with the pipeline.

Framework-agnostic: works with any ASGI server and application (FastAPI,
Starlette, Django's ASGI handler) without importing any of them.
"""

import fnmatch
import time
import uuid
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

from vigilpy.adapters.logging_context import log_context

if TYPE_CHECKING:
    from vigilpy.logger import StructuredLogger
    from vigilpy.pipeline import Pipeline
    from vigilpy.tracker import ErrorTracker

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]


def _extract_request_id(scope: Scope, header_name: str = "X-Request-ID") -> str:
    """Extract or generate a request ID from ASGI scope headers.

    Searches for the specified header (case-insensitive). If not found,
    generates a new UUID.
    """
    # @tra: Adapter.ASGI.Middleware.RequestId.Extract
    header_bytes = header_name.lower().encode()
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    for name, value in headers:
        if name.lower() == header_bytes and value:
            return value.decode("utf-8", errors="replace")

    # @tra: Adapter.ASGI.Middleware.RequestId.Generate
    return str(uuid.uuid4())


def _header(scope: Scope, name: bytes) -> str | None:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return None


class ObservabilityMiddleware:
    """Assigns request ids, logs API calls and tracks unhandled exceptions.

    The request id is taken from ``request_id_header`` (or generated),
    placed in the log context for everything the request awaits, and
    echoed on the response. Unhandled exceptions are tracked and re-raised.

    Args:
        app: The ASGI application to wrap.
        pipeline: Pipeline supplying the logger and tracker.
        logger: Logger to use instead of the pipeline's.
        tracker: Tracker to use instead of the pipeline's.
        exclude_paths: Paths not to log; supports wildcards ("/internal/*").
        request_id_header: Header carrying the request id.
    """

    def __init__(
        self,
        app: ASGIApp,
        pipeline: "Pipeline | None" = None,
        *,
        logger: "StructuredLogger | None" = None,
        tracker: "ErrorTracker | None" = None,
        exclude_paths: list[str] | None = None,
        request_id_header: str = "X-Request-ID",
    ) -> None:
        self.app = app
        self.logger = logger or (pipeline.logger if pipeline is not None else None)
        self.tracker = tracker or (pipeline.tracker if pipeline is not None else None)
        self.exclude_paths = exclude_paths or []
        self.request_id_header = request_id_header

    def _path_excluded(self, path: str) -> bool:
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        request_id = _extract_request_id(scope, self.request_id_header)
        header_name = self.request_id_header.lower().encode()
        status: dict[str, int | None] = {"code": None}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
                headers = [
                    (k, v) for k, v in message.get("headers", []) if k.lower() != header_name
                ]
                headers.append((header_name, request_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        with log_context(request_id=request_id):
            try:
                await self.app(scope, receive, wrapped_send)
            except Exception as exc:
                self._track(scope, request_id, exc)
                self._log(scope, status["code"] or 500, start_time)
                raise
            self._log(scope, status["code"] or 0, start_time)

    def _log(self, scope: Scope, status_code: int, start_time: float) -> None:
        if self.logger is None or self._path_excluded(scope["path"]):
            return
        duration_ms = (time.perf_counter() - start_time) * 1000
        self.logger.log_api_call(
            scope["method"], scope["path"], status_code, round(duration_ms, 3)
        )

    def _track(self, scope: Scope, request_id: str, exc: Exception) -> None:
        if self.tracker is None:
            return
        self.tracker.track(
            exc,
            {
                "request_id": request_id,
                "endpoint": scope["path"],
                "method": scope["method"],
                "user_agent": _header(scope, b"user-agent"),
            },
        )
