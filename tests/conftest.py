"""Shared test fixtures for all test modules."""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import httpx
import pytest
from tests.helpers import BrokenStore, FakeClock

from vigilpy.adapters.logging_context import clear_log_context
from vigilpy.adapters.storage import BoundedStore, InMemoryStore
from vigilpy.tasks import BackgroundTaskQueue


@pytest.fixture(autouse=True)
def _reset_log_context() -> None:
    """Every test starts without a request id."""
    clear_log_context()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    """Empty in-memory store driven by the fake clock."""
    return InMemoryStore(clock=clock)


@pytest.fixture
def bounded_store(store: InMemoryStore) -> BoundedStore:
    return BoundedStore(store, timeout=1.0)


@pytest.fixture
def broken_store() -> BoundedStore:
    """Bounded store whose backend always fails."""
    return BoundedStore(BrokenStore(), timeout=0.5)


@pytest.fixture
def sqlite_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for SQLite store tests."""
    return str(tmp_path / "vigil.db")


@pytest.fixture
async def tasks() -> AsyncGenerator[BackgroundTaskQueue]:
    """Started background queue, stopped after the test."""
    queue = BackgroundTaskQueue(maxsize=100, workers=2)
    queue.start()
    yield queue
    await queue.stop(timeout=1.0)


@pytest.fixture
def no_sleep() -> list[float]:
    """Records requested backoff delays instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(no_sleep: list[float]):
    async def sleep(delay: float) -> None:
        no_sleep.append(delay)

    return sleep


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""
    from vigilpy.adapters.frameworks.asgi import Receive, Scope, Send

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts."""
    from vigilpy.adapters.frameworks.asgi import Scope

    def _scope(
        method: str = "GET",
        path: str = "/test",
        headers: list[tuple[bytes, bytes]] | None = None,
    ) -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": headers or [],
        }

    return _scope


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture."""

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        responses.append(message)

    return send, responses


async def _empty_receive() -> dict[str, Any]:
    return {"type": "http.request", "body": b"", "more_body": False}


@pytest.fixture
def asgi_receive():
    return _empty_receive


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/health")
    """

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client
