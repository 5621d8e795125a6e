"""Storage adapters implementing KeyValueStorePort."""

from urllib.parse import urlparse

from vigilpy.adapters.storage.bounded import BoundedStore
from vigilpy.adapters.storage.in_memory import InMemoryStore
from vigilpy.adapters.storage.sqlite import SQLiteStore
from vigilpy.core.ports import KeyValueStorePort


def create_store(url: str) -> KeyValueStorePort:
    """Create a store adapter from a URL.

    Supported schemes:
        memory://             InMemoryStore
        sqlite:///path.db     SQLiteStore (sqlite:///:memory: for in-memory)
        redis://host:port/db  RedisStore (needs the "redis" extra)

    Raises:
        ValueError: If the scheme is not supported.
    """
    scheme = urlparse(url).scheme
    if scheme == "memory":
        return InMemoryStore()
    if scheme == "sqlite":
        path = url[len("sqlite:///") :] if url.startswith("sqlite:///") else ""
        return SQLiteStore(path or ":memory:")
    if scheme in ("redis", "rediss", "unix"):
        from vigilpy.adapters.storage.redis import RedisStore

        return RedisStore.from_url(url)
    raise ValueError(f"Unsupported store URL scheme: {scheme!r}")


__all__ = [
    "BoundedStore",
    "InMemoryStore",
    "SQLiteStore",
    "create_store",
]
