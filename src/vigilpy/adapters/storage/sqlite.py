"""SQLite implementation of the shared key-value store."""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import aiosqlite

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_strings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS kv_hashes (
    key TEXT NOT NULL,
    field TEXT NOT NULL,
    value INTEGER NOT NULL,
    PRIMARY KEY (key, field)
);
CREATE TABLE IF NOT EXISTS kv_lists (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL,
    value TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_kv_lists_key ON kv_lists(key, id);
CREATE TABLE IF NOT EXISTS kv_expiry (
    key TEXT PRIMARY KEY,
    expires_at REAL NOT NULL
);
"""

_TABLES = ("kv_strings", "kv_hashes", "kv_lists", "kv_expiry")

_INCR = """
INSERT INTO kv_strings (key, value) VALUES (?, ?)
ON CONFLICT(key) DO UPDATE SET value = CAST(CAST(value AS INTEGER) + ? AS TEXT)
"""

_HINCR = """
INSERT INTO kv_hashes (key, field, value) VALUES (?, ?, ?)
ON CONFLICT(key, field) DO UPDATE SET value = value + excluded.value
"""

_TRIM_LIST = """
DELETE FROM kv_lists
WHERE key = ? AND id NOT IN (
    SELECT id FROM kv_lists WHERE key = ? ORDER BY id DESC LIMIT ?
)
"""

_SET_EXPIRY = """
INSERT INTO kv_expiry (key, expires_at) VALUES (?, ?)
ON CONFLICT(key) DO UPDATE SET expires_at = excluded.expires_at
"""

_PURGE_EXPIRED = """
DELETE FROM {table}
WHERE key IN (SELECT key FROM kv_expiry WHERE expires_at <= ?)
"""

DEFAULT_SWEEP_INTERVAL = 60.0


class AsyncConnectionManager:
    """Manages aiosqlite connections for the store.

    Handles schema initialization and connection lifecycle. For :memory:
    databases, maintains a persistent connection since SQLite in-memory
    databases are connection-scoped.
    """

    def __init__(self, db_path: str, schema: str) -> None:
        self._db_path = db_path
        self._schema = schema
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None
        self._persistent_conn: aiosqlite.Connection | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the initialization lock (lazy to avoid event loop issues)."""
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    @property
    def _should_close_connection(self) -> bool:
        return self._db_path != ":memory:"

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            if self._db_path == ":memory:":
                self._persistent_conn = await aiosqlite.connect(
                    ":memory:", isolation_level=None
                )
                await self._persistent_conn.executescript(self._schema)
            else:
                async with aiosqlite.connect(self._db_path) as db:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(self._schema)
            self._initialized = True

    async def _get_connection(self) -> aiosqlite.Connection:
        await self._ensure_initialized()
        if self._db_path == ":memory:":
            if self._persistent_conn is None:
                raise RuntimeError("Memory database connection not initialized")
            return self._persistent_conn
        return await aiosqlite.connect(self._db_path, isolation_level=None)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for database connections.

        Automatically closes connections for file-based databases.
        For :memory: databases, keeps the connection open.
        """
        db = await self._get_connection()
        try:
            yield db
        finally:
            if self._should_close_connection:
                await db.close()

    async def close(self) -> None:
        """Close persistent connection (for :memory: databases)."""
        if self._persistent_conn is not None:
            await self._persistent_conn.close()
            self._persistent_conn = None
            self._initialized = False


class SQLiteStore:
    """SQLite implementation of KeyValueStorePort.

    Strings and counters, counter hashes and lists live in separate tables
    with a shared expiry table. Every primitive runs in one IMMEDIATE
    transaction, so processes sharing a database file see atomic updates.
    Expired keys are purged when touched, and every expired key is swept
    at most once per sweep_interval inside the next transaction.

    Args:
        db_path: Database file path, or ":memory:".
        clock: Time source for expiry, injectable for TTL tests.
        sweep_interval: Seconds between full expiry sweeps.
    """

    def __init__(
        self,
        db_path: str,
        clock: Callable[[], float] | None = None,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self._db_path = db_path
        self._manager = AsyncConnectionManager(db_path, _SCHEMA)
        self._clock = clock or time.time
        self._op_lock: asyncio.Lock | None = None
        self._sweep_interval = sweep_interval
        self._next_sweep = self._clock() + sweep_interval

    def _get_op_lock(self) -> asyncio.Lock:
        if self._op_lock is None:
            self._op_lock = asyncio.Lock()
        return self._op_lock

    @asynccontextmanager
    async def _transaction(
        self, key: str | None = None, sweep: bool = True
    ) -> AsyncIterator[aiosqlite.Connection]:
        # The :memory: connection is shared, so transactions must not interleave.
        async with self._get_op_lock(), self._manager.connection() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                if sweep and self._clock() >= self._next_sweep:
                    await self._sweep(db)
                if key is not None:
                    await self._purge_if_expired(db, key)
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    async def _purge_if_expired(self, db: aiosqlite.Connection, key: str) -> None:
        async with db.execute(
            "SELECT expires_at FROM kv_expiry WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is not None and row[0] <= self._clock():
            await self._delete_key(db, key)

    async def _delete_key(self, db: aiosqlite.Connection, key: str) -> None:
        for table in _TABLES:
            await db.execute(f"DELETE FROM {table} WHERE key = ?", (key,))  # noqa: S608

    async def _sweep(self, db: aiosqlite.Connection) -> int:
        now = self._clock()
        self._next_sweep = now + self._sweep_interval
        for table in _TABLES[:3]:
            await db.execute(_PURGE_EXPIRED.format(table=table), (now,))
        async with db.execute(
            "DELETE FROM kv_expiry WHERE expires_at <= ?", (now,)
        ) as cursor:
            return cursor.rowcount

    async def purge_expired(self) -> int:
        """Drop every expired key now and return how many were removed."""
        async with self._transaction(sweep=False) as db:
            return await self._sweep(db)

    async def _touch(
        self, db: aiosqlite.Connection, key: str, ttl_seconds: float | None
    ) -> None:
        if ttl_seconds is not None:
            await db.execute(_SET_EXPIRY, (key, self._clock() + ttl_seconds))

    async def get(self, key: str) -> str | None:
        """Return the string stored at key, or None."""
        async with self._transaction(key) as db:
            async with db.execute(
                "SELECT value FROM kv_strings WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Store a string, replacing any previous value and expiry."""
        async with self._transaction() as db:
            await self._delete_key(db, key)
            await db.execute(
                "INSERT INTO kv_strings (key, value) VALUES (?, ?)", (key, value)
            )
            await self._touch(db, key, ttl_seconds)

    async def incr(
        self, key: str, amount: int = 1, ttl_seconds: float | None = None
    ) -> int:
        """Increment a counter, creating it at zero first."""
        async with self._transaction(key) as db:
            await db.execute(_INCR, (key, str(amount), amount))
            await self._touch(db, key, ttl_seconds)
            async with db.execute(
                "SELECT CAST(value AS INTEGER) FROM kv_strings WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else amount

    async def hincr(
        self,
        key: str,
        field: str,
        amount: int = 1,
        ttl_seconds: float | None = None,
    ) -> int:
        """Increment one field of a counter hash."""
        async with self._transaction(key) as db:
            await db.execute(_HINCR, (key, field, amount))
            await self._touch(db, key, ttl_seconds)
            async with db.execute(
                "SELECT value FROM kv_hashes WHERE key = ? AND field = ?", (key, field)
            ) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else amount

    async def hgetall(self, key: str) -> dict[str, int]:
        """Return every field of a counter hash."""
        async with self._transaction(key) as db:
            async with db.execute(
                "SELECT field, value FROM kv_hashes WHERE key = ?", (key,)
            ) as cursor:
                rows = await cursor.fetchall()
        return {field: int(value) for field, value in rows}

    async def push_trim(
        self, key: str, value: str, max_len: int, ttl_seconds: float | None
    ) -> None:
        """Prepend, trim to max_len and refresh expiry in one transaction."""
        async with self._transaction(key) as db:
            await db.execute(
                "INSERT INTO kv_lists (key, value) VALUES (?, ?)", (key, value)
            )
            await db.execute(_TRIM_LIST, (key, key, max_len))
            await self._touch(db, key, ttl_seconds)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Return items start..stop inclusive, newest first; stop=-1 means the end."""
        limit = -1 if stop == -1 else max(stop - start + 1, 0)
        async with self._transaction(key) as db:
            async with db.execute(
                "SELECT value FROM kv_lists WHERE key = ? "
                "ORDER BY id DESC LIMIT ? OFFSET ?",
                (key, limit, start),
            ) as cursor:
                rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def expire(self, key: str, ttl_seconds: float) -> None:
        """Reset the expiry of an existing key."""
        async with self._transaction(key) as db:
            for table in _TABLES[:3]:
                async with db.execute(
                    f"SELECT 1 FROM {table} WHERE key = ? LIMIT 1",  # noqa: S608
                    (key,),
                ) as cursor:
                    if await cursor.fetchone() is not None:
                        await self._touch(db, key, ttl_seconds)
                        return

    async def delete(self, key: str) -> None:
        """Remove a key of any type."""
        async with self._transaction() as db:
            await self._delete_key(db, key)

    async def ping(self) -> bool:
        """Run a trivial query."""
        async with self._manager.connection() as db:
            async with db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
        return row is not None

    async def close(self) -> None:
        """Close the persistent connection (for :memory: databases)."""
        await self._manager.close()
