"""Structured logger.

A log call is synchronous and cheap: it filters and samples the entry,
redacts its context, writes it to the process-local ``vigilpy.events``
logger and hands persistence and batch delivery to the background queue.

Persisted entries go to a newest-first recent-log list in the shared store.
Entries for the log-aggregation sink are batched: a flush happens at
``batch_size`` pending entries, ``flush_interval_seconds`` after the first
unflushed entry, or on the periodic flush task, whichever comes first. A
failed flush drops its batch.
"""

import asyncio
import datetime
import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from vigilpy.adapters.logging_context import get_request_id
from vigilpy.config import LoggerConfig
from vigilpy.core.encoding.records import decode_log, encode_record
from vigilpy.core.encoding.safe_json import safe_dumps
from vigilpy.core.exceptions import RecordDecodeError, StoreUnavailableError
from vigilpy.core.logs import (
    level_for_duration,
    level_for_status,
    mask_address,
    performance_threshold,
)
from vigilpy.core.models import (
    ErrorDetail,
    LogCategory,
    LogEntry,
    LogLevel,
    coerce_enum,
)
from vigilpy.core.ports import KeyValueStorePort, LogSinkPort
from vigilpy.core.redaction import REDACTION_FAILED, redact
from vigilpy.core.sampling import Sampler
from vigilpy.tasks import BackgroundTaskQueue

LOGGER = logging.getLogger(__name__)

LOG_BUFFER_KEY = "logs:buffer"
EVENTS_LOGGER = "vigilpy.events"

_STDLIB_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}

_VERBOSITY = {
    LogLevel.ERROR: 0,
    LogLevel.WARN: 1,
    LogLevel.INFO: 2,
    LogLevel.DEBUG: 3,
}

# Pending sink entries kept at most, in multiples of the batch size.
_MAX_PENDING_BATCHES = 10


def _iso(timestamp: float) -> str:
    moment = datetime.datetime.fromtimestamp(timestamp, tz=datetime.UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_json(entry: LogEntry, max_chars: int) -> str:
    """Render an entry as one JSON line for the local output."""
    record: dict[str, Any] = {
        "timestamp": _iso(entry.timestamp),
        "level": entry.level.value,
        "category": entry.category.value,
        "message": entry.message,
    }
    if entry.context is not None:
        record["context"] = entry.context
    if entry.request_id is not None:
        record["request_id"] = entry.request_id
    if entry.duration_ms is not None:
        record["duration_ms"] = entry.duration_ms
    if entry.error is not None:
        record["error"] = {"name": entry.error.name, "message": entry.error.message}
    return safe_dumps(record, max_chars)


def format_text(entry: LogEntry) -> str:
    """Render an entry as a human-readable line for the local output."""
    line = (
        f"[{_iso(entry.timestamp)}] {entry.level.value} "
        f"[{entry.category.value}] {entry.message}"
    )
    if entry.context:
        line += f" | Context: {safe_dumps(entry.context, 200)}"
    if entry.duration_ms is not None:
        line += f" | Duration: {entry.duration_ms:.0f}ms"
    if entry.error is not None:
        line += f" | Error: {entry.error.name}: {entry.error.message}"
    return line


class StructuredLogger:
    """Samples, redacts, writes, persists and batches log entries.

    Args:
        store: Shared store for the recent-log list; None disables it.
        tasks: Background queue running persistence and flushes.
        sink: Log-aggregation sink; None disables batching.
        config: Logger settings.
        sampler: Sampling policy (built from config if omitted).
        output: Process-local stdlib logger (``vigilpy.events`` by default).
        clock: Time source for entry timestamps.
    """

    def __init__(
        self,
        store: KeyValueStorePort | None = None,
        tasks: BackgroundTaskQueue | None = None,
        sink: LogSinkPort | None = None,
        config: LoggerConfig | None = None,
        sampler: Sampler | None = None,
        output: logging.Logger | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or LoggerConfig()
        self.sampler = sampler or Sampler(override=self.config.sample_rate)
        self._store = store
        self._tasks = tasks or BackgroundTaskQueue()
        self._sink = sink
        self._output = output or logging.getLogger(EVENTS_LOGGER)
        self._clock = clock or time.time

        self._lock = threading.Lock()
        self._to_persist: deque[LogEntry] = deque()
        self._persist_scheduled = False
        self._flush_scheduled = False
        self._store_healthy = True
        self._pending: list[LogEntry] = []
        self._max_pending = self.config.batch_size * _MAX_PENDING_BATCHES
        self._flush_lock: asyncio.Lock | None = None
        self._flush_timer: asyncio.TimerHandle | None = None
        self._flusher: asyncio.Task[None] | None = None
        self.counters: dict[str, int] = {
            "emitted": 0,
            "filtered": 0,
            "sampled_out": 0,
            "persisted": 0,
            "persist_failures": 0,
            "persist_dropped": 0,
            "flushed": 0,
            "flush_failures": 0,
            "dropped_entries": 0,
        }

    def _count(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self.counters[name] += amount

    # --- Emission ---

    def log(
        self,
        level: LogLevel | str,
        category: LogCategory | str,
        message: str,
        context: dict[str, Any] | None = None,
        error: BaseException | ErrorDetail | str | None = None,
        *,
        duration_ms: float | None = None,
    ) -> LogEntry | None:
        """Record one log entry.

        Store and sink failures never reach the caller, and the call never
        waits on I/O.

        Returns:
            The emitted entry, or None if it was filtered or sampled out.
        """
        level = coerce_enum(LogLevel, level, LogLevel.INFO)
        category = coerce_enum(LogCategory, category, LogCategory.API)
        if _VERBOSITY[level] > _VERBOSITY[self.config.min_level]:
            self._count("filtered")
            return None
        if not self.sampler.should_emit(level):
            self._count("sampled_out")
            return None

        try:
            safe_context = redact(context)
        except Exception:
            LOGGER.debug("Context redaction failed", exc_info=True)
            safe_context = {"context": REDACTION_FAILED}
        if isinstance(error, ErrorDetail) or error is None:
            detail = error
        else:
            detail = ErrorDetail.from_error(error)

        entry = LogEntry(
            timestamp=self._clock(),
            level=level,
            category=category,
            message=message,
            context=safe_context,
            request_id=get_request_id(),
            duration_ms=duration_ms,
            error=detail,
        )
        self._count("emitted")
        self._write_local(entry)
        if self._store is not None:
            self._schedule_persist(entry)
        if self._sink is not None:
            self._enqueue_for_sink(entry)
        return entry

    def _write_local(self, entry: LogEntry) -> None:
        if self.config.json_output:
            line = format_json(entry, self.config.max_payload_chars)
        else:
            line = format_text(entry)
        self._output.log(_STDLIB_LEVELS[entry.level], line)

    # --- Persistence ---

    def _schedule_persist(self, entry: LogEntry) -> None:
        # One drain job at a time keeps the newest-first list in emission order.
        with self._lock:
            if len(self._to_persist) >= self.config.buffer_max:
                self._to_persist.popleft()
                self.counters["persist_dropped"] += 1
            self._to_persist.append(entry)
            if self._persist_scheduled:
                return
            self._persist_scheduled = True
        self._tasks.submit(
            self._drain_persist, "log.persist", on_drop=self._persist_refused
        )

    def _persist_refused(self) -> None:
        with self._lock:
            self._persist_scheduled = False
            self.counters["persist_dropped"] += len(self._to_persist)
            self._to_persist.clear()

    async def _drain_persist(self) -> None:
        try:
            await self._persist_queued()
        except BaseException:
            with self._lock:
                self._persist_scheduled = False
            raise

    async def _persist_queued(self) -> None:
        assert self._store is not None
        while True:
            with self._lock:
                if not self._to_persist:
                    self._persist_scheduled = False
                    return
                entry = self._to_persist.popleft()
            try:
                await self._store.push_trim(
                    LOG_BUFFER_KEY,
                    encode_record(entry, self.config.max_payload_chars),
                    self.config.buffer_max,
                    self.config.buffer_ttl_seconds,
                )
            except StoreUnavailableError:
                self._count("persist_failures")
                if self._store_healthy:
                    LOGGER.warning("Failed to persist log entry", exc_info=True)
                self._store_healthy = False
            else:
                self._count("persisted")
                self._store_healthy = True

    # --- Sink batching ---

    def _enqueue_for_sink(self, entry: LogEntry) -> None:
        with self._lock:
            if len(self._pending) >= self._max_pending:
                del self._pending[0]
                self.counters["dropped_entries"] += 1
            self._pending.append(entry)
            count = len(self._pending)
        if count >= self.config.batch_size:
            self._schedule_flush()
        elif count == 1:
            self._arm_flush_timer()

    def _schedule_flush(self) -> None:
        # At most one queued flush; it drains every full batch it finds.
        with self._lock:
            if self._flush_scheduled:
                return
            self._flush_scheduled = True
        self._tasks.submit(self.flush, "log.flush", on_drop=self._flush_refused)

    def _flush_refused(self) -> None:
        with self._lock:
            self._flush_scheduled = False

    def _arm_flush_timer(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Off-loop producers rely on the periodic flush task.
            return
        if self._flusher is None:
            self.start()
        if self._flush_timer is None:
            self._flush_timer = loop.call_later(
                self.config.flush_interval_seconds, self._on_flush_timer
            )

    def _on_flush_timer(self) -> None:
        self._flush_timer = None
        self._schedule_flush()

    def _cancel_flush_timer(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    def _get_flush_lock(self) -> asyncio.Lock:
        if self._flush_lock is None:
            self._flush_lock = asyncio.Lock()
        return self._flush_lock

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    async def flush(self) -> int:
        """Deliver pending entries to the sink in batches.

        Stops at the first failed batch; that batch is dropped and the rest
        wait for the next flush.

        Returns:
            Number of entries delivered.
        """
        if self._sink is None:
            return 0
        sent = 0
        async with self._get_flush_lock():
            with self._lock:
                self._flush_scheduled = False
            self._cancel_flush_timer()
            while True:
                with self._lock:
                    batch = self._pending[: self.config.batch_size]
                    del self._pending[: self.config.batch_size]
                if not batch:
                    return sent
                try:
                    await asyncio.wait_for(
                        self._sink.send_batch(batch),
                        self.config.flush_timeout_seconds,
                    )
                except Exception:
                    self._count("flush_failures")
                    self._count("dropped_entries", len(batch))
                    LOGGER.warning(
                        "Failed to flush %d log entries; batch dropped",
                        len(batch),
                        exc_info=True,
                    )
                    return sent
                self._count("flushed", len(batch))
                sent += len(batch)

    async def _flush_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval_seconds)
            await self.flush()

    def start(self) -> None:
        """Start the periodic flush task on the running loop."""
        if self._sink is None or self._flusher is not None:
            return
        self._flusher = asyncio.get_running_loop().create_task(
            self._flush_periodically(), name="vigilpy-log-flusher"
        )

    async def aclose(self) -> None:
        """Stop the periodic flush task and flush what is still pending."""
        self._cancel_flush_timer()
        if self._flusher is not None:
            self._flusher.cancel()
            try:
                await self._flusher
            except asyncio.CancelledError:
                pass
            self._flusher = None
        await self.flush()

    # --- Shorthands ---

    def error(
        self,
        message: str,
        category: LogCategory | str = LogCategory.API,
        context: dict[str, Any] | None = None,
        error: BaseException | ErrorDetail | str | None = None,
    ) -> LogEntry | None:
        return self.log(LogLevel.ERROR, category, message, context, error)

    def warn(
        self,
        message: str,
        category: LogCategory | str = LogCategory.API,
        context: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        return self.log(LogLevel.WARN, category, message, context)

    def info(
        self,
        message: str,
        category: LogCategory | str = LogCategory.API,
        context: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        return self.log(LogLevel.INFO, category, message, context)

    def debug(
        self,
        message: str,
        category: LogCategory | str = LogCategory.API,
        context: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        return self.log(LogLevel.DEBUG, category, message, context)

    # --- Derived helpers ---

    def log_performance(
        self,
        operation: str,
        category: LogCategory | str,
        duration_ms: float,
        context: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        """Log how long an operation took, at a level chosen by duration."""
        performance = {
            "operation": operation,
            "duration": duration_ms,
            "threshold": performance_threshold(duration_ms),
        }
        return self.log(
            level_for_duration(duration_ms),
            category,
            f"Performance: {operation} took {duration_ms:.0f}ms",
            {**(context or {}), "performance": performance},
            duration_ms=duration_ms,
        )

    @contextmanager
    def timed(
        self,
        operation: str,
        category: LogCategory | str = LogCategory.INFRASTRUCTURE,
        context: dict[str, Any] | None = None,
    ) -> Iterator[None]:
        """Context manager that logs the elapsed time of its block."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.log_performance(operation, category, elapsed_ms, context)

    def log_api_call(
        self,
        method: str,
        url: str,
        status_code: int,
        duration_ms: float,
        context: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        """Log an HTTP call at a level chosen by its status code."""
        api = {
            "method": method,
            "url": url,
            "status_code": status_code,
            "duration": duration_ms,
        }
        return self.log(
            level_for_status(status_code),
            LogCategory.API,
            f"{method} {url} - {status_code}",
            {**(context or {}), "api": api},
            duration_ms=duration_ms,
        )

    def log_user_action(
        self,
        action: str,
        user_id: str | None = None,
        wallet_address: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        """Log a user action with the wallet address masked."""
        user = {"user_id": user_id, "wallet_address": mask_address(wallet_address)}
        return self.log(
            LogLevel.INFO,
            LogCategory.USER_ACTION,
            f"User action: {action}",
            {**(context or {}), "user": user},
        )

    def log_transaction(
        self,
        transaction_id: str,
        transaction_type: str,
        status: str,
        context: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        """Log a payment transaction; failed transactions log at ERROR."""
        level = LogLevel.ERROR if status == "failed" else LogLevel.INFO
        transaction = {
            "id": transaction_id,
            "type": transaction_type,
            "status": status,
        }
        return self.log(
            level,
            LogCategory.PAYMENT,
            f"Transaction {transaction_type}: {status}",
            {**(context or {}), "transaction": transaction},
        )

    # --- Reads ---

    async def get_recent(self, count: int = 100) -> tuple[list[LogEntry], int]:
        """Read the newest persisted entries.

        Returns:
            The decoded entries and the number of records that failed to
            decode.

        Raises:
            StoreUnavailableError: If no store is configured or it is down.
        """
        if self._store is None:
            raise StoreUnavailableError("lrange", "no store configured")
        if count <= 0:
            return [], 0
        raw_records = await self._store.lrange(LOG_BUFFER_KEY, 0, count - 1)
        entries: list[LogEntry] = []
        failures = 0
        for raw in raw_records:
            try:
                entries.append(decode_log(raw))
            except RecordDecodeError as exc:
                failures += 1
                LOGGER.debug("Skipping undecodable log record: %s", exc.reason)
        return entries, failures

    async def get_log_stats(self, limit: int = 50) -> dict[str, Any]:
        """Summarize the most recent persisted entries.

        Returns:
            Totals by level and category, error rate in percent, average
            duration, the entries themselves, decode failures and the
            in-process counters. ``available`` is False if the store
            could not be read.
        """
        with self._lock:
            counters = dict(self.counters)
        stats: dict[str, Any] = {
            "available": True,
            "total_logs": 0,
            "logs_by_level": {},
            "logs_by_category": {},
            "error_rate": 0.0,
            "avg_duration_ms": None,
            "recent_logs": [],
            "decode_failures": 0,
            "counters": counters,
            "pending": self.pending_count,
        }
        try:
            entries, failures = await self.get_recent(limit)
        except StoreUnavailableError:
            LOGGER.warning("Failed to read log stats", exc_info=True)
            stats["available"] = False
            return stats

        by_level: dict[str, int] = {}
        by_category: dict[str, int] = {}
        durations = [e.duration_ms for e in entries if e.duration_ms is not None]
        for entry in entries:
            by_level[entry.level.value] = by_level.get(entry.level.value, 0) + 1
            by_category[entry.category.value] = (
                by_category.get(entry.category.value, 0) + 1
            )
        total = len(entries)
        stats.update(
            total_logs=total,
            logs_by_level=by_level,
            logs_by_category=by_category,
            error_rate=(
                by_level.get(LogLevel.ERROR.value, 0) / total * 100 if total else 0.0
            ),
            avg_duration_ms=(
                round(sum(durations) / len(durations)) if durations else None
            ),
            recent_logs=entries,
            decode_failures=failures,
        )
        return stats

    async def clear_buffer(self) -> bool:
        """Delete the persisted recent-log list.

        Returns:
            False if the store could not be reached.
        """
        if self._store is None:
            return False
        try:
            await self._store.delete(LOG_BUFFER_KEY)
        except StoreUnavailableError:
            LOGGER.warning("Failed to clear log buffer", exc_info=True)
            return False
        return True
