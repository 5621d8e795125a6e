"""Error tracker: classification, deduplication and windowed statistics.

Deduplicated state lives in the shared store, keyed by fingerprint::

    errors:count:<fp>       occurrence counter (sliding TTL)
    errors:report:<fp>      encoded report of the first occurrence
    errors:first:<fp>       first-seen timestamp
    errors:last:<fp>        last-seen timestamp
    errors:recent           newest-first fingerprint index
    errors:stats:<bucket>   counter hash per statistics bucket
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from vigilpy.adapters.logging_context import get_request_id
from vigilpy.config import TrackerConfig
from vigilpy.core.encoding.records import decode_report, encode_record
from vigilpy.core.errors import classify, fingerprint
from vigilpy.core.exceptions import RecordDecodeError, StoreUnavailableError
from vigilpy.core.logs import mask_address
from vigilpy.core.models import (
    AlertLevel,
    ErrorCategory,
    ErrorContext,
    ErrorDetail,
    ErrorEntry,
    ErrorReport,
    Severity,
)
from vigilpy.core.ports import KeyValueStorePort
from vigilpy.core.redaction import redact
from vigilpy.tasks import BackgroundTaskQueue

if TYPE_CHECKING:
    from vigilpy.alerts import AlertDispatcher

LOGGER = logging.getLogger(__name__)
FALLBACK_LOGGER = logging.getLogger("vigilpy.fallback")

RECENT_KEY = "errors:recent"
ALERT_SOURCE = "error_tracker"

_CONTEXT_FIELDS = ("user_id", "wallet_address", "request_id", "endpoint", "method")
_LOCK_STRIPES = 64


@dataclass(frozen=True)
class TrackOptions:
    """Caller overrides for one tracked error.

    Attributes:
        category: Category to use instead of the derived one.
        severity: Severity to use instead of the derived one.
        extra: Additional context, redacted before it is stored.
    """

    category: ErrorCategory | None = None
    severity: Severity | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def _count_key(fp: str) -> str:
    return f"errors:count:{fp}"


def _report_key(fp: str) -> str:
    return f"errors:report:{fp}"


def _first_key(fp: str) -> str:
    return f"errors:first:{fp}"


def _last_key(fp: str) -> str:
    return f"errors:last:{fp}"


def _alerts_key(fp: str) -> str:
    return f"errors:alerts:{fp}"


def stats_key(bucket: int) -> str:
    return f"errors:stats:{bucket}"


class ErrorTracker:
    """Tracks raised errors without ever raising into the caller.

    Args:
        store: Shared store (normally a BoundedStore).
        tasks: Background queue running store updates.
        config: Tracker settings.
        dispatcher: Receives critical reports as alerts, optional.
        clock: Time source for report timestamps and buckets.
    """

    def __init__(
        self,
        store: KeyValueStorePort,
        tasks: BackgroundTaskQueue | None = None,
        config: TrackerConfig | None = None,
        dispatcher: "AlertDispatcher | None" = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self.dispatcher = dispatcher
        self._store = store
        self._tasks = tasks or BackgroundTaskQueue()
        self._clock = clock or time.time
        # Same-fingerprint updates are applied in submission order.
        self._locks = [asyncio.Lock() for _ in range(_LOCK_STRIPES)]
        self.counters: dict[str, int] = {
            "tracked": 0,
            "store_failures": 0,
            "alerts_forwarded": 0,
            "alerts_suppressed": 0,
        }

    # --- Classification ---

    def build_report(
        self,
        error: BaseException | ErrorDetail | str,
        request_context: Mapping[str, Any] | None = None,
        options: TrackOptions | None = None,
    ) -> ErrorReport:
        """Classify an error and attach its redacted context."""
        options = options or TrackOptions()
        if isinstance(error, ErrorDetail):
            detail = error
        else:
            detail = ErrorDetail.from_error(error)
        category, severity = classify(detail, options.category, options.severity)

        request = dict(request_context or {})
        known = {name: request.pop(name, None) for name in _CONTEXT_FIELDS}
        user_agent = request.pop("user_agent", None)
        extra = redact({**request, **options.extra}) or {}
        context = ErrorContext(
            timestamp=self._clock(),
            environment=self.config.environment,
            version=self.config.version,
            user_id=_str_or_none(known["user_id"]),
            wallet_address=mask_address(_str_or_none(known["wallet_address"])),
            request_id=_str_or_none(known["request_id"]) or get_request_id(),
            endpoint=_str_or_none(known["endpoint"]),
            method=_str_or_none(known["method"]),
            user_agent=_str_or_none(user_agent),
            extra=extra,
        )
        return ErrorReport(
            error=detail, severity=severity, category=category, context=context
        )

    def fingerprint_of(self, report: ErrorReport) -> str:
        return fingerprint(report.error, report.category, report.context.endpoint)

    # --- Tracking ---

    def track(
        self,
        error: BaseException | ErrorDetail | str,
        request_context: Mapping[str, Any] | None = None,
        options: TrackOptions | None = None,
    ) -> ErrorReport:
        """Classify an error and record it in the background.

        Args:
            error: The exception (or a bare message).
            request_context: Request fields (user_id, wallet_address,
                request_id, endpoint, method, user_agent); other keys become
                redacted extra context.
            options: Category/severity overrides and extra context.

        Returns:
            The classified report.
        """
        report = self.build_report(error, request_context, options)
        fp = self.fingerprint_of(report)
        self.counters["tracked"] += 1
        self._tasks.submit(
            lambda: self.record(report, fp),
            "error.record",
            on_drop=lambda: self._store_failed(report, fp),
        )
        return report

    def track_payment_error(
        self,
        error: BaseException | ErrorDetail | str,
        request_context: Mapping[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ErrorReport:
        options = TrackOptions(ErrorCategory.PAYMENT, Severity.CRITICAL, extra or {})
        return self.track(error, request_context, options)

    def track_trading_error(
        self,
        error: BaseException | ErrorDetail | str,
        request_context: Mapping[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ErrorReport:
        options = TrackOptions(ErrorCategory.TRADING, Severity.CRITICAL, extra or {})
        return self.track(error, request_context, options)

    def track_auth_error(
        self,
        error: BaseException | ErrorDetail | str,
        request_context: Mapping[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ErrorReport:
        options = TrackOptions(ErrorCategory.AUTH, Severity.HIGH, extra or {})
        return self.track(error, request_context, options)

    async def record(self, report: ErrorReport, fp: str | None = None) -> int | None:
        """Apply one occurrence to the deduplicated state.

        Returns:
            The occurrence count within the retention window, or None if
            the store was unavailable.
        """
        fp = fp or self.fingerprint_of(report)
        ttl = self.config.retention_seconds
        seen_at = repr(report.context.timestamp)
        try:
            async with self._locks[int(fp[:8], 16) % _LOCK_STRIPES]:
                count = await self._store.incr(_count_key(fp), 1, ttl)
                # A first occurrence whose writes failed is repaired by the next one.
                if count == 1 or await self._store.get(_report_key(fp)) is None:
                    await self._store.set(_report_key(fp), encode_record(report), ttl)
                    await self._store.set(_first_key(fp), seen_at, ttl)
                    await self._store.push_trim(
                        RECENT_KEY, fp, self.config.recent_max, ttl
                    )
                else:
                    await self._store.expire(_report_key(fp), ttl)
                    await self._store.expire(_first_key(fp), ttl)
                await self._store.set(_last_key(fp), seen_at, ttl)
            await self._bump_stats(report)
        except StoreUnavailableError:
            LOGGER.warning("Failed to record error %s", fp, exc_info=True)
            self._store_failed(report, fp)
            return None
        if report.severity is Severity.CRITICAL:
            await self._forward(report, fp, count)
        return count

    async def _bump_stats(self, report: ErrorReport) -> None:
        width = self.config.stats_bucket_seconds
        bucket = int(report.context.timestamp // width) * width
        key = stats_key(bucket)
        ttl = self.config.stats_ttl_seconds
        for name in (
            "total",
            f"category:{report.category.value}",
            f"severity:{report.severity.value}",
        ):
            await self._store.hincr(key, name, 1, ttl)

    def _store_failed(self, report: ErrorReport, fp: str) -> None:
        self.counters["store_failures"] += 1
        if report.severity is not Severity.CRITICAL:
            return
        FALLBACK_LOGGER.critical(
            "Critical error %s [%s] %s: %s (endpoint=%s, request_id=%s)",
            fp,
            report.category.value,
            report.error.name,
            report.error.message,
            report.context.endpoint,
            report.context.request_id,
        )
        self._send_alert(report, fp, count=None)

    async def _forward(self, report: ErrorReport, fp: str, count: int) -> None:
        if self.dispatcher is None or not self.config.forward_critical:
            return
        limit = self.config.alert_rate_limit
        if limit > 0:
            try:
                sent = await self._store.incr(
                    _alerts_key(fp), 1, self.config.alert_rate_window_seconds
                )
            except StoreUnavailableError:
                LOGGER.warning(
                    "Alert rate limit unavailable for %s", fp, exc_info=True
                )
                sent = 1
            if sent > limit:
                self.counters["alerts_suppressed"] += 1
                return
        self._send_alert(report, fp, count)

    def _send_alert(self, report: ErrorReport, fp: str, count: int | None) -> None:
        if self.dispatcher is None or not self.config.forward_critical:
            return
        self.counters["alerts_forwarded"] += 1
        self.dispatcher.send_alert(
            AlertLevel.CRITICAL,
            f"{report.error.name}: {report.error.message}",
            ALERT_SOURCE,
            {
                "fingerprint": fp,
                "category": report.category.value,
                "severity": report.severity.value,
                "count": count,
                "endpoint": report.context.endpoint,
                "request_id": report.context.request_id,
            },
        )

    # --- Reads ---

    async def get_stats(self, window_minutes: int = 5) -> dict[str, Any]:
        """Aggregate error counts over the buckets covering the window.

        The current bucket is always included; windows wider than one
        bucket add the preceding buckets that cover them.

        Returns:
            ``total``, ``by_category``, ``by_severity``, the window and
            whether the store was ``available``.
        """
        width = self.config.stats_bucket_seconds
        buckets = max(1, math.ceil(window_minutes * 60 / width))
        current = int(self._clock() // width) * width
        stats: dict[str, Any] = {
            "available": True,
            "window_minutes": window_minutes,
            "total": 0,
            "by_category": {},
            "by_severity": {},
        }
        try:
            tables = [
                await self._store.hgetall(stats_key(current - i * width))
                for i in range(buckets)
            ]
        except StoreUnavailableError:
            LOGGER.warning("Failed to read error stats", exc_info=True)
            stats["available"] = False
            return stats
        by_category: dict[str, int] = stats["by_category"]
        by_severity: dict[str, int] = stats["by_severity"]
        for table in tables:
            for name, value in table.items():
                kind, _, key = name.partition(":")
                if kind == "total":
                    stats["total"] += value
                elif kind == "category":
                    by_category[key] = by_category.get(key, 0) + value
                elif kind == "severity":
                    by_severity[key] = by_severity.get(key, 0) + value
        return stats

    async def get_entry(self, fp: str) -> ErrorEntry | None:
        """Load the deduplicated state of one fingerprint.

        Raises:
            StoreUnavailableError: If the store is down.
            RecordDecodeError: If the stored report is malformed.
        """
        raw_report = await self._store.get(_report_key(fp))
        if raw_report is None:
            return None
        report = decode_report(raw_report)
        raw_count = await self._store.get(_count_key(fp))
        first = await self._store.get(_first_key(fp))
        last = await self._store.get(_last_key(fp))
        first_seen = float(first) if first else report.context.timestamp
        return ErrorEntry(
            fingerprint=fp,
            count=int(raw_count or 1),
            first_seen=first_seen,
            last_seen=float(last) if last else first_seen,
            report=report,
        )

    async def get_recent(self, count: int = 10) -> list[ErrorEntry]:
        """Return the most recently first-seen errors, newest first.

        Entries evicted from the store or impossible to decode are skipped.
        Returns an empty list if the store is down.
        """
        entries: list[ErrorEntry] = []
        try:
            fingerprints = await self._store.lrange(RECENT_KEY, 0, -1)
            seen: set[str] = set()
            for fp in fingerprints:
                if fp in seen:
                    continue
                seen.add(fp)
                try:
                    entry = await self.get_entry(fp)
                except RecordDecodeError as exc:
                    LOGGER.debug("Skipping undecodable error %s: %s", fp, exc.reason)
                    continue
                if entry is not None:
                    entries.append(entry)
                if len(entries) >= count:
                    break
        except StoreUnavailableError:
            LOGGER.warning("Failed to read recent errors", exc_info=True)
        return entries


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)
