"""Tests for the error tracker."""

import logging

import pytest
from tests.helpers import FakeClock, FlakyStore

from vigilpy.adapters.logging_context import log_context
from vigilpy.adapters.storage import BoundedStore
from vigilpy.alerts import AlertDispatcher
from vigilpy.config import TrackerConfig
from vigilpy.core.models import AlertLevel, ErrorCategory, Severity
from vigilpy.tasks import BackgroundTaskQueue
from vigilpy.tracker import ALERT_SOURCE, ErrorTracker, TrackOptions


class ValidationError(Exception):
    pass


def _tracker(
    store,
    clock: FakeClock,
    tasks: BackgroundTaskQueue | None = None,
    dispatcher: AlertDispatcher | None = None,
    **config,
) -> ErrorTracker:
    return ErrorTracker(
        store,
        tasks=tasks,
        config=TrackerConfig(environment="test", version="9.9.9", **config),
        dispatcher=dispatcher,
        clock=clock,
    )


class TestBuildReport:
    @pytest.mark.tra("Tracker.Report.Context")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_request_context_is_split_and_redacted(
        self, bounded_store: BoundedStore, clock: FakeClock
    ) -> None:
        tracker = _tracker(bounded_store, clock)

        report = tracker.build_report(
            RuntimeError("boom"),
            {
                "user_id": 7,
                "wallet_address": "0x1234567890abcdef1234567890abcdef12345678",
                "endpoint": "/withdraw",
                "method": "POST",
                "user_agent": "curl/8",
                "api_key": "sk-live",
                "amount": 10,
            },
            TrackOptions(extra={"attempt": 2}),
        )

        ctx = report.context
        assert ctx.timestamp == clock()
        assert (ctx.environment, ctx.version) == ("test", "9.9.9")
        assert ctx.user_id == "7"
        assert ctx.wallet_address == "0x1234...5678"
        assert (ctx.endpoint, ctx.method, ctx.user_agent) == ("/withdraw", "POST", "curl/8")
        assert ctx.extra == {"api_key": "[REDACTED]", "amount": 10, "attempt": 2}

    @pytest.mark.tra("Tracker.Report.RequestId")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_request_id_falls_back_to_log_context(
        self, bounded_store: BoundedStore, clock: FakeClock
    ) -> None:
        tracker = _tracker(bounded_store, clock)

        with log_context(request_id="req-9"):
            report = tracker.build_report("boom")

        assert report.context.request_id == "req-9"
        assert report.error.name == "Error"

    @pytest.mark.tra("Tracker.Report.Overrides")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_shorthands_override_classification(
        self, bounded_store: BoundedStore, clock: FakeClock
    ) -> None:
        tracker = _tracker(bounded_store, clock)

        payment = tracker.track_payment_error(ValueError("odd"))
        trading = tracker.track_trading_error(ValueError("odd"))
        auth = tracker.track_auth_error(ValueError("odd"))

        assert (payment.category, payment.severity) == (
            ErrorCategory.PAYMENT,
            Severity.CRITICAL,
        )
        assert (trading.category, trading.severity) == (
            ErrorCategory.TRADING,
            Severity.CRITICAL,
        )
        assert (auth.category, auth.severity) == (ErrorCategory.AUTH, Severity.HIGH)


class TestDeduplication:
    @pytest.mark.tra("Tracker.Dedup.Count")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_repeated_errors_share_one_entry(
        self, bounded_store: BoundedStore, clock: FakeClock
    ) -> None:
        tracker = _tracker(bounded_store, clock)
        first_seen = clock()
        last_seen = first_seen

        for i in range(5):
            report = tracker.build_report(
                LookupError(f"order {i + 100} not found"), {"endpoint": "/orders"}
            )
            count = await tracker.record(report)
            entry = await tracker.get_entry(tracker.fingerprint_of(report))

            assert count == i + 1
            assert entry is not None
            assert entry.count == i + 1
            assert entry.first_seen == first_seen
            assert entry.last_seen >= last_seen
            last_seen = entry.last_seen
            clock.advance(1)

        recent = await tracker.get_recent()
        assert len(recent) == 1
        assert recent[0].report.error.message == "order 100 not found"
        assert recent[0].last_seen == first_seen + 4

    @pytest.mark.tra("Tracker.Dedup.Background")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_track_records_in_background(
        self, bounded_store: BoundedStore, clock: FakeClock, tasks: BackgroundTaskQueue
    ) -> None:
        tracker = _tracker(bounded_store, clock, tasks)

        first = tracker.track(ValidationError("invalid amount"), {"endpoint": "/deposit"})
        tracker.track(ValidationError("invalid amount"), {"endpoint": "/deposit"})
        tracker.track(RuntimeError("other failure"), {"endpoint": "/deposit"})
        assert await tasks.drain(timeout=1)

        assert (first.category, first.severity) == (ErrorCategory.USER_ERROR, Severity.LOW)
        recent = await tracker.get_recent()
        assert [e.count for e in recent] == [1, 2]
        assert recent[1].fingerprint == tracker.fingerprint_of(first)

    @pytest.mark.tra("Tracker.Dedup.Expiry")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_counts_restart_after_retention(
        self, bounded_store: BoundedStore, clock: FakeClock
    ) -> None:
        tracker = _tracker(bounded_store, clock, retention_seconds=60)
        report = tracker.build_report(RuntimeError("flaky"))

        await tracker.record(report)
        clock.advance(61)

        assert await tracker.record(tracker.build_report(RuntimeError("flaky"))) == 1

    @pytest.mark.tra("Tracker.Dedup.Repair")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_failed_first_write_is_repaired(
        self, clock: FakeClock, tasks: BackgroundTaskQueue
    ) -> None:
        """A first occurrence whose report write failed reappears on the next."""
        store = BoundedStore(FlakyStore(failures=1, clock=clock))
        tracker = _tracker(store, clock, tasks)

        for _ in range(5):
            report = tracker.track(
                ValidationError("invalid amount"), {"endpoint": "/deposit"}
            )
            clock.advance(1)
        assert await tasks.drain(timeout=1)

        recent = await tracker.get_recent()
        assert len(recent) == 1
        assert recent[0].fingerprint == tracker.fingerprint_of(report)
        assert recent[0].count == 5
        assert recent[0].first_seen <= recent[0].last_seen
        assert tracker.counters["store_failures"] == 1


class TestStats:
    @pytest.mark.tra("Tracker.Stats.Window")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_windowed_counts(
        self, bounded_store: BoundedStore, clock: FakeClock
    ) -> None:
        tracker = _tracker(bounded_store, clock)
        await tracker.record(tracker.build_report(RuntimeError("payment declined")))
        # Moves into the next five-minute bucket.
        clock.advance(150)
        await tracker.record(tracker.build_report(RuntimeError("connection reset")))
        await tracker.record(tracker.build_report(RuntimeError("connection reset")))

        current = await tracker.get_stats(window_minutes=5)
        wider = await tracker.get_stats(window_minutes=10)

        assert current["total"] == 2
        assert current["by_category"] == {"infrastructure": 2}
        assert wider["total"] == 3
        assert wider["by_category"] == {"infrastructure": 2, "payment": 1}
        assert wider["by_severity"] == {"high": 2, "critical": 1}
        assert wider["available"] is True


class TestAlertForwarding:
    @pytest.mark.tra("Tracker.Alerts.Critical")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_critical_reports_become_alerts(
        self, bounded_store: BoundedStore, clock: FakeClock
    ) -> None:
        dispatcher = AlertDispatcher(clock=clock)
        tracker = _tracker(bounded_store, clock, dispatcher=dispatcher)

        await tracker.record(tracker.build_report(RuntimeError("payment capture failed")))
        await tracker.record(tracker.build_report(RuntimeError("session expired")))

        alerts = dispatcher.get_recent_alerts()
        assert len(alerts) == 1
        assert alerts[0].level is AlertLevel.CRITICAL
        assert alerts[0].source == ALERT_SOURCE
        assert alerts[0].message == "RuntimeError: payment capture failed"
        assert alerts[0].metadata is not None
        assert alerts[0].metadata["count"] == 1

    @pytest.mark.tra("Tracker.Alerts.RateLimit")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_alerts_per_fingerprint_are_limited(
        self, bounded_store: BoundedStore, clock: FakeClock
    ) -> None:
        dispatcher = AlertDispatcher(clock=clock)
        tracker = _tracker(bounded_store, clock, dispatcher=dispatcher, alert_rate_limit=2)

        for _ in range(3):
            await tracker.record(tracker.build_report(RuntimeError("payment capture failed")))

        assert len(dispatcher.get_recent_alerts()) == 2
        assert tracker.counters["alerts_suppressed"] == 1

    @pytest.mark.tra("Tracker.StoreDown.Fallback")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_store_outage_falls_back_to_local_log_and_alert(
        self,
        broken_store: BoundedStore,
        clock: FakeClock,
        tasks: BackgroundTaskQueue,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.CRITICAL, logger="vigilpy.fallback")
        dispatcher = AlertDispatcher(clock=clock)
        tracker = _tracker(broken_store, clock, tasks, dispatcher=dispatcher)

        report = tracker.track_payment_error(RuntimeError("refund failed"))
        tracker.track(RuntimeError("something minor"))
        assert await tasks.drain(timeout=2)

        assert report.severity is Severity.CRITICAL
        assert tracker.counters["store_failures"] == 2
        assert [a.source for a in dispatcher.get_recent_alerts()] == [ALERT_SOURCE]
        fallback = [r for r in caplog.records if r.name == "vigilpy.fallback"]
        assert len(fallback) == 1
        assert "refund failed" in fallback[0].getMessage()
        assert (await tracker.get_stats())["available"] is False
        assert await tracker.get_recent() == []

    @pytest.mark.tra("Tracker.Dropped.Fallback")
    @pytest.mark.tier(1)
    @pytest.mark.core
    async def test_refused_record_job_still_alerts(
        self,
        bounded_store: BoundedStore,
        clock: FakeClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A critical report the queue refuses goes to the fallback path."""
        caplog.set_level(logging.CRITICAL, logger="vigilpy.fallback")
        queue = BackgroundTaskQueue()
        await queue.stop()
        dispatcher = AlertDispatcher(clock=clock)
        tracker = _tracker(bounded_store, clock, queue, dispatcher=dispatcher)

        tracker.track_trading_error(RuntimeError("position close failed"))

        assert tracker.counters["store_failures"] == 1
        assert [a.source for a in dispatcher.get_recent_alerts()] == [ALERT_SOURCE]
        assert any(r.name == "vigilpy.fallback" for r in caplog.records)
