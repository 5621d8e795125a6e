"""Monitoring snapshot: fans out to every component in parallel."""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from vigilpy.core.encoding.safe_json import to_jsonable

if TYPE_CHECKING:
    from vigilpy.pipeline import Pipeline

LOGGER = logging.getLogger(__name__)


async def _section(name: str, awaitable: Any) -> dict[str, Any]:
    try:
        data = await awaitable
    except Exception as exc:
        LOGGER.warning("Snapshot section %s failed", name, exc_info=True)
        return {"available": False, "error": repr(exc)}
    data = to_jsonable(data)
    if isinstance(data, dict):
        return {"available": True, **data}
    return {"available": True, "data": data}


async def _alerts(pipeline: "Pipeline", limit: int) -> dict[str, Any]:
    return {
        "stats": pipeline.dispatcher.get_alert_stats(),
        "recent": pipeline.dispatcher.get_recent_alerts(limit),
    }


async def _errors(pipeline: "Pipeline", window_minutes: int, limit: int) -> dict[str, Any]:
    stats, recent = await asyncio.gather(
        pipeline.tracker.get_stats(window_minutes),
        pipeline.tracker.get_recent(limit),
    )
    return {**stats, "recent": recent, "counters": dict(pipeline.tracker.counters)}


async def collect_snapshot(
    pipeline: "Pipeline", window_minutes: int = 5, limit: int = 10
) -> dict[str, Any]:
    """Gather health, error, log, alert and queue state in one document.

    Sections are collected concurrently. A section that fails is marked
    ``{"available": False}`` instead of failing the snapshot; sections
    that degrade internally report their own ``available`` flag.

    Returns:
        A JSON-compatible mapping.
    """
    health, errors, logs, alerts = await asyncio.gather(
        _section("health", pipeline.health.run_all()),
        _section("errors", _errors(pipeline, window_minutes, limit)),
        _section("logs", pipeline.logger.get_log_stats(limit)),
        _section("alerts", _alerts(pipeline, limit)),
    )
    snapshot = {
        "timestamp": time.time(),
        "health": health,
        "errors": errors,
        "logs": logs,
        "alerts": alerts,
        "tasks": pipeline.tasks.stats(),
    }
    return to_jsonable(snapshot)
