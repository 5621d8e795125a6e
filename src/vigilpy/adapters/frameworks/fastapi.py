"""FastAPI adapter exposing health and monitoring endpoints."""

from fastapi import APIRouter, Query, Response
from fastapi.responses import JSONResponse

from vigilpy.core.encoding.records import encode_ndjson
from vigilpy.core.encoding.safe_json import to_jsonable
from vigilpy.core.exceptions import StoreUnavailableError
from vigilpy.core.models import HealthStatus
from vigilpy.pipeline import Pipeline
from vigilpy.snapshot import collect_snapshot


def create_monitoring_router(pipeline: Pipeline) -> APIRouter:
    """Create a FastAPI router with /health, /monitoring and /logs endpoints.

    Args:
        pipeline: The pipeline to report on.

    Returns:
        APIRouter with the endpoints configured.
    """
    router = APIRouter()

    @router.get("/health")
    async def get_health() -> JSONResponse:
        """Run every health check; 503 when the system is unhealthy."""
        result = await pipeline.health.run_all()
        status_code = 503 if result.status is HealthStatus.UNHEALTHY else 200
        return JSONResponse(to_jsonable(result), status_code=status_code)

    @router.get("/monitoring")
    async def get_monitoring(
        window: int = Query(default=5, ge=1, le=1440),
        limit: int = Query(default=10, ge=1, le=500),
    ) -> JSONResponse:
        """Return the monitoring snapshot.

        Args:
            window: Error statistics window in minutes.
            limit: Number of recent errors, logs and alerts.
        """
        return JSONResponse(await collect_snapshot(pipeline, window, limit))

    @router.get("/logs")
    async def get_logs(limit: int = Query(default=100, ge=1, le=1000)) -> Response:
        """Return the newest persisted log entries as NDJSON."""
        try:
            entries, _ = await pipeline.logger.get_recent(limit)
        except StoreUnavailableError:
            return JSONResponse({"error": "store unavailable"}, status_code=503)
        return Response(content=encode_ndjson(entries), media_type="application/x-ndjson")

    return router
