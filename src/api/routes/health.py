"""
Health check endpoints.

Provides health, readiness, and liveness probes.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from api.dependencies import DB, AppSettings, Turns
from models.api_models import HealthResponse
from utils.db_utils import check_pool_health
from utils.metrics import update_db_pool_metrics

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Database pool status and number of turns currently streaming.",
)
async def health_check(db: DB, turns: Turns, settings: AppSettings) -> HealthResponse:
    db_health = await check_pool_health(db)
    update_db_pool_metrics(db)

    if not db_health["healthy"]:
        status = "unhealthy"
    elif turns.shutting_down:
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        version=settings.app_version,
        database=db_health,
        active_turns=len(turns),
    )


@router.get("/health/ready", summary="Readiness probe")
async def readiness_check(db: DB, turns: Turns) -> JSONResponse:
    """Ready when the database answers and the server is not draining."""
    if turns.shutting_down:
        return JSONResponse(status_code=503, content={"ready": False, "error": "Shutting down"})
    health = await check_pool_health(db)
    if not health["healthy"]:
        return JSONResponse(status_code=503, content={"ready": False, "error": "Database unavailable"})
    return JSONResponse(content={"ready": True})


@router.get("/health/live", summary="Liveness probe")
async def liveness_check() -> dict[str, bool]:
    return {"alive": True}
