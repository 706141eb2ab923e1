"""Health and probe endpoints."""

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from payrun_engine.api.dependencies import DbSession
from payrun_engine.models.base import utcnow
from payrun_engine.services.repository import PayrollRunRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Database reachability plus runs stuck in PROCESSING."""

    status: str
    timestamp: datetime
    engine_version: str
    database: str
    stale_runs: int | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, db: DbSession) -> HealthResponse:
    """Report ``degraded`` when the database is unreachable or runs are stale."""
    settings = request.app.state.settings
    stale_runs = None
    try:
        await db.execute(text("SELECT 1"))
        stale_before = utcnow() - timedelta(seconds=settings.stale_after_seconds)
        stale = await PayrollRunRepository(db).find_stale_runs(stale_before)
        stale_runs = len(stale)
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)

    healthy = stale_runs is not None
    return HealthResponse(
        status="healthy" if healthy and stale_runs == 0 else "degraded",
        timestamp=utcnow(),
        engine_version=settings.engine_version,
        database="healthy" if healthy else "unhealthy",
        stale_runs=stale_runs,
    )


@router.get("/ready")
async def readiness_check(db: DbSession, response: Response) -> dict[str, str]:
    """Ready once the database answers; 503 otherwise."""
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Readiness check failed: %s", e)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unavailable"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
