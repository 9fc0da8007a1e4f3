"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import func, select, text

from overtime_engine.api.dependencies import DbSession
from overtime_engine.models import OvertimeJob

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    queue: dict[str, int] = {}


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession) -> HealthResponse:
    """Check API and database health, with job counts per status."""
    db_status = "unhealthy"
    queue: dict[str, int] = {}
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
        result = await db.execute(
            select(OvertimeJob.status, func.count()).group_by(OvertimeJob.status)
        )
        queue = {job_status: int(count) for job_status, count in result.all()}
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        queue=queue,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check() -> dict[str, str]:
    """Readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
