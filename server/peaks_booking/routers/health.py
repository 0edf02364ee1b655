"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.dependencies import DatabaseSession
from ..schemas.health import HealthResponse, HealthStatus, ReadinessResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report that the process is up."""
    return HealthResponse(status=HealthStatus.HEALTHY, timestamp=utcnow())


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(db: AsyncSession = DatabaseSession):
    """Report whether the database is reachable; 503 when it is not."""
    try:
        await db.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError as e:
        logger.warning("Readiness check failed", extra={"error": repr(e)})
        database_ok = False

    body = ReadinessResponse(
        status=HealthStatus.READY if database_ok else HealthStatus.UNAVAILABLE,
        timestamp=utcnow(),
        database=database_ok,
    )
    if not database_ok:
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return body
