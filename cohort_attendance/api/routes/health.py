# cohort_attendance/api/routes/health.py
from datetime import datetime, timezone
from http import HTTPStatus

import structlog
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.core.config import get_settings
from cohort_attendance.db.session import get_db

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str = Field(..., description="Always `ok` when the process answers.", examples=["ok"])
    app_name: str = Field(..., examples=["Cohort Attendance"])
    environment: str = Field(..., description="local/test/dev/stage/prod", examples=["local"])
    timestamp_utc: datetime = Field(..., examples=["2025-01-01T10:30:00Z"])


class ReadinessResponse(BaseModel):
    """
    Whether the dependencies a reconciliation run needs are usable.
    """

    status: str = Field(..., description="`ready` or `degraded`.", examples=["ready"])
    database: bool = Field(..., description="A trivial query against the database succeeded.")
    zoom_configured: bool = Field(
        ...,
        description="Zoom Server-to-Server OAuth credentials are present in settings.",
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Answers without touching the database or Zoom; meant for process liveness checks.",
)
async def health_check() -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status="ok",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        timestamp_utc=datetime.now(tz=timezone.utc),
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description=(
        "Checks the database connection and whether Zoom credentials are configured.\n\n"
        "Returns 503 with `status: degraded` when the database is unreachable."
    ),
    responses={503: {"description": "Database unreachable."}},
)
async def readiness_check(
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> ReadinessResponse:
    settings = get_settings()
    zoom_configured = bool(
        settings.ZOOM_ACCOUNT_ID and settings.ZOOM_CLIENT_ID and settings.ZOOM_CLIENT_SECRET
    )

    try:
        await db.execute(text("SELECT 1"))
        database = True
    except SQLAlchemyError as exc:
        logger.warning("readiness_database_unavailable", error=str(exc))
        database = False

    if not database:
        response.status_code = HTTPStatus.SERVICE_UNAVAILABLE
    return ReadinessResponse(
        status="ready" if database else "degraded",
        database=database,
        zoom_configured=zoom_configured,
    )
