# cohort_attendance/main.py
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cohort_attendance.api.routes import aliases, attendance, cliffs, cohorts, health
from cohort_attendance.core.config import get_settings
from cohort_attendance.core.logging_config import configure_logging
from cohort_attendance.db.session import init_db
from cohort_attendance.services.session_locks import SessionLockRegistry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # pragma: no cover
    await init_db()
    yield


def create_app() -> FastAPI:
    """
    Application factory for the Cohort Attendance service.
    """
    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Backend service that reconciles Zoom participant logs into per-student\n"
            "session attendance: identity resolution with email aliases, merging of\n"
            "overlapping connections, and idempotent recalculation."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.session_locks = SessionLockRegistry()

    # Routers
    app.include_router(health.router)
    app.include_router(attendance.router)
    app.include_router(aliases.router)
    app.include_router(cliffs.router)
    app.include_router(cohorts.router)

    return app


app = create_app()
