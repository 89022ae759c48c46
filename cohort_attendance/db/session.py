# cohort_attendance/db/session.py
import os
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from cohort_attendance.core.config import get_settings
from cohort_attendance.db.base import Base

# Import ORM models so that Base.metadata is aware of them.
from cohort_attendance.models.attendance import Attendance, AttendanceSegment  # noqa: F401
from cohort_attendance.models.cohort_session import CohortSession  # noqa: F401
from cohort_attendance.models.profile import Profile, UserEmailAlias  # noqa: F401
from cohort_attendance.models.zoom_import_log import ZoomImportLog  # noqa: F401

settings = get_settings()

# Detect if we're running under pytest
IS_TEST = "PYTEST_CURRENT_TEST" in os.environ

engine = create_async_engine(
    settings.DB_URL,
    echo=False,
    # Avoid connection reuse across event loops in tests.
    poolclass=NullPool if IS_TEST else None,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides an async SQLAlchemy session.

    The session is automatically closed when the request is completed.
    """
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """
    Create any missing tables for application startup.

    Typically you'd eventually replace this with Alembic migrations.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
