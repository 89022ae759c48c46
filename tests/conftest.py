# tests/conftest.py
import os

os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from cohort_attendance.api.dependencies.providers import get_participant_provider  # noqa: E402
from cohort_attendance.db.base import Base  # noqa: E402
from cohort_attendance.db.session import get_db  # noqa: E402
from cohort_attendance.main import create_app  # noqa: E402
from factories import StubParticipantProvider  # noqa: E402


@pytest.fixture
async def engine():
    """
    Fresh in-memory SQLite database per test.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy own transaction boundaries so SAVEPOINTs behave.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        class_=AsyncSession,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def provider() -> StubParticipantProvider:
    return StubParticipantProvider()


@pytest.fixture
def app(session_factory, provider):
    """
    Fresh app wired to the test database and the stub participant provider.
    """
    app = create_app()

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_participant_provider] = lambda: provider
    return app


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
