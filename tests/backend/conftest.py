"""
Shared fixtures for Crewboard backend tests.

Services and routes run against an in-memory SQLite database through
aiosqlite. The connection is configured so SAVEPOINTs and ON DELETE CASCADE
behave as they do on PostgreSQL.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("WEBHOOK_SECRET", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crewboard.core.dependencies import get_db_session
from crewboard.main import app
from crewboard.models import Base, User
from crewboard.services.auth_service import create_access_token


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client bound to the app, with requests using the test database."""

    async def _get_test_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _get_test_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_user(session):
    """Factory inserting and committing a user whose id is ``user_<username>``."""

    async def _make_user(username: str, **fields) -> User:
        user = User(
            id=f"user_{username}",
            email=f"{username}@example.com",
            username=username,
            display_name=fields.pop("display_name", username.title()),
            **fields,
        )
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest.fixture
def auth_headers():
    """Build an Authorization header carrying a token for ``user_id``."""

    def _auth_headers(user_id: str) -> dict[str, str]:
        token = create_access_token({"sub": user_id})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
