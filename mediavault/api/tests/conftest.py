"""
Test Configuration and Fixtures

Shared fixtures for MEDIAVAULT API tests.
Provides an isolated database, seeded users, projects and albums, and
authenticated clients.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mediavault.api.access.audit import AuditLogger
from mediavault.api.access.grants import GrantService
from mediavault.api.auth.jwt import create_access_token
from mediavault.api.db.models import Album, Base, Project, User
from mediavault.api.db.session import get_db
from mediavault.api.main import create_app
from mediavault.api.roles import AccessLevel, Actor, Role


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite does not emit SAVEPOINT correctly without these
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async_session = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def app(db_session) -> FastAPI:
    """Create FastAPI app with test database."""
    test_app = create_app()

    async def override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ==================== User Fixtures ====================


async def _create_user(db_session, user_id: str, email: str, name: str, role: Role) -> User:
    user = User(id=user_id, email=email, name=name, role=role)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture(scope="function")
async def owner(db_session) -> User:
    """Internal user owning the test project and albums."""
    return await _create_user(db_session, "owner-1", "owner@mediavault.test", "Olive Owner", Role.PRO)


@pytest_asyncio.fixture(scope="function")
async def member(db_session) -> User:
    """Internal user without ownership."""
    return await _create_user(db_session, "member-1", "member@mediavault.test", "Max Member", Role.USER)


@pytest_asyncio.fixture(scope="function")
async def client_user(db_session) -> User:
    """External client."""
    return await _create_user(db_session, "client-1", "client@mediavault.test", "Cleo Client", Role.CLIENT)


@pytest_asyncio.fixture(scope="function")
async def outsider(db_session) -> User:
    """User with no relation to any test entity."""
    return await _create_user(db_session, "outsider-1", "outsider@mediavault.test", "Otto", Role.USER)


@pytest_asyncio.fixture(scope="function")
async def admin_user(db_session) -> User:
    """Create an admin user."""
    return await _create_user(db_session, "admin-1", "admin@mediavault.test", "Ada Admin", Role.ADMIN)


@pytest.fixture(scope="function")
def actor_for() -> Callable[[User], Actor]:
    """Build the acting identity of a user."""
    def _actor(user: User) -> Actor:
        return Actor(id=user.id, role=user.role)
    return _actor


@pytest.fixture(scope="function")
def headers_for() -> Callable[[User], dict]:
    """Authorization headers for a user."""
    def _headers(user: User) -> dict:
        token = create_access_token(user_id=user.id, email=user.email, role=user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ==================== Entity Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def project(db_session, owner) -> Project:
    """Create a test project."""
    project = Project(id="project-1", name="Harbour Survey", owner_id=owner.id)
    db_session.add(project)
    await db_session.commit()
    return project


@pytest_asyncio.fixture(scope="function")
async def other_project(db_session, outsider) -> Project:
    """Project owned by someone else."""
    project = Project(id="project-2", name="Quarry Inspection", owner_id=outsider.id)
    db_session.add(project)
    await db_session.commit()
    return project


@pytest_asyncio.fixture(scope="function")
async def project_album(db_session, owner, project) -> Album:
    """Album inside the test project."""
    album = Album(id="album-1", name="North Pier", owner_id=owner.id, project_id=project.id)
    db_session.add(album)
    await db_session.commit()
    return album


@pytest_asyncio.fixture(scope="function")
async def standalone_album(db_session, owner) -> Album:
    """Album outside any project."""
    album = Album(id="album-2", name="Loose Shots", owner_id=owner.id, project_id=None)
    db_session.add(album)
    await db_session.commit()
    return album


# ==================== Grant Helpers ====================


@pytest.fixture(scope="function")
def grant(db_session):
    """Insert a grant row directly, bypassing the service layer."""
    async def _grant(model, user: User, level: AccessLevel, **target) -> None:
        db_session.add(model(user_id=user.id, access_level=level, **target))
        await db_session.commit()
    return _grant


@pytest.fixture(scope="function")
def count_rows(db_session):
    """Count rows of a model, optionally filtered."""
    async def _count(model, *conditions) -> int:
        return await db_session.scalar(
            select(func.count()).select_from(model).where(*conditions)
        )
    return _count


# ==================== Service Fixtures ====================


class TickingClock:
    """Clock advancing one second per call."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


@pytest.fixture(scope="function")
def clock() -> TickingClock:
    """Deterministic clock for audit timestamps."""
    return TickingClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def service(db_session, clock) -> GrantService:
    """Grant service whose audit records are strictly ordered in time."""
    return GrantService(db_session, AuditLogger(db_session, clock=clock))
