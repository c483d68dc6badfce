"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from site_manager.common.constants import UserRole
from site_manager.config import settings
from site_manager.database import Base, get_db
from site_manager.main import create_app
from site_manager.realtime.manager import manager

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import site_manager.auth.models  # noqa: F401
import site_manager.common.audit  # noqa: F401
import site_manager.users.models  # noqa: F401
import site_manager.sites.models  # noqa: F401
import site_manager.tasks.models  # noqa: F401
import site_manager.absences.models  # noqa: F401
import site_manager.interventions.models  # noqa: F401
import site_manager.conversations.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "JSON"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from site_manager.common.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def _reset_socket_manager():
    """The socket registry is process-wide; start every test empty."""
    manager.connections.clear()
    manager.rooms.clear()
    yield
    manager.connections.clear()
    manager.rooms.clear()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Point UPLOAD_DIR at a per-test temp directory."""
    path = tmp_path / "uploads"
    path.mkdir()
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture(autouse=True)
def _no_smtp(monkeypatch):
    """No real mail server in tests; individual tests patch ``smtplib.SMTP``."""
    monkeypatch.setattr(settings, "SMTP_HOST", "")
    monkeypatch.setattr(settings, "EMAIL_USER", "")
    monkeypatch.setattr(settings, "EMAIL_PASSWORD", "")
    monkeypatch.setattr(settings, "EMAIL_FROM", "")
    monkeypatch.setattr(settings, "ENVIRONMENT", "development")


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(upload_dir):
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

# bcrypt is slow; hash the shared test password once
TEST_PASSWORD = "chantier123"
_password_hash: str | None = None


def _test_password_hash() -> str:
    global _password_hash
    if _password_hash is None:
        from site_manager.auth.service import hash_password

        _password_hash = hash_password(TEST_PASSWORD)
    return _password_hash


async def make_user(
    *,
    role: UserRole = UserRole.worker,
    email: str | None = None,
    first_name: str = "Test",
    last_name: str = "User",
    is_active: bool = True,
):
    """Insert a user with its own committed session and return it."""
    from site_manager.users.models import User

    user = User(
        id=uuid.uuid4(),
        first_name=first_name,
        last_name=last_name,
        email=email or f"{role.value}.{uuid.uuid4().hex[:8]}@tmpaysage.fr",
        password_hash=_test_password_hash(),
        role=role,
        is_active=is_active,
        profile_image=None,
    )
    async with TestSessionFactory() as session:
        session.add(user)
        await session.commit()
    return user


async def make_site(project_manager_id: uuid.UUID, **overrides):
    from site_manager.common.constants import SiteStatus
    from site_manager.sites.models import Site

    data = dict(
        id=uuid.uuid4(),
        name="Parc des Buttes",
        address="12 rue des Lilas",
        city="Lyon",
        postal_code="69003",
        start_date=date(2026, 3, 1),
        expected_end_date=date(2026, 9, 30),
        status=SiteStatus.active,
        budget=Decimal("125000.00"),
        project_manager_id=project_manager_id,
    )
    data.update(overrides)
    site = Site(**data)
    async with TestSessionFactory() as session:
        session.add(site)
        await session.commit()
    return site


async def make_task(site_id: uuid.UUID, created_by_id: uuid.UUID, *assignee_ids: uuid.UUID, **overrides):
    from site_manager.tasks.models import Task, task_assignments

    data = dict(
        id=uuid.uuid4(),
        title="Taille des haies",
        site_id=site_id,
        created_by_id=created_by_id,
    )
    data.update(overrides)
    task = Task(**data)
    async with TestSessionFactory() as session:
        session.add(task)
        await session.flush()
        if assignee_ids:
            await session.execute(
                task_assignments.insert(),
                [{"task_id": task.id, "user_id": user_id} for user_id in assignee_ids],
            )
        await session.commit()
    return task


@pytest.fixture
async def admin():
    return await make_user(role=UserRole.administrator, first_name="Alice", last_name="Admin")


@pytest.fixture
async def hr():
    return await make_user(role=UserRole.rh, first_name="Hugo", last_name="Rh")


@pytest.fixture
async def worker():
    return await make_user(role=UserRole.worker, first_name="Walid", last_name="Worker")


@pytest.fixture
async def other_worker():
    return await make_user(role=UserRole.worker, first_name="Olga", last_name="Ouvriere")


@pytest.fixture
async def workshop_user():
    return await make_user(role=UserRole.workshop, first_name="Wes", last_name="Atelier")


@pytest.fixture
async def project_manager():
    return await make_user(role=UserRole.project_manager, first_name="Paula", last_name="Chef")


@pytest.fixture
async def conductor():
    return await make_user(role=UserRole.conductor_of_work, first_name="Carla", last_name="Conductrice")


# ── Auth helpers ────────────────────────────────────────────────────

async def issue_token(user) -> str:
    """Create a persisted session for *user* and return its bearer token."""
    from site_manager.auth.service import create_session

    async with TestSessionFactory() as session:
        token, _ = await create_session(session, user, "127.0.0.1", "pytest")
        await session.commit()
    return token


async def auth_headers_for(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {await issue_token(user)}"}


def expired_token(user) -> str:
    from jose import jwt

    payload = {
        "sub": str(user.id),
        "role": user.role.value,
        "type": "access",
        "jti": uuid.uuid4().hex,
        "exp": datetime.now(timezone.utc) - timedelta(hours=1),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


# ── Socket helpers ──────────────────────────────────────────────────

class FakeWebSocket:
    """Records frames pushed by the connection manager."""

    def __init__(self) -> None:
        self.send_json = AsyncMock()

    def events(self, name: str | None = None) -> list[dict]:
        frames = [call.args[0] for call in self.send_json.await_args_list]
        if name is None:
            return frames
        return [f for f in frames if f["event"] == name]


@pytest.fixture
def connect_socket():
    """Register a fake socket for a user and return ``(websocket, connection)``."""

    def _connect(user_id: uuid.UUID, *rooms: str):
        ws = FakeWebSocket()
        conn = manager.connect(ws, user_id)
        for room in rooms:
            manager.join_room(conn.id, room)
        return ws, conn

    return _connect
