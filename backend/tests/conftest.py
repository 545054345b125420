"""Pytest configuration and shared fixtures for service and API tests."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event

# Set test DB and secrets before app imports so config/engine use them
_DB_PATH = os.path.join(tempfile.gettempdir(), f"spinecheck_test_{os.getpid()}.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("CHECKINS_TOKEN_SECRET", "test-checkins-secret-0123456789abcdef")
os.environ.setdefault("CHECKINS_DISPATCH_TOKEN", "test-dispatch-token")
os.environ.setdefault("ADMIN_PASSWORD", "test-admin-password")
os.environ.setdefault("APP_URL", "https://app.painoptix.test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from spinecheck.core.auth import create_access_token, hash_password
from spinecheck.db.base import Base
from spinecheck.db.session import async_session_maker, engine, init_db
from spinecheck.main import app
from spinecheck.models.assessment import Assessment
from spinecheck.models.user import ROLE_ADMIN, User
from spinecheck.services.http_client import close_http_client, init_http_client
from spinecheck.services.red_flags import clear_red_flag_cache

pytest_plugins = ["pytest_asyncio"]

ADMIN_PASSWORD = os.environ["ADMIN_PASSWORD"]
DISPATCH_TOKEN = os.environ["CHECKINS_DISPATCH_TOKEN"]


if engine.dialect.name == "sqlite":
    # pysqlite/aiosqlite transaction handling: take the write lock at BEGIN so
    # concurrent sessions queue on the busy timeout instead of deadlocking.
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@pytest_asyncio.fixture
async def ensure_db():
    """Create tables and the shared HTTP client for this test's event loop."""
    await init_db()
    init_http_client(timeout=5.0)
    yield
    await close_http_client()
    await engine.dispose()


async def _clear_all():
    """Delete rows child-first so every test starts from empty tables."""
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())


@pytest_asyncio.fixture
async def clean_db(ensure_db):
    await _clear_all()
    clear_red_flag_cache()
    yield


@pytest_asyncio.fixture
async def client(ensure_db):
    """Yield AsyncClient over the ASGI app (lifespan not run; ensure_db does the setup)."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def operator_user(clean_db):
    """Admin operator committed to the DB: (user_id, email, access_token)."""
    async with async_session_maker() as session:
        user = User(email="ops@test.com", password_hash=hash_password("password123"), role=ROLE_ADMIN)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user.id, user.email, create_access_token(user.id, user.email, user.role)


@pytest.fixture
def auth_headers(operator_user):
    _, __, token = operator_user
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_password_headers():
    return {"X-Admin-Password": ADMIN_PASSWORD}


@pytest.fixture
def dispatch_headers():
    return {"X-Dispatch-Token": DISPATCH_TOKEN}


@pytest_asyncio.fixture
async def make_assessment(clean_db):
    """Factory: insert an Assessment (guide delivered 20 days ago by default) and return its id."""

    async def _make(
        assessment_id: str = "assessment-123",
        *,
        email: str | None = "patient@example.com",
        phone_number: str | None = None,
        guide_type: str | None = "sciatica",
        tier: str = "free",
        sms_opt_in: bool = False,
        sms_opted_out: bool = False,
        delivered_days_ago: float | None = 20,
    ) -> str:
        delivered = None
        if delivered_days_ago is not None:
            delivered = datetime.now(timezone.utc) - timedelta(days=delivered_days_ago)
        async with async_session_maker() as session:
            session.add(
                Assessment(
                    id=assessment_id,
                    email=email,
                    phone_number=phone_number,
                    guide_type=guide_type,
                    tier=tier,
                    sms_opt_in=sms_opt_in,
                    sms_opted_out=sms_opted_out,
                    guide_delivered_at=delivered,
                )
            )
            await session.commit()
        return assessment_id

    return _make
