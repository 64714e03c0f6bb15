"""
Shared fixtures for the SaaSify hosting test suite.

Uses in-memory SQLite (aiosqlite for the API, pysqlite for worker code) so
each test gets a fresh, isolated schema. Cloud providers and Redis are
replaced by the in-memory fakes in ``app.tests.fakes``.
"""

import os

from cryptography.fernet import Fernet

# Settings are read at import time; point them at test values first
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from collections.abc import AsyncGenerator, Callable  # noqa: E402
from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.hosting import naming, steps  # noqa: E402
from app.hosting.record import DatabaseConfig, DynamicConfig, HostingType, StaticConfig  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.models.domain import Domain  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.hosting_store import HostingStore, new_hosting_row  # noqa: E402
from app.tests.fakes import FakeRedis, RecordingSender, fake_providers, issue_access_token  # noqa: E402
from app.workers.queue import JobQueue  # noqa: E402


# ---------------------------------------------------------------------------
# Async database (API side)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture()
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def test_user(db: AsyncSession) -> User:
    user = User(email="owner@saasify.local")
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture()
async def other_user(db: AsyncSession) -> User:
    user = User(email="someone-else@saasify.local")
    db.add(user)
    await db.commit()
    return user


@pytest.fixture()
def auth_token(test_user) -> str:
    """Return a valid JWT access token for the test user."""
    return issue_access_token(str(test_user.id))


# ---------------------------------------------------------------------------
# Queue and providers
# ---------------------------------------------------------------------------

@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture()
def queue(sender) -> JobQueue:
    return JobQueue(FakeRedis(), send=sender, lock_ttl=60)


@pytest.fixture()
def providers():
    return fake_providers()


# ---------------------------------------------------------------------------
# HTTPX AsyncClient (integration tests)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def client(db: AsyncSession, queue: JobQueue, providers) -> AsyncGenerator[AsyncClient, None]:
    """
    An AsyncClient that talks to the real FastAPI app, with the database,
    job queue and cloud providers overridden.
    """
    from app.core.database import get_db
    from app.core.dependencies import get_job_queue, get_providers
    from app.main import app

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_job_queue] = lambda: queue
    app.dependency_overrides[get_providers] = lambda: providers

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def auth_client(client: AsyncClient, auth_token: str) -> AsyncClient:
    """AsyncClient pre-configured with an auth header."""
    client.headers["Authorization"] = f"Bearer {auth_token}"
    return client


# ---------------------------------------------------------------------------
# Sync database (worker side)
# ---------------------------------------------------------------------------

@pytest.fixture()
def sync_db() -> Session:
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    session = sessionmaker(eng, class_=Session, expire_on_commit=False)()
    yield session
    session.close()
    eng.dispose()


@pytest.fixture()
def store(sync_db: Session) -> HostingStore:
    return HostingStore(sync_db)


@pytest.fixture()
def make_hosting(sync_db: Session) -> Callable[..., int]:
    """Insert a hosting row the way the API does and return its id."""

    def _make(
        hosting_type: HostingType = HostingType.STATIC,
        *,
        domain_name: str = "example.com",
        enable_ssl: bool = True,
        database_enabled: bool = False,
        hosted_zone_id: str | None = None,
    ) -> int:
        user = sync_db.query(User).filter_by(email="worker@saasify.local").one_or_none()
        if user is None:
            user = User(email="worker@saasify.local")
            sync_db.add(user)
            sync_db.flush()
        domain = Domain(owner_id=user.id, domain_name=domain_name, hosted_zone_id=hosted_zone_id)
        sync_db.add(domain)
        sync_db.flush()

        if hosting_type == HostingType.STATIC:
            names = steps.static_step_names(enable_ssl, hosted_zone_id is not None)
            row = new_hosting_row(
                user_id=user.id,
                domain=domain,
                hosting_type=hosting_type,
                plan=naming.DEFAULT_STATIC_PLAN,
                steps=steps.build_steps(names),
                static=StaticConfig(enable_ssl=enable_ssl),
                now=datetime(2026, 1, 1, tzinfo=UTC),
            )
        else:
            database = DatabaseConfig(enabled=False)
            if database_enabled:
                database = DatabaseConfig(
                    enabled=True,
                    engine="mysql",
                    instance_class="db.t3.micro",
                    instance_identifier=naming.database_identifier(domain_name),
                    name=naming.database_name(domain_name),
                    username="admin",
                    status="pending",
                )
            names = steps.dynamic_step_names(database_enabled, hosted_zone_id is not None)
            row = new_hosting_row(
                user_id=user.id,
                domain=domain,
                hosting_type=hosting_type,
                plan=naming.DEFAULT_DYNAMIC_PLAN,
                steps=steps.build_steps(names),
                dynamic=DynamicConfig(database=database),
                now=datetime(2026, 1, 1, tzinfo=UTC),
            )
        sync_db.add(row)
        sync_db.commit()
        return row.id

    return _make
