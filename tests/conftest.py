"""
Shared fixtures: a fresh in-memory SQLite database per test, a fixed clock,
an HTTP client wired to the app, and small factories for catalog rows.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from feature_tracker.core import FixedClock, create_access_token, get_clock, get_session
from feature_tracker.main import app
from feature_tracker.models import (
    Base,
    Feature,
    FeatureStatus,
    Product,
    Release,
    ReleaseStatus,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; take it over
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


# =============================================================================
# HTTP CLIENT
# =============================================================================


@pytest.fixture
async def client(session_factory, clock):
    """Client whose requests share the test database and clock.

    API tests seed data through ``session_factory`` and commit before
    calling the client, since both use the same in-memory connection.
    """

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: clock
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user with the given roles."""

    def _headers(username: str = "alice", *roles: str) -> dict[str, str]:
        token = create_access_token(username, list(roles))
        return {"Authorization": f"Bearer {token}"}

    return _headers


# =============================================================================
# CATALOG FACTORIES
# =============================================================================


@pytest.fixture
def make_product():
    async def _make(session: AsyncSession, code: str = "intellij", prefix: str = "IDEA") -> Product:
        product = Product(code=code, prefix=prefix, name=code.title(), created_by="admin")
        session.add(product)
        await session.flush()
        return product

    return _make


@pytest.fixture
def make_release():
    async def _make(
        session: AsyncSession,
        product: Product,
        code: str,
        status: ReleaseStatus = ReleaseStatus.DRAFT,
        created_at: datetime = NOW,
        released_at: datetime | None = None,
        created_by: str = "admin",
    ) -> Release:
        release = Release(
            code=code,
            product=product,
            status=status,
            created_at=created_at,
            released_at=released_at,
            created_by=created_by,
        )
        session.add(release)
        await session.flush()
        return release

    return _make


@pytest.fixture
def make_feature():
    async def _make(
        session: AsyncSession,
        product: Product,
        code: str,
        release: Release | None = None,
        status: FeatureStatus = FeatureStatus.NEW,
        created_by: str = "admin",
        assigned_to: str | None = None,
        created_at: datetime = NOW,
        updated_at: datetime | None = None,
        **planning,
    ) -> Feature:
        feature = Feature(
            code=code,
            title=f"Feature {code}",
            product=product,
            release=release,
            status=status,
            created_by=created_by,
            assigned_to=assigned_to,
            created_at=created_at,
            updated_at=updated_at,
            **planning,
        )
        session.add(feature)
        await session.flush()
        return feature

    return _make
