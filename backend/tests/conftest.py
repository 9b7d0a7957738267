"""Pytest configuration and fixtures for backend tests.

Most tests run against isolated SecurityContainers wired to in-memory
stores, so they need no database.

PostgreSQL Handling (for the SQL store tests):
- If TEST_DATABASE_URL is set, it is used
- Otherwise, if testcontainers is installed and Docker is available, a
  PostgreSQL container is started automatically
- Falls back to skipping DB-dependent tests if neither is available
"""

import asyncio
import os
import uuid
from collections.abc import AsyncGenerator
from dataclasses import replace
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment variables before importing app modules
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-securityx-tests"
os.environ["ENVIRONMENT"] = "development"
os.environ["ALERT_WEBHOOK_URL"] = ""

TEST_ORIGIN = "https://app.example.com"


# --- In-memory collaborators ---


class InMemoryOriginStore:
    """OriginStore kept in a dict. Set ``fail`` or ``delay`` to simulate outages."""

    def __init__(self):
        self.rows = {}
        self.fail = False
        self.delay = 0.0
        self.calls = []

    async def _io(self, name):
        self.calls.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("origin store unavailable")

    async def load_all(self):
        await self._io("load_all")
        return list(self.rows.values())

    async def insert(self, entry):
        await self._io("insert")
        self.rows[entry.id] = entry

    async def update(self, entry):
        await self._io("update")
        self.rows[entry.id] = entry

    async def delete(self, origin_id):
        await self._io("delete")
        return self.rows.pop(origin_id, None) is not None

    async def record_usage(self, origin_id, used_at):
        await self._io("record_usage")
        row = self.rows.get(origin_id)
        if row is not None:
            self.rows[origin_id] = replace(
                row, usage_count=row.usage_count + 1, last_used_at=used_at
            )


class InMemoryRevocationBackend:
    """RevocationBackend kept in a dict. Set ``fail`` or ``delay`` to simulate outages."""

    def __init__(self):
        self.entries: dict[str, tuple[str, datetime]] = {}
        self.fail = False
        self.delay = 0.0
        self.put_calls = 0

    async def _io(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("revocation store unavailable")

    async def put(self, token_hash, user_id, expires_at):
        self.put_calls += 1
        await self._io()
        self.entries.setdefault(token_hash, (user_id, expires_at))

    async def exists(self, token_hash, now):
        await self._io()
        entry = self.entries.get(token_hash)
        return entry is not None and entry[1] > now

    async def delete_expired(self, now):
        await self._io()
        expired = [h for h, (_, exp) in self.entries.items() if exp <= now]
        for token_hash in expired:
            del self.entries[token_hash]
        return len(expired)


class FakeUserDirectory:
    """UserDirectory over a dict of DirectoryUser records."""

    def __init__(self):
        self.users = {}
        self.delay = 0.0
        self.fail = False
        self.lookups = 0

    def add(self, role="user", email=None, is_active=True):
        from app.services.auth import DirectoryUser

        user_id = str(uuid.uuid4())
        user = DirectoryUser(
            id=user_id,
            role=role,
            email=email or f"{role}-{user_id[:8]}@example.com",
            is_active=is_active,
        )
        self.users[user_id] = user
        return user

    async def find_active_user_by_id(self, user_id):
        self.lookups += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("user directory unavailable")
        return self.users.get(user_id)


# --- Security container fixtures ---


@pytest.fixture
def origin_store():
    return InMemoryOriginStore()


@pytest.fixture
def revocation_backend():
    return InMemoryRevocationBackend()


@pytest.fixture
def user_directory():
    return FakeUserDirectory()


@pytest.fixture
def test_settings():
    """Settings for an isolated container with short I/O timeouts."""
    from app.core.config import get_settings

    return get_settings().model_copy(update={"security_io_timeout_seconds": 0.2})


@pytest.fixture
def container(test_settings, origin_store, revocation_backend, user_directory):
    """A SecurityContainer wired to in-memory stores."""
    from app.core.container import SecurityContainer

    return SecurityContainer.build(
        test_settings,
        origin_store=origin_store,
        revocation_backend=revocation_backend,
        users=user_directory,
        notifier=None,
    )


@pytest_asyncio.fixture
async def registered_origin(container):
    """Register TEST_ORIGIN in the container's registry."""
    from app.services.origin_registry import OriginEnvironment

    return await container.registry.add(TEST_ORIGIN, OriginEnvironment.PROD, "Test frontend")


@pytest.fixture
def test_app(container):
    """Application built around the isolated container."""
    from app.main import create_app

    return create_app(container)


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for the isolated application."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


# --- Identity helpers ---


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_token():
    """Issue an access token for a DirectoryUser."""
    from app.services.auth import create_access_token

    def _make(user, **kwargs):
        return create_access_token(user.id, user.role, user.email, **kwargs)

    return _make


@pytest.fixture
def admin_user(user_directory):
    return user_directory.add(role="admin", email="admin@example.com")


@pytest.fixture
def regular_user(user_directory):
    return user_directory.add(role="user", email="reader@example.com")


@pytest.fixture
def admin_headers(admin_user, make_token) -> dict[str, str]:
    """Headers with JWT token for admin requests."""
    return bearer(make_token(admin_user))


@pytest.fixture
def user_headers(regular_user, make_token) -> dict[str, str]:
    """Headers with JWT token for a non-admin user."""
    return bearer(make_token(regular_user))


# --- PostgreSQL Container Management ---

_container = None
_pg_available = None
_database_url = None


def _try_testcontainers() -> str | None:
    """Try to start PostgreSQL using testcontainers.

    Returns database URL if successful, None otherwise.
    """
    try:
        from testcontainers.postgres import PostgresContainer
    except ImportError:
        return None

    global _container
    try:
        _container = PostgresContainer(
            image="postgres:15-alpine",
            username="test",
            password="test",
            dbname="securityx_test",
        )
        _container.start()
        url = _container.get_connection_url()
        async_url = url.replace("postgresql+psycopg2://", "postgresql+asyncpg://")
        return async_url.replace("postgresql://", "postgresql+asyncpg://")
    except Exception as e:
        # Docker not available or other error
        import warnings

        warnings.warn(f"Testcontainers not available: {e}", stacklevel=2)
        if _container:
            try:
                _container.stop()
            except Exception as stop_error:
                warnings.warn(f"Failed to stop test container: {stop_error}", stacklevel=2)
            _container = None
        return None


def _get_database_url() -> str | None:
    """Get database URL, preferring an explicit TEST_DATABASE_URL."""
    global _database_url

    if _database_url is not None:
        return _database_url

    explicit_url = os.environ.get("TEST_DATABASE_URL")
    if explicit_url:
        _database_url = explicit_url
        return _database_url

    _database_url = _try_testcontainers()
    return _database_url


def pytest_sessionfinish(session, exitstatus):
    """Clean up testcontainers when tests finish."""
    global _container
    if _container:
        _container.stop()
        _container = None


def check_postgres_available() -> bool:
    """Check if PostgreSQL test database is available."""
    global _pg_available
    if _pg_available is not None:
        return _pg_available

    url = _get_database_url()
    if url is None:
        _pg_available = False
        return _pg_available

    from sqlalchemy import text

    async def _check():
        try:
            engine = create_async_engine(url, poolclass=NullPool)
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            await engine.dispose()
            return True
        except Exception as e:
            import warnings

            warnings.warn(f"PostgreSQL not available: {e}", stacklevel=2)
            return False

    _pg_available = asyncio.run(_check())
    return _pg_available


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a PostgreSQL database engine for testing.

    Requires PostgreSQL due to use of PostgreSQL-specific types (ARRAY, UUID)
    and ON CONFLICT inserts.
    """
    if not check_postgres_available():
        pytest.skip("PostgreSQL test database not available")

    from app.models import BaseModel

    engine = create_async_engine(_get_database_url(), poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    from app.core.database import build_session_factory

    return build_session_factory(db_engine)


# --- Pytest Hooks for Auto-Marking ---


def pytest_collection_modifyitems(config, items):
    """Mark tests that touch PostgreSQL as 'integration', everything else 'unit'."""
    integration_fixtures = {"db_engine", "session_factory"}

    for item in items:
        if any(mark.name in ("unit", "integration") for mark in item.iter_markers()):
            continue
        if integration_fixtures & set(getattr(item, "fixturenames", ())):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
