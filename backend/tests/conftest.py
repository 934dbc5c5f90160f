"""
Global pytest configuration and fixtures for the QuickBooks sync test suite.
"""
import os

# must be set before qbsync.core.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-32-chars"
os.environ["QUICKBOOKS_CLIENT_ID"] = "test-client-id"
os.environ["QUICKBOOKS_CLIENT_SECRET"] = "test-client-secret"
os.environ["QUICKBOOKS_REDIRECT_URI"] = "http://test/quickbooks/callback"
os.environ["FRONTEND_REDIRECT_URL"] = "http://frontend.test"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from qbsync import models  # noqa: F401
from qbsync.api.quickbooks import tokens
from qbsync.api.quickbooks.routes import get_client_factory
from qbsync.core.database import Base, get_db
from qbsync.main import app

# Import fixtures from fixture modules
from tests.fixtures.quickbooks_fixtures import *  # noqa: F403, F401


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite so concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_refresh_locks():
    """asyncio.Lock binds to the loop it first waits on; each test has its own loop."""
    tokens._refresh_locks.clear()
    yield
    tokens._refresh_locks.clear()


@pytest_asyncio.fixture
async def client(session_factory, fake_qb):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_client_factory] = lambda: fake_qb.factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
