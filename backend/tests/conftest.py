"""
Shared fixtures.

Every test gets its own SQLite file database (aiosqlite) with the full
schema created from Base.metadata, so tests never share state.
"""

import os

# Test settings (must be set before importing aftersales modules)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./aftersales-test.db")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef0123456789abcdef")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from aftersales.core.database import Base  # noqa: E402

# Import all models so Base.metadata is fully populated
import aftersales.models.analytics  # noqa: E402,F401
import aftersales.models.api_key  # noqa: E402,F401
import aftersales.models.login_attempt  # noqa: E402,F401
import aftersales.models.rate_limit_window  # noqa: E402,F401
import aftersales.models.user  # noqa: E402,F401


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'aftersales.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session
