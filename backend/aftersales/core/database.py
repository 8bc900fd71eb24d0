"""
Async database engine, session factory, and ORM base.

Rules enforced:
  • Every DB call goes through AsyncSession (no sync, no raw SQL).
  • Sessions are request-scoped via FastAPI's Depends(get_db_session).
  • The declarative Base is shared across all models so Alembic can
    auto-detect schema changes from a single metadata object.
  • Counter upserts are built with insert_for() so the same
    INSERT … ON CONFLICT statement runs on Postgres and on SQLite (tests).
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from aftersales.core.config import settings

# ── Engine ──────────────────────────────────────────────────
# pool_pre_ping: drop stale connections before reuse
# echo: SQL logging — only in debug mode
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

# ── Session factory ─────────────────────────────────────────
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,  # avoid lazy-load issues after commit
)


# ── ORM Base ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Shared declarative base for all SQLAlchemy models."""


# ── Dependency ──────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a scoped async session for one request.

    The session is committed by the caller (router/service);
    this generator only guarantees cleanup on exit.
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Dialect helpers ─────────────────────────────────────────
def dialect_name(session: AsyncSession) -> str:
    """Name of the dialect the session is bound to ("postgresql", "sqlite")."""
    return session.bind.dialect.name


def insert_for(session: AsyncSession, model: Any):  # type: ignore[no-untyped-def]
    """Return an upsert-capable insert() for the session's dialect."""
    if dialect_name(session) == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


def least(session: AsyncSession, *args: Any):  # type: ignore[no-untyped-def]
    """Scalar minimum — LEAST() on Postgres, multi-arg min() on SQLite."""
    if dialect_name(session) == "sqlite":
        return func.min(*args)
    return func.least(*args)


def greatest(session: AsyncSession, *args: Any):  # type: ignore[no-untyped-def]
    """Scalar maximum — GREATEST() on Postgres, multi-arg max() on SQLite."""
    if dialect_name(session) == "sqlite":
        return func.max(*args)
    return func.greatest(*args)
