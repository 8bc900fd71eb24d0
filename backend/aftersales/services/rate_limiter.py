"""
Database-backed hourly rate limiter.

Enforces per-API-key request ceilings using one atomic, conditional
INSERT … ON CONFLICT statement against the rate_limit_windows table.

Design decisions:
  • Admit-and-increment is a single statement:
        INSERT (count = 1)
        ON CONFLICT (key_identity, window_start)
        DO UPDATE SET request_count = request_count + 1
                  WHERE request_count < :limit
        RETURNING request_count
    No returned row means the ceiling was already reached. Two concurrent
    requests can never both observe limit - 1 and both be admitted.
  • Rejected requests write nothing — no partial credit.
  • Time bucketing — the window is the UTC wall-clock hour. A new hour is
    a new row, so the counter "resets" without any cleanup pass.
  • Runs unchanged on Postgres and SQLite via insert_for().
"""

from __future__ import annotations

import datetime
import logging

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.auth.errors import RateLimitExceeded
from aftersales.core.database import insert_for
from aftersales.models.rate_limit_window import RateLimitWindow

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def hour_bucket(now: datetime.datetime) -> datetime.datetime:
    """Floor a timestamp to the start of its UTC hour."""
    if now.tzinfo is not None:
        now = now.astimezone(datetime.timezone.utc)
    return now.replace(minute=0, second=0, microsecond=0)


async def admit(
    session: AsyncSession,
    key_identity: str,
    limit: int,
    *,
    now: datetime.datetime | None = None,
) -> int:
    """
    Count one request against key_identity's current hour.

    Returns the window's count including this request.

    Raises RateLimitExceeded (carrying `limit`) if the window is full.
    """
    if limit <= 0:
        raise RateLimitExceeded(limit)

    window_start = hour_bucket(now or _utcnow())

    stmt = insert_for(session, RateLimitWindow).values(
        key_identity=key_identity,
        window_start=window_start,
        request_count=1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["key_identity", "window_start"],
        set_={"request_count": RateLimitWindow.request_count + 1},
        where=RateLimitWindow.request_count < limit,
    ).returning(RateLimitWindow.request_count)

    try:
        count = (await session.execute(stmt)).scalar_one_or_none()
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    if count is None:
        logger.info(
            "Rate limit reached for key %.8s (limit=%d, window=%s)",
            key_identity, limit, window_start.isoformat(),
        )
        raise RateLimitExceeded(limit)

    return count


async def purge_stale_windows(
    session: AsyncSession,
    now: datetime.datetime | None = None,
) -> int:
    """Delete windows from previous hours. Returns the number of rows removed."""
    current = hour_bucket(now or _utcnow())
    result = await session.execute(
        delete(RateLimitWindow).where(RateLimitWindow.window_start < current)
    )
    await session.commit()
    return result.rowcount or 0
