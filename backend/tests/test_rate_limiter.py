"""Hourly rate limiter: ceiling, no partial credit, rollover, concurrency."""

import asyncio
import datetime

import pytest
from sqlalchemy import select

from aftersales.auth.errors import RateLimitExceeded
from aftersales.models.rate_limit_window import RateLimitWindow
from aftersales.services.rate_limiter import admit, hour_bucket, purge_stale_windows

UTC = datetime.timezone.utc
T0 = datetime.datetime(2026, 10, 19, 9, 15, 30, tzinfo=UTC)
KEY = "a" * 64


async def _count(session, key=KEY):
    stmt = select(RateLimitWindow.request_count).where(RateLimitWindow.key_identity == key)
    return list((await session.execute(stmt)).scalars().all())


def test_hour_bucket():
    assert hour_bucket(T0) == datetime.datetime(2026, 10, 19, 9, tzinfo=UTC)
    cest = datetime.timezone(datetime.timedelta(hours=2))
    assert hour_bucket(T0.astimezone(cest)) == datetime.datetime(2026, 10, 19, 9, tzinfo=UTC)


class TestAdmit:
    @pytest.mark.asyncio
    async def test_counts_up_to_the_limit(self, session):
        assert [await admit(session, KEY, 3, now=T0) for _ in range(3)] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_rejects_beyond_limit_without_incrementing(self, session):
        for _ in range(3):
            await admit(session, KEY, 3, now=T0)

        for _ in range(2):
            with pytest.raises(RateLimitExceeded) as exc_info:
                await admit(session, KEY, 3, now=T0)
            assert exc_info.value.limit == 3
            assert exc_info.value.status_code == 429

        assert await _count(session) == [3]

    @pytest.mark.asyncio
    async def test_zero_limit_rejects_without_touching_the_store(self, session):
        with pytest.raises(RateLimitExceeded):
            await admit(session, KEY, 0, now=T0)
        assert await _count(session) == []

    @pytest.mark.asyncio
    async def test_new_hour_starts_a_new_window(self, session):
        for _ in range(2):
            await admit(session, KEY, 2, now=T0)
        with pytest.raises(RateLimitExceeded):
            await admit(session, KEY, 2, now=T0)

        next_hour = T0 + datetime.timedelta(hours=1)
        assert await admit(session, KEY, 2, now=next_hour) == 1

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, session):
        await admit(session, KEY, 1, now=T0)
        assert await admit(session, "b" * 64, 1, now=T0) == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_exceed_limit(self, session_factory):
        limit = 10

        async def one_request() -> bool:
            async with session_factory() as s:
                try:
                    await admit(s, KEY, limit, now=T0)
                    return True
                except RateLimitExceeded:
                    return False

        results = await asyncio.gather(*(one_request() for _ in range(limit + 5)))

        assert results.count(True) == limit
        assert results.count(False) == 5
        async with session_factory() as s:
            assert await _count(s) == [limit]


@pytest.mark.asyncio
async def test_purge_stale_windows(session):
    earlier = T0 - datetime.timedelta(hours=2)
    await admit(session, KEY, 5, now=earlier)
    await admit(session, KEY, 5, now=T0)

    removed = await purge_stale_windows(session, now=T0)

    assert removed == 1
    assert await _count(session) == [1]
