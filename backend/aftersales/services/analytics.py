"""
Request analytics — write path and read side.

Write path (called once per finished request by the middleware):
  1. Insert one immutable ApiRequestLog row.
  2. Upsert the (today, key_identity, endpoint) AnalyticsSummary row:
        INSERT (total=1, success|fail=1, min=max=avg=ms)
        ON CONFLICT (date, key_identity, endpoint) DO UPDATE
            total += 1, success/fail += 1, total_ms += ms,
            avg = (total_ms + ms) / (total + 1),
            min = LEAST(min, ms), max = GREATEST(max, ms)
     The arithmetic runs inside the statement, so concurrent writers for
     the same row never lose an increment.

Rules:
  • Success means 200 <= status < 300; anything else is a failure.
  • Analytics runs in its own session and never raises — a broken
    analytics store must not change the outcome of the request.
  • Only a credential fingerprint is ever written.

Read side: all aggregation is done in SQL over the summary table.
"""

from __future__ import annotations

import datetime
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import Float, func, select, type_coerce
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aftersales.auth.credentials import Credential
from aftersales.auth.principals import Principal
from aftersales.core.database import greatest, insert_for, least
from aftersales.models.analytics import AnalyticsSummary, ApiRequestLog
from aftersales.schemas.analytics import (
    DailyStatsOut,
    EndpointStatsOut,
    KeyStatsOut,
    OverviewOut,
)

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"
ROOT_ENDPOINT = "root"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def extract_endpoint(path: str, prefix: str = "/v1") -> str:
    """
    Reduce a request path to its endpoint name.

        /v1/customers/12?x=1  → "customers"
        /v1/                  → "root"
    """
    path = path.split("?", 1)[0]
    if prefix:
        path = re.sub(rf"^{re.escape(prefix.rstrip('/'))}(/|$)", "", path)
    path = path.strip("/")
    return path.split("/", 1)[0] or ROOT_ENDPOINT


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


@dataclass(slots=True)
class RequestTiming:
    """Everything known about a request before the handler runs."""

    method: str
    path: str
    started: float
    request_size: int | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None


class RequestAnalytics:
    """Records finished requests into the detail log and the daily summary."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime.datetime] = _utcnow,
        timer: Callable[[], float] = time.perf_counter,
        prefix: str = "/v1",
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._timer = timer
        self.prefix = prefix

    def start_timing(
        self,
        method: str,
        path: str,
        request_size: int | None = None,
        client_ip: str | None = None,
        user_agent: str | None = None,
        referer: str | None = None,
    ) -> RequestTiming:
        return RequestTiming(
            method=method.upper(),
            path=path,
            started=self._timer(),
            request_size=request_size,
            client_ip=client_ip,
            user_agent=user_agent,
            referer=referer,
        )

    async def finish(
        self,
        timing: RequestTiming,
        principal: Principal | None,
        status_code: int,
        response_size: int | None = None,
        error_message: str | None = None,
        credential: Credential | None = None,
    ) -> None:
        """Persist one request. Never raises."""
        elapsed_ms = max(0, round((self._timer() - timing.started) * 1000))
        key_identity = principal.name if principal is not None else ANONYMOUS
        endpoint = extract_endpoint(timing.path, self.prefix)
        now = self._clock()

        try:
            async with self._session_factory() as session:
                session.add(
                    ApiRequestLog(
                        key_fingerprint=credential.fingerprint if credential else None,
                        key_identity=key_identity,
                        endpoint=endpoint,
                        method=timing.method,
                        path=timing.path,
                        status_code=status_code,
                        response_time_ms=elapsed_ms,
                        request_size_bytes=timing.request_size,
                        response_size_bytes=response_size,
                        ip_address=timing.client_ip,
                        user_agent=timing.user_agent,
                        referer=timing.referer,
                        error_message=error_message,
                        created_at=now,
                    )
                )
                await _upsert_summary(
                    session,
                    day=now.date(),
                    key_identity=key_identity,
                    endpoint=endpoint,
                    success=is_success(status_code),
                    elapsed_ms=elapsed_ms,
                    now=now,
                )
                await session.commit()
        except Exception:
            logger.exception(
                "Analytics write failed for %s %s (non-fatal)",
                timing.method, timing.path,
            )


async def _upsert_summary(
    session: AsyncSession,
    *,
    day: datetime.date,
    key_identity: str,
    endpoint: str,
    success: bool,
    elapsed_ms: int,
    now: datetime.datetime,
) -> None:
    ok = 1 if success else 0
    summary = AnalyticsSummary

    stmt = insert_for(session, AnalyticsSummary).values(
        date=day,
        key_identity=key_identity,
        endpoint=endpoint,
        total_requests=1,
        success_count=ok,
        fail_count=1 - ok,
        total_response_time_ms=elapsed_ms,
        avg_response_time_ms=float(elapsed_ms),
        min_response_time_ms=elapsed_ms,
        max_response_time_ms=elapsed_ms,
        updated_at=now,
    ).on_conflict_do_update(
        index_elements=["date", "key_identity", "endpoint"],
        set_={
            "total_requests": summary.total_requests + 1,
            "success_count": summary.success_count + ok,
            "fail_count": summary.fail_count + (1 - ok),
            "total_response_time_ms": summary.total_response_time_ms + elapsed_ms,
            "avg_response_time_ms": (
                (summary.total_response_time_ms + elapsed_ms) * 1.0
                / (summary.total_requests + 1)
            ),
            "min_response_time_ms": least(session, summary.min_response_time_ms, elapsed_ms),
            "max_response_time_ms": greatest(session, summary.max_response_time_ms, elapsed_ms),
            "updated_at": now,
        },
    )
    await session.execute(stmt)


# ── Read side ───────────────────────────────────────────────
def _period_start(days: int, today: datetime.date | None) -> datetime.date:
    """days=1 covers today only; days=7 covers today and the six days before."""
    today = today or _utcnow().date()
    return today - datetime.timedelta(days=max(days, 1) - 1)


def _avg_ms():  # type: ignore[no-untyped-def]
    return type_coerce(
        func.sum(AnalyticsSummary.total_response_time_ms) * 1.0
        / func.nullif(func.sum(AnalyticsSummary.total_requests), 0),
        Float,
    )


def _round(value: float | None) -> float:
    return round(float(value or 0), 2)


async def get_overview(
    session: AsyncSession,
    days: int = 7,
    *,
    today: datetime.date | None = None,
) -> OverviewOut:
    since = _period_start(days, today)
    period = AnalyticsSummary.date >= since

    totals_stmt = select(
        func.sum(AnalyticsSummary.total_requests).label("total_requests"),
        func.sum(AnalyticsSummary.success_count).label("success_count"),
        func.sum(AnalyticsSummary.fail_count).label("fail_count"),
        _avg_ms().label("avg_response_time_ms"),
        func.min(AnalyticsSummary.min_response_time_ms).label("min_response_time_ms"),
        func.max(AnalyticsSummary.max_response_time_ms).label("max_response_time_ms"),
        func.count(AnalyticsSummary.key_identity.distinct()).label("unique_keys"),
        func.count(AnalyticsSummary.endpoint.distinct()).label("unique_endpoints"),
    ).where(period)
    totals = (await session.execute(totals_stmt)).one()

    by_day_stmt = (
        select(
            AnalyticsSummary.date,
            func.sum(AnalyticsSummary.total_requests).label("total_requests"),
            func.sum(AnalyticsSummary.success_count).label("success_count"),
            func.sum(AnalyticsSummary.fail_count).label("fail_count"),
            _avg_ms().label("avg_response_time_ms"),
        )
        .where(period)
        .group_by(AnalyticsSummary.date)
        .order_by(AnalyticsSummary.date.desc())
    )
    by_day = [
        DailyStatsOut(
            date=row.date,
            total_requests=row.total_requests,
            success_count=row.success_count,
            fail_count=row.fail_count,
            avg_response_time_ms=_round(row.avg_response_time_ms),
        )
        for row in (await session.execute(by_day_stmt)).all()
    ]

    return OverviewOut(
        period_days=days,
        total_requests=totals.total_requests or 0,
        success_count=totals.success_count or 0,
        fail_count=totals.fail_count or 0,
        avg_response_time_ms=_round(totals.avg_response_time_ms),
        min_response_time_ms=totals.min_response_time_ms or 0,
        max_response_time_ms=totals.max_response_time_ms or 0,
        unique_keys=totals.unique_keys or 0,
        unique_endpoints=totals.unique_endpoints or 0,
        by_day=by_day,
    )


async def get_endpoint_stats(
    session: AsyncSession,
    days: int = 7,
    endpoint: str | None = None,
    *,
    today: datetime.date | None = None,
) -> list[EndpointStatsOut]:
    stmt = select(
        AnalyticsSummary.endpoint,
        func.sum(AnalyticsSummary.total_requests).label("total_requests"),
        func.sum(AnalyticsSummary.success_count).label("success_count"),
        func.sum(AnalyticsSummary.fail_count).label("fail_count"),
        _avg_ms().label("avg_response_time_ms"),
        func.min(AnalyticsSummary.min_response_time_ms).label("min_response_time_ms"),
        func.max(AnalyticsSummary.max_response_time_ms).label("max_response_time_ms"),
        func.count(AnalyticsSummary.key_identity.distinct()).label("unique_keys"),
    ).where(AnalyticsSummary.date >= _period_start(days, today))
    if endpoint:
        stmt = stmt.where(AnalyticsSummary.endpoint == endpoint)
    stmt = stmt.group_by(AnalyticsSummary.endpoint).order_by(
        func.sum(AnalyticsSummary.total_requests).desc(),
        AnalyticsSummary.endpoint,
    )

    rows = (await session.execute(stmt)).all()
    return [
        EndpointStatsOut(
            endpoint=row.endpoint,
            total_requests=row.total_requests,
            success_count=row.success_count,
            fail_count=row.fail_count,
            avg_response_time_ms=_round(row.avg_response_time_ms),
            min_response_time_ms=row.min_response_time_ms,
            max_response_time_ms=row.max_response_time_ms,
            unique_keys=row.unique_keys,
        )
        for row in rows
    ]


async def get_key_stats(
    session: AsyncSession,
    days: int = 7,
    *,
    today: datetime.date | None = None,
) -> list[KeyStatsOut]:
    stmt = (
        select(
            AnalyticsSummary.key_identity,
            func.sum(AnalyticsSummary.total_requests).label("total_requests"),
            func.sum(AnalyticsSummary.success_count).label("success_count"),
            func.sum(AnalyticsSummary.fail_count).label("fail_count"),
            _avg_ms().label("avg_response_time_ms"),
            func.count(AnalyticsSummary.endpoint.distinct()).label("unique_endpoints"),
            func.max(AnalyticsSummary.date).label("last_seen"),
        )
        .where(AnalyticsSummary.date >= _period_start(days, today))
        .group_by(AnalyticsSummary.key_identity)
        .order_by(
            func.sum(AnalyticsSummary.total_requests).desc(),
            AnalyticsSummary.key_identity,
        )
    )

    rows = (await session.execute(stmt)).all()
    return [
        KeyStatsOut(
            key_identity=row.key_identity,
            total_requests=row.total_requests,
            success_count=row.success_count,
            fail_count=row.fail_count,
            avg_response_time_ms=_round(row.avg_response_time_ms),
            unique_endpoints=row.unique_endpoints,
            last_seen=row.last_seen,
        )
        for row in rows
    ]
