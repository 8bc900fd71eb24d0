"""
Analytics router — request traffic insights from api_analytics_summary.

All aggregation happens in SQL via GROUP BY — no Python-side loops.

Endpoints (require the "read" permission; ?api_key= accepted so that
dashboard links can be shared):
  GET /v1/analytics/overview   — totals + per-day breakdown
  GET /v1/analytics/endpoints  — per-endpoint counters
  GET /v1/analytics/keys       — per-caller counters
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.auth.dependencies import require_permission
from aftersales.auth.principals import Principal
from aftersales.core.database import get_db_session
from aftersales.schemas.analytics import EndpointStatsOut, KeyStatsOut, OverviewOut
from aftersales.schemas.envelope import Envelope, ok
from aftersales.services import analytics as analytics_service

router = APIRouter(tags=["Analytics"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Reader = Annotated[Principal, Depends(require_permission("read", allow_query_key=True))]
Days = Annotated[int, Query(ge=1, le=366, description="Look-back period in days.")]


# ── 1. Overview ─────────────────────────────────────────────
@router.get(
    "/overview",
    response_model=Envelope[OverviewOut],
    summary="Traffic totals and daily breakdown",
)
async def get_overview(
    session: DbSession,
    _reader: Reader,
    days: Days = 7,
) -> Envelope[OverviewOut]:
    overview = await analytics_service.get_overview(session, days)
    return ok(overview, "Analytics overview retrieved")


# ── 2. By endpoint ──────────────────────────────────────────
@router.get(
    "/endpoints",
    response_model=Envelope[list[EndpointStatsOut]],
    summary="Traffic per endpoint",
)
async def get_endpoints(
    session: DbSession,
    _reader: Reader,
    days: Days = 7,
    endpoint: str | None = None,
) -> Envelope[list[EndpointStatsOut]]:
    stats = await analytics_service.get_endpoint_stats(session, days, endpoint)
    return ok(stats, "Endpoint analytics retrieved")


# ── 3. By caller ────────────────────────────────────────────
@router.get(
    "/keys",
    response_model=Envelope[list[KeyStatsOut]],
    summary="Traffic per API key / user",
)
async def get_keys(
    session: DbSession,
    _reader: Reader,
    days: Days = 7,
) -> Envelope[list[KeyStatsOut]]:
    stats = await analytics_service.get_key_stats(session, days)
    return ok(stats, "Key analytics retrieved")
