"""
Pydantic v2 response schemas for request analytics.

Every figure is read from api_analytics_summary, so counts always satisfy
success_count + fail_count == total_requests. All schemas use
from_attributes=True so SQLAlchemy Row objects map directly.
"""

from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict


class DailyStatsOut(BaseModel):
    """Request counters for one calendar day (UTC)."""

    model_config = ConfigDict(from_attributes=True)

    date: datetime.date
    total_requests: int
    success_count: int
    fail_count: int
    avg_response_time_ms: float


class OverviewOut(BaseModel):
    """Totals over the requested period plus a per-day breakdown."""

    model_config = ConfigDict(from_attributes=True)

    period_days: int
    total_requests: int
    success_count: int
    fail_count: int
    avg_response_time_ms: float
    min_response_time_ms: int
    max_response_time_ms: int
    unique_keys: int
    unique_endpoints: int
    by_day: list[DailyStatsOut]


class EndpointStatsOut(BaseModel):
    """Counters for one endpoint (first path segment after the API prefix)."""

    model_config = ConfigDict(from_attributes=True)

    endpoint: str
    total_requests: int
    success_count: int
    fail_count: int
    avg_response_time_ms: float
    min_response_time_ms: int
    max_response_time_ms: int
    unique_keys: int


class KeyStatsOut(BaseModel):
    """Counters for one caller (API key name, user email or "anonymous")."""

    model_config = ConfigDict(from_attributes=True)

    key_identity: str
    total_requests: int
    success_count: int
    fail_count: int
    avg_response_time_ms: float
    unique_endpoints: int
    last_seen: datetime.date
