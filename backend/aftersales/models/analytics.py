"""
SQLAlchemy models for request analytics.

  • ApiRequestLog     — one immutable row per finished request.
  • AnalyticsSummary  — pre-aggregated counters per (date, key, endpoint),
                        updated incrementally by an atomic upsert.

Design notes:
  • The composite PK of the summary encodes the GROUP BY dimensions,
    making INSERT … ON CONFLICT the natural write path.
  • success_count + fail_count == total_requests on every row.
  • Only a truncated key fingerprint is stored in the detail log.
"""

import datetime
import uuid

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from aftersales.core.database import Base


class ApiRequestLog(Base):
    """One finished API request."""

    __tablename__ = "api_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    key_fingerprint: Mapped[str | None] = mapped_column(String(16), nullable=True)
    key_identity: Mapped[str] = mapped_column(String(255), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    request_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referer: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("response_time_ms >= 0", name="ck_response_time_non_neg"),
        Index("ix_api_requests_created_at", "created_at"),
        Index("ix_api_requests_key_identity", "key_identity"),
    )

    def __repr__(self) -> str:
        return (
            f"<ApiRequestLog {self.method} {self.endpoint} "
            f"status={self.status_code} {self.response_time_ms}ms>"
        )


class AnalyticsSummary(Base):
    """
    Daily request counters grouped by (date, key_identity, endpoint).

    PK: (date, key_identity, endpoint)
    """

    __tablename__ = "api_analytics_summary"

    date: Mapped[datetime.date] = mapped_column(
        Date, primary_key=True,
    )
    key_identity: Mapped[str] = mapped_column(
        String(255), primary_key=True,
    )
    endpoint: Mapped[str] = mapped_column(
        String(255), primary_key=True,
    )
    total_requests: Mapped[int] = mapped_column(Integer, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False)
    fail_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False)
    min_response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    max_response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "success_count + fail_count = total_requests",
            name="ck_summary_counts_consistent",
        ),
        Index("ix_api_analytics_summary_date", "date"),
    )
