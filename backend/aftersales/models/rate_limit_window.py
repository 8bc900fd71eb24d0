"""
Rate limit window model for per-key hourly limits.

Each row is the request count for one credential in one wall-clock hour.
Composite PK: (key_identity, window_start) — one row per bucket, so a new
hour simply starts a new row at count 1.

key_identity is the SHA-256 hash of the presented key rather than a FK,
because bootstrap keys from the static config have no api_keys row.

Atomic conditional increments via INSERT … ON CONFLICT DO UPDATE … WHERE
keep the count at or below the ceiling under concurrent requests.
"""

import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from aftersales.core.database import Base


class RateLimitWindow(Base):
    """Per-key, per-hour request counter."""

    __tablename__ = "rate_limit_windows"

    key_identity: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    window_start: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        primary_key=True,
    )
    request_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return (
            f"<RateLimitWindow key={self.key_identity:.8} "
            f"start={self.window_start:%Y-%m-%dT%H} count={self.request_count}>"
        )
