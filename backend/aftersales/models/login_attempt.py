"""
Login attempt model — append-only audit of every evaluated sign-in.

Rows are never updated or deleted. The login guard only runs windowed
COUNT(*) queries over them, hence the composite indexes on
(email, attempted_at) and (ip_address, attempted_at).
"""

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aftersales.core.database import Base


class LoginAttempt(Base):
    """One sign-in attempt, successful or not."""

    __tablename__ = "login_attempts"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    __table_args__ = (
        Index("ix_login_attempts_email_attempted_at", "email", "attempted_at"),
        Index("ix_login_attempts_ip_attempted_at", "ip_address", "attempted_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LoginAttempt email={self.email!r} ip={self.ip_address} "
            f"success={self.success}>"
        )
