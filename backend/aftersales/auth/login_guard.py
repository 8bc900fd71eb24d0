"""
Login brute-force defence backed by the login_attempts table.

Two windows, both configurable (defaults match the dealership portal):
  • Throttle — ≥ 5 failures for the email OR the client IP within 15 min
    refuses the attempt before the password is even checked.
  • Lock     — ≥ 10 failures for the account's email within 1 hour refuses
    even correct credentials, with a distinct "account locked" signal.

The check-then-record sequence is not atomic: two simultaneous attempts
can both pass the pre-check. This is a soft limit meant to slow down
credential stuffing, not a hard security boundary.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Callable

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.core.config import Settings
from aftersales.models.login_attempt import LoginAttempt
from aftersales.models.user import User

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class LoginGuard:
    """Counts failed logins and decides on throttling / account lock."""

    def __init__(
        self,
        throttle_window: datetime.timedelta = datetime.timedelta(minutes=15),
        throttle_max_failures: int = 5,
        lock_window: datetime.timedelta = datetime.timedelta(hours=1),
        lock_max_failures: int = 10,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self.throttle_window = throttle_window
        self.throttle_max_failures = throttle_max_failures
        self.lock_window = lock_window
        self.lock_max_failures = lock_max_failures
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> LoginGuard:
        return cls(
            throttle_window=datetime.timedelta(minutes=settings.LOGIN_THROTTLE_WINDOW_MINUTES),
            throttle_max_failures=settings.LOGIN_THROTTLE_MAX_FAILURES,
            lock_window=datetime.timedelta(minutes=settings.ACCOUNT_LOCK_WINDOW_MINUTES),
            lock_max_failures=settings.ACCOUNT_LOCK_MAX_FAILURES,
        )

    async def check_allowed(
        self,
        session: AsyncSession,
        email: str,
        ip: str | None,
    ) -> bool:
        """False when the email or IP has too many recent failures."""
        since = self._clock() - self.throttle_window
        matches = [LoginAttempt.email == email]
        if ip:
            matches.append(LoginAttempt.ip_address == ip)

        stmt = select(func.count()).select_from(LoginAttempt).where(
            or_(*matches),
            LoginAttempt.success.is_(False),
            LoginAttempt.attempted_at > since,
        )
        failures = (await session.execute(stmt)).scalar_one()
        if failures >= self.throttle_max_failures:
            logger.warning(
                "Login throttled: %d recent failures for email/ip (ip=%s)",
                failures, ip,
            )
            return False
        return True

    async def record(
        self,
        session: AsyncSession,
        email: str,
        ip: str | None,
        user_agent: str | None,
        success: bool,
    ) -> None:
        """Append one attempt. Successes are recorded too — the audit trail is complete."""
        session.add(
            LoginAttempt(
                email=email,
                ip_address=ip,
                success=success,
                user_agent=user_agent,
                attempted_at=self._clock(),
            )
        )
        await session.commit()

    async def is_locked(self, session: AsyncSession, user_id: uuid.UUID) -> bool:
        """True after sustained failures against this user's email."""
        since = self._clock() - self.lock_window
        user_email = select(func.lower(User.email)).where(User.id == user_id).scalar_subquery()

        stmt = select(func.count()).select_from(LoginAttempt).where(
            LoginAttempt.email == user_email,
            LoginAttempt.success.is_(False),
            LoginAttempt.attempted_at > since,
        )
        failures = (await session.execute(stmt)).scalar_one()
        return failures >= self.lock_max_failures
