"""
Staff sign-in flow.

Order of checks (each short-circuits):
  1. LoginGuard pre-check on (email, client IP)   → 429 LoginThrottled
     The attempt is not recorded — a throttled caller cannot extend its
     own penalty window by hammering the endpoint.
  2. Active user lookup + bcrypt verification     → 401 InvalidCredentials
     Unknown email and wrong password are indistinguishable to the caller.
  3. Account lock check                           → 423 AccountLocked
     Recorded as a failure: correct credentials do not unlock an account.
  4. Success: stamp last_login_at, issue the token, write a SessionRecord,
     record the successful attempt.

Tokens are validated by signature and expiry only; session records exist
for server-side bookkeeping (logout, logout-all, audit).
"""

from __future__ import annotations

import datetime
import logging
import secrets
import uuid
from dataclasses import dataclass

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.auth.errors import AccountLocked, InvalidCredentials, LoginThrottled
from aftersales.auth.hashing import verify_password
from aftersales.auth.login_guard import LoginGuard
from aftersales.auth.tokens import TokenService, TokenSubject
from aftersales.models.user import SessionRecord, User

logger = logging.getLogger(__name__)

TOKEN_TYPE = "Bearer"


@dataclass(frozen=True, slots=True)
class LoginResult:
    user: User
    access_token: str
    token_type: str
    expires_in: int
    session_id: str


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


async def login(
    session: AsyncSession,
    guard: LoginGuard,
    tokens: TokenService,
    email: str,
    password: str,
    ip: str | None = None,
    user_agent: str | None = None,
) -> LoginResult:
    """
    Authenticate a staff member by email + password.

    Raises:
        LoginThrottled:     Too many recent failures for the email or IP.
        InvalidCredentials: Unknown/inactive user or wrong password.
        AccountLocked:      Sustained failures against this account.
    """
    email = email.strip().lower()

    if not await guard.check_allowed(session, email, ip):
        raise LoginThrottled()

    stmt = select(User).where(
        func.lower(User.email) == email,
        User.is_active.is_(True),
    )
    user = (await session.execute(stmt)).scalar_one_or_none()

    if user is None or not verify_password(password, user.password_hash):
        await guard.record(session, email, ip, user_agent, success=False)
        logger.info("Failed login for %s (ip=%s)", email, ip)
        raise InvalidCredentials()

    if await guard.is_locked(session, user.id):
        await guard.record(session, email, ip, user_agent, success=False)
        logger.warning("Login refused for locked account %s", email)
        raise AccountLocked()

    # ── Success ─────────────────────────────────────────────
    now = _utcnow()
    user.last_login_at = now

    access_token = tokens.issue(
        TokenSubject(user_id=str(user.id), email=user.email, role=user.role)
    )
    session_id = secrets.token_hex(32)
    session.add(
        SessionRecord(
            id=session_id,
            user_id=user.id,
            created_at=now,
            expires_at=now + datetime.timedelta(seconds=tokens.ttl_seconds),
            ip_address=ip,
            user_agent=user_agent,
        )
    )
    await session.commit()

    await guard.record(session, email, ip, user_agent, success=True)
    logger.info("User %s signed in", email)

    return LoginResult(
        user=user,
        access_token=access_token,
        token_type=TOKEN_TYPE,
        expires_in=tokens.ttl_seconds,
        session_id=session_id,
    )


async def logout(
    session: AsyncSession,
    user_id: uuid.UUID,
    session_id: str,
) -> bool:
    """Delete one of the user's session records. False if it did not exist."""
    result = await session.execute(
        delete(SessionRecord).where(
            SessionRecord.id == session_id,
            SessionRecord.user_id == user_id,
        )
    )
    await session.commit()
    return bool(result.rowcount)


async def logout_all(session: AsyncSession, user_id: uuid.UUID) -> int:
    """Expire every live session record of the user. Returns how many."""
    now = _utcnow()
    result = await session.execute(
        update(SessionRecord)
        .where(
            SessionRecord.user_id == user_id,
            SessionRecord.expires_at > now,
        )
        .values(expires_at=now)
    )
    await session.commit()
    logger.info("Expired %d session(s) for user %s", result.rowcount or 0, user_id)
    return result.rowcount or 0
