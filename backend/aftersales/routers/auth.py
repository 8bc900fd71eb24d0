"""
Staff session router.

  POST /auth/login       — email + password → signed session token
  POST /auth/logout      — drop one session record (body or X-Session-ID)
  POST /auth/logout-all  — expire every live session of the caller
  GET  /auth/me          — who am I (works for users and API keys)

Tokens are stateless: logout removes the server-side record used for
bookkeeping, the token itself stays valid until it expires.

Every store call is bounded by STORE_TIMEOUT_SECONDS; an unreachable or
slow database answers 503 like the rest of the auth path.
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.auth.dependencies import (
    client_ip,
    get_login_guard,
    get_principal,
    get_store_timeout,
    get_token_service,
    require_user,
)
from aftersales.auth.errors import InvalidToken, fail_closed
from aftersales.auth.login_guard import LoginGuard
from aftersales.auth.principals import ApiKeyPrincipal, Principal, UserPrincipal
from aftersales.auth.tokens import TokenService
from aftersales.core.database import get_db_session
from aftersales.schemas.auth import (
    LoginOut,
    LoginRequest,
    LogoutAllOut,
    LogoutRequest,
    MeOut,
    UserOut,
)
from aftersales.schemas.envelope import Envelope, ok
from aftersales.services import login as login_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Guard = Annotated[LoginGuard, Depends(get_login_guard)]
Tokens = Annotated[TokenService, Depends(get_token_service)]
CurrentUser = Annotated[UserPrincipal, Depends(require_user)]
Caller = Annotated[Principal, Depends(get_principal)]
StoreTimeout = Annotated[float, Depends(get_store_timeout)]


@router.post(
    "/login",
    response_model=Envelope[LoginOut],
    summary="Sign in with email and password",
    description=(
        "Returns a signed session token. Repeated failures throttle the "
        "email / client IP (429) and eventually lock the account (423)."
    ),
)
async def login(
    payload: LoginRequest,
    request: Request,
    session: DbSession,
    guard: Guard,
    tokens: Tokens,
    timeout: StoreTimeout,
) -> Envelope[LoginOut]:
    result = await fail_closed(
        login_service.login(
            session,
            guard,
            tokens,
            email=payload.email,
            password=payload.password,
            ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        ),
        timeout,
    )
    return ok(
        LoginOut(
            user=UserOut.model_validate(result.user),
            access_token=result.access_token,
            token_type=result.token_type,
            expires_in=result.expires_in,
            session_id=result.session_id,
        ),
        "Login successful",
    )


@router.post(
    "/logout",
    response_model=Envelope[None],
    summary="End one session",
)
async def logout(
    session: DbSession,
    user: CurrentUser,
    timeout: StoreTimeout,
    payload: LogoutRequest | None = None,
    x_session_id: Annotated[str | None, Header()] = None,
) -> Envelope[None]:
    session_id = (payload.session_id if payload else None) or x_session_id
    if session_id:
        await fail_closed(login_service.logout(session, _user_uuid(user), session_id), timeout)
    return ok(None, "Logout successful")


@router.post(
    "/logout-all",
    response_model=Envelope[LogoutAllOut],
    summary="End every session of the current user",
)
async def logout_all(
    session: DbSession,
    user: CurrentUser,
    timeout: StoreTimeout,
) -> Envelope[LogoutAllOut]:
    expired = await fail_closed(login_service.logout_all(session, _user_uuid(user)), timeout)
    return ok(LogoutAllOut(sessions_expired=expired), "All sessions ended")


@router.get(
    "/me",
    response_model=Envelope[MeOut],
    summary="Describe the authenticated caller",
)
async def me(principal: Caller) -> Envelope[MeOut]:
    if isinstance(principal, ApiKeyPrincipal):
        out = MeOut(
            kind="api_key",
            name=principal.name,
            permissions=sorted(principal.permissions),
        )
    else:
        out = MeOut(
            kind="user",
            name=principal.email,
            role=principal.role,
            permissions=sorted(principal.permissions),
        )
    return ok(out)


def _user_uuid(user: UserPrincipal) -> uuid.UUID:
    try:
        return uuid.UUID(user.id)
    except ValueError as exc:
        raise InvalidToken() from exc
