"""
FastAPI dependencies for authentication and authorization.

Flow:
  1. Extract the credential from headers (and ?api_key= where allowed)
  2. Hand it to the AuthGateway stored on app.state
  3. Record credential / principal / rejection on request.state so the
     analytics middleware can log denied requests with their status
  4. Return the admitted Principal

Usage in routers:
    Caller = Annotated[Principal, Depends(get_principal)]
    ReadAccess = Annotated[Principal, Depends(require_permission("read"))]

All rejections are AuthErrors; the app-level exception handler turns
them into the JSON error body.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.auth.credentials import extract_credential
from aftersales.auth.errors import AuthError, Forbidden, PermissionDenied
from aftersales.auth.gateway import AuthGateway
from aftersales.auth.login_guard import LoginGuard
from aftersales.auth.principals import Principal, UserPrincipal, has_permission
from aftersales.auth.tokens import TokenService
from aftersales.core.database import get_db_session

logger = logging.getLogger(__name__)

DbSession = Annotated[AsyncSession, Depends(get_db_session)]


# ── Components held on app.state ────────────────────────────
def get_gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def get_token_service(request: Request) -> TokenService:
    return request.app.state.gateway.token_service


def get_login_guard(request: Request) -> LoginGuard:
    return request.app.state.login_guard


def get_store_timeout(request: Request) -> float:
    return request.app.state.gateway.store_timeout


def client_ip(request: Request) -> str | None:
    """First X-Forwarded-For hop when behind a proxy, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


# ── Authentication ──────────────────────────────────────────
async def _authenticate(
    request: Request,
    session: AsyncSession,
    *,
    allow_query_key: bool,
) -> Principal:
    gateway = get_gateway(request)
    credential = extract_credential(
        request.headers, request.query_params, allow_query=allow_query_key,
    )
    request.state.credential = credential

    try:
        principal = await gateway.authenticate(
            session,
            request.headers,
            request.query_params,
            allow_query_key=allow_query_key,
            path=request.url.path,
            credential=credential,
        )
    except AuthError as exc:
        request.state.auth_error = exc
        if exc.principal is not None:
            request.state.principal = exc.principal
        raise

    request.state.principal = principal
    return principal


async def get_principal(request: Request, session: DbSession) -> Principal:
    """Authenticate from headers only."""
    return await _authenticate(request, session, allow_query_key=False)


async def get_principal_allowing_query_key(
    request: Request,
    session: DbSession,
) -> Principal:
    """Authenticate from headers, falling back to ?api_key=."""
    return await _authenticate(request, session, allow_query_key=True)


# ── Authorization ───────────────────────────────────────────
def require_permission(
    permission: str,
    *,
    allow_query_key: bool = False,
) -> Callable[[Request, Principal], Awaitable[Principal]]:
    """Dependency factory: the principal must hold `permission` (or "*")."""
    authenticate = get_principal_allowing_query_key if allow_query_key else get_principal

    async def dependency(
        request: Request,
        principal: Principal = Depends(authenticate),
    ) -> Principal:
        if not has_permission(principal, permission):
            exc = PermissionDenied(permission)
            request.state.auth_error = exc
            logger.warning(
                "Permission %r denied for %s on %s",
                permission, principal.name, request.url.path,
            )
            raise exc
        return principal

    return dependency


async def require_user(
    request: Request,
    principal: Annotated[Principal, Depends(get_principal)],
) -> UserPrincipal:
    """Only signed-in staff — API keys are refused."""
    if not isinstance(principal, UserPrincipal):
        exc = Forbidden("This endpoint requires a signed-in user session.")
        request.state.auth_error = exc
        raise exc
    return principal
