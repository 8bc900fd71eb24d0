"""
Auth-specific errors.

Every rejection the auth core can produce is an AuthError carrying the
HTTP status it maps to. The client receives `message` in a generic JSON
body; nothing here ever contains a raw credential.

Taxonomy:
  Unauthorized (401)      — missing / invalid / expired credential
  Forbidden (403)         — valid credential, inactive or lacking permission
  RateLimitExceeded (429) — per-key hourly ceiling reached
  LoginThrottled (429)    — too many recent failed logins
  AccountLocked (423)     — sustained failures against one account
  StoreUnavailable (503)  — persistence down; auth fails closed
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from aftersales.auth.principals import Principal

T = TypeVar("T")


class AuthError(Exception):
    """Base class for every structured auth rejection."""

    status_code: int = 401
    default_message: str = "Unauthorized"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        # set when the credential was valid but the request is still refused
        self.principal: Principal | None = None
        super().__init__(self.message)


# ── 401 ─────────────────────────────────────────────────────
class Unauthorized(AuthError):
    status_code = 401
    default_message = "Unauthorized"


class MissingCredential(Unauthorized):
    default_message = (
        "Authentication required. Provide a Bearer token or an X-API-Key header."
    )


class InvalidToken(Unauthorized):
    default_message = "Invalid session token."


class InvalidSignature(InvalidToken):
    default_message = "Invalid session token signature."


class TokenExpired(InvalidToken):
    default_message = "Session token has expired."


class InvalidKey(Unauthorized):
    default_message = "Invalid API key."


class InvalidCredentials(Unauthorized):
    default_message = "Invalid email or password."


# ── 403 ─────────────────────────────────────────────────────
class Forbidden(AuthError):
    status_code = 403
    default_message = "Forbidden"


class KeyInactive(Forbidden):
    default_message = "API key is inactive."


class PermissionDenied(Forbidden):
    def __init__(self, permission: str) -> None:
        self.permission = permission
        super().__init__(f"Missing required permission '{permission}'.")


# ── 423 / 429 ───────────────────────────────────────────────
class RateLimitExceeded(AuthError):
    status_code = 429

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"Rate limit exceeded. Maximum {limit} requests per hour."
        )


class LoginThrottled(AuthError):
    status_code = 429
    default_message = "Too many login attempts. Please try again later."


class AccountLocked(AuthError):
    status_code = 423
    default_message = (
        "Account is temporarily locked due to multiple failed attempts."
    )


# ── 503 ─────────────────────────────────────────────────────
class StoreUnavailable(AuthError):
    status_code = 503
    default_message = "Authentication service is temporarily unavailable."


async def fail_closed(awaitable: Awaitable[T], timeout: float) -> T:
    """
    Await a store call with a deadline.

    Timeouts and database errors surface as StoreUnavailable so that an
    unreachable store can never be mistaken for an admitted request.
    AuthErrors raised by the call pass through untouched.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except (TimeoutError, asyncio.TimeoutError) as exc:
        raise StoreUnavailable() from exc
    except SQLAlchemyError as exc:
        raise StoreUnavailable() from exc
