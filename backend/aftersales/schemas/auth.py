"""Pydantic v2 schemas for the staff session endpoints."""

from __future__ import annotations

import datetime
import uuid

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Payload accepted by POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., min_length=3, max_length=255, examples=["advisor@dealer.example"])
    password: str = Field(..., min_length=1, max_length=1024)


class LogoutRequest(BaseModel):
    """Optional body for POST /auth/logout; the X-Session-ID header also works."""

    session_id: str | None = Field(default=None, max_length=64)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    full_name: str | None
    role: str
    last_login_at: datetime.datetime | None


class LoginOut(BaseModel):
    user: UserOut
    access_token: str
    token_type: str
    expires_in: int
    session_id: str


class MeOut(BaseModel):
    """The authenticated caller, whichever credential it used."""

    kind: str
    name: str
    role: str | None = None
    permissions: list[str]


class LogoutAllOut(BaseModel):
    sessions_expired: int
