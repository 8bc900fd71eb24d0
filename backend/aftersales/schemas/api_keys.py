"""
Pydantic v2 schemas for API key management.

Separation:
  • ApiKeyCreate / ApiKeyUpdate — what an admin sends.
  • ApiKeyOut                   — what is ever shown again (no secret).
  • ApiKeyCreated               — ApiKeyOut + the raw key, returned once.

Unknown permission strings are dropped server-side; an empty result
falls back to ["read"].
"""

from __future__ import annotations

import datetime
import uuid

from pydantic import BaseModel, ConfigDict, Field


class ApiKeyCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255, examples=["Workshop tablet"])
    permissions: list[str] = Field(
        default_factory=lambda: ["read"],
        examples=[["read", "write"]],
        description="Subset of read, write, admin.",
    )
    rate_limit: int = Field(default=1000, ge=1, le=1_000_000, description="Requests per hour.")
    notes: str | None = Field(default=None, max_length=2000)


class ApiKeyUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    permissions: list[str] | None = None
    rate_limit: int | None = Field(default=None, ge=1, le=1_000_000)
    active: bool | None = None
    notes: str | None = Field(default=None, max_length=2000)


class ApiKeyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    prefix: str
    name: str
    permissions: list[str]
    rate_limit: int
    is_active: bool
    last_used_at: datetime.datetime | None
    created_at: datetime.datetime
    updated_at: datetime.datetime | None
    created_by: str | None
    notes: str | None


class ApiKeyCreated(ApiKeyOut):
    api_key: str = Field(..., description="The raw key. Shown only once.")
