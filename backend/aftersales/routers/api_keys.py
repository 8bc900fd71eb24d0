"""
API key management router — admin only.

  GET    /v1/api-keys        — list keys (newest first)
  GET    /v1/api-keys/{id}   — one key
  POST   /v1/api-keys        — create; the raw key is returned ONCE
  PATCH  /v1/api-keys/{id}   — rename / permissions / limit / notes / active
  DELETE /v1/api-keys/{id}   — deactivate (rows are never deleted)

Only the SHA-256 hash and a 12-char prefix are stored.
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.auth import api_keys as key_service
from aftersales.auth.dependencies import require_permission
from aftersales.auth.principals import Principal
from aftersales.core.database import get_db_session
from aftersales.models.api_key import ApiKey
from aftersales.schemas.api_keys import (
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyOut,
    ApiKeyUpdate,
)
from aftersales.schemas.envelope import Envelope, ok

logger = logging.getLogger(__name__)

router = APIRouter(tags=["API Keys"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Admin = Annotated[Principal, Depends(require_permission("admin"))]


async def _get_or_404(session: AsyncSession, key_id: uuid.UUID) -> ApiKey:
    api_key = await key_service.get_api_key(session, key_id)
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found.",
        )
    return api_key


@router.get(
    "",
    response_model=Envelope[list[ApiKeyOut]],
    summary="List API keys",
)
async def list_keys(session: DbSession, _admin: Admin) -> Envelope[list[ApiKeyOut]]:
    rows = await key_service.list_api_keys(session)
    return ok([ApiKeyOut.model_validate(row) for row in rows], "API keys retrieved")


@router.get(
    "/{key_id}",
    response_model=Envelope[ApiKeyOut],
    summary="Get one API key",
)
async def get_key(
    key_id: uuid.UUID,
    session: DbSession,
    _admin: Admin,
) -> Envelope[ApiKeyOut]:
    api_key = await _get_or_404(session, key_id)
    return ok(ApiKeyOut.model_validate(api_key), "API key retrieved")


@router.post(
    "",
    response_model=Envelope[ApiKeyCreated],
    status_code=status.HTTP_201_CREATED,
    summary="Create an API key",
    description=(
        "Generates a new random key, stores only its hash and returns the "
        "raw key in this response. It cannot be retrieved again."
    ),
)
async def create_key(
    payload: ApiKeyCreate,
    session: DbSession,
    admin: Admin,
) -> Envelope[ApiKeyCreated]:
    api_key, raw_key = await key_service.create_api_key(
        session,
        name=payload.name,
        permissions=payload.permissions,
        rate_limit=payload.rate_limit,
        notes=payload.notes,
        created_by=admin.name,
    )
    created = ApiKeyCreated(
        **ApiKeyOut.model_validate(api_key).model_dump(),
        api_key=raw_key,
    )
    return ok(created, "API key created. Store it now; it will not be shown again.")


@router.patch(
    "/{key_id}",
    response_model=Envelope[ApiKeyOut],
    summary="Update an API key",
)
async def update_key(
    key_id: uuid.UUID,
    payload: ApiKeyUpdate,
    session: DbSession,
    _admin: Admin,
) -> Envelope[ApiKeyOut]:
    api_key = await _get_or_404(session, key_id)
    api_key = await key_service.update_api_key(
        session,
        api_key,
        name=payload.name,
        permissions=payload.permissions,
        rate_limit=payload.rate_limit,
        active=payload.active,
        notes=payload.notes,
    )
    return ok(ApiKeyOut.model_validate(api_key), "API key updated")


@router.delete(
    "/{key_id}",
    response_model=Envelope[ApiKeyOut],
    summary="Deactivate an API key",
    description="Keys are never deleted so that analytics history survives.",
)
async def deactivate_key(
    key_id: uuid.UUID,
    session: DbSession,
    _admin: Admin,
) -> Envelope[ApiKeyOut]:
    api_key = await _get_or_404(session, key_id)
    api_key = await key_service.deactivate_api_key(session, api_key)
    return ok(ApiKeyOut.model_validate(api_key), "API key deactivated")
