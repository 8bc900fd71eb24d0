"""
API key resolution and management.

Flow for resolve():
  1. Hash the presented key (SHA-256) — the raw key never reaches the DB.
  2. Ask each resolver in order; the first that recognises the hash wins:
       DatabaseKeyResolver — api_keys rows with is_active = true
       StaticKeyResolver   — bootstrap keys from STATIC_API_KEYS
  3. No match → InvalidKey (401). Matched but inactive → KeyInactive (403).

Store failures in the database resolver, timeouts included, do not stop
the static resolver (bootstrap keys must keep working while the DB is
degraded), but if no resolver matches, the store failure is raised instead
of InvalidKey so an outage is never reported as a bad credential. The
deadline passed to resolve() applies to each resolver separately.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.auth.errors import InvalidKey, KeyInactive, StoreUnavailable, fail_closed
from aftersales.auth.hashing import fingerprint, generate_api_key, hash_api_key
from aftersales.auth.principals import ApiKeyPrincipal
from aftersales.core.config import StaticApiKey
from aftersales.models.api_key import ApiKey

logger = logging.getLogger(__name__)

VALID_PERMISSIONS = frozenset({"read", "write", "admin"})
DEFAULT_PERMISSIONS = ["read"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class KeyResolver(Protocol):
    """One source of API keys. Returns None when the hash is unknown to it."""

    async def find(self, session: AsyncSession, key_hash: str) -> ApiKeyPrincipal | None:
        ...


class _InactiveKey(Exception):
    """Internal marker: a resolver knows the key but it is switched off."""


# ── Resolvers ───────────────────────────────────────────────
class DatabaseKeyResolver:
    """Active keys from the api_keys table; touches last_used_at on a hit."""

    def __init__(self, clock: Callable[[], datetime.datetime] = _utcnow) -> None:
        self._clock = clock

    async def find(self, session: AsyncSession, key_hash: str) -> ApiKeyPrincipal | None:
        try:
            stmt = select(ApiKey).where(
                ApiKey.key_hash == key_hash,
                ApiKey.is_active.is_(True),
            )
            api_key = (await session.execute(stmt)).scalar_one_or_none()
            if api_key is None:
                return None

            # last-write-wins; nothing depends on the ordering of touches
            await session.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key.id)
                .values(last_used_at=self._clock())
            )
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("API key lookup failed: %s", exc.__class__.__name__)
            raise StoreUnavailable() from exc

        return ApiKeyPrincipal(
            name=api_key.name,
            permissions=frozenset(api_key.permissions or ()),
            rate_limit=api_key.rate_limit,
            key_hash=key_hash,
            source="database",
        )


class StaticKeyResolver:
    """
    Bootstrap keys provisioned through configuration.

    The mapping is keyed by raw key; it is re-indexed by hash once at
    construction so lookups work on the same hash as the database path.
    """

    def __init__(self, static_keys: Mapping[str, StaticApiKey]) -> None:
        self._by_hash: dict[str, StaticApiKey] = {
            hash_api_key(raw): entry for raw, entry in static_keys.items()
        }

    async def find(self, session: AsyncSession, key_hash: str) -> ApiKeyPrincipal | None:
        entry = self._by_hash.get(key_hash)
        if entry is None:
            return None
        if not entry.active:
            raise _InactiveKey(entry.name)
        return ApiKeyPrincipal(
            name=entry.name,
            permissions=frozenset(entry.permissions),
            rate_limit=entry.rate_limit,
            key_hash=key_hash,
            source="static",
        )


# ── Store ───────────────────────────────────────────────────
class ApiKeyStore:
    """Ordered chain of resolvers behind a single resolve() call."""

    def __init__(self, resolvers: Sequence[KeyResolver]) -> None:
        self._resolvers = list(resolvers)

    async def resolve(
        self,
        session: AsyncSession,
        raw_key: str,
        timeout: float | None = None,
    ) -> ApiKeyPrincipal:
        key_hash = hash_api_key(raw_key)
        store_error: StoreUnavailable | None = None

        for resolver in self._resolvers:
            lookup = resolver.find(session, key_hash)
            if timeout is not None:
                lookup = fail_closed(lookup, timeout)
            try:
                principal = await lookup
            except StoreUnavailable as exc:
                store_error = exc
                continue
            except _InactiveKey as exc:
                logger.info("Inactive API key presented: %s (%s)", exc, fingerprint(raw_key))
                raise KeyInactive() from None
            if principal is not None:
                return principal

        if store_error is not None:
            raise store_error
        raise InvalidKey()


# ── Management ──────────────────────────────────────────────
def normalize_permissions(permissions: Iterable[str] | None) -> list[str]:
    """Keep only known permissions; fall back to read-only."""
    kept = sorted({p for p in (permissions or ()) if p in VALID_PERMISSIONS})
    return kept or list(DEFAULT_PERMISSIONS)


async def create_api_key(
    session: AsyncSession,
    name: str,
    permissions: Iterable[str] | None = None,
    rate_limit: int = 1000,
    notes: str | None = None,
    created_by: str | None = None,
) -> tuple[ApiKey, str]:
    """
    Persist a new key and return (row, raw_key).

    The raw key is returned exactly once and is not recoverable afterwards.
    """
    raw_key, key_hash, prefix = generate_api_key()
    api_key = ApiKey(
        key_hash=key_hash,
        prefix=prefix,
        name=name,
        permissions=normalize_permissions(permissions),
        rate_limit=rate_limit,
        is_active=True,
        notes=notes,
        created_by=created_by,
    )
    session.add(api_key)
    await session.commit()
    await session.refresh(api_key)
    logger.info("Created API key %r (%s)", name, prefix)
    return api_key, raw_key


async def get_api_key(session: AsyncSession, key_id: uuid.UUID) -> ApiKey | None:
    return await session.get(ApiKey, key_id)


async def list_api_keys(session: AsyncSession) -> list[ApiKey]:
    stmt = select(ApiKey).order_by(ApiKey.created_at.desc())
    return list((await session.execute(stmt)).scalars().all())


async def update_api_key(
    session: AsyncSession,
    api_key: ApiKey,
    *,
    name: str | None = None,
    permissions: Iterable[str] | None = None,
    rate_limit: int | None = None,
    active: bool | None = None,
    notes: str | None = None,
) -> ApiKey:
    if name is not None:
        api_key.name = name
    if permissions is not None:
        api_key.permissions = normalize_permissions(permissions)
    if rate_limit is not None:
        api_key.rate_limit = rate_limit
    if active is not None:
        api_key.is_active = active
    if notes is not None:
        api_key.notes = notes
    await session.commit()
    await session.refresh(api_key)
    return api_key


async def deactivate_api_key(session: AsyncSession, api_key: ApiKey) -> ApiKey:
    """Revoke a key. Rows are never deleted so analytics history survives."""
    logger.info("Deactivating API key %r (%s)", api_key.name, api_key.prefix)
    return await update_api_key(session, api_key, active=False)
