"""
AuthGateway — one authenticate() call per inbound request.

State machine:
    Received
      ├─ no credential ─────────────────────────→ 401 MissingCredential
      ├─ bearer token ─→ TokenService.verify ──→ UserPrincipal
      │                    └─ bad/expired ─────→ 401
      └─ api key ──────→ ApiKeyStore.resolve
                           ├─ unknown ─────────→ 401 InvalidKey
                           ├─ inactive ────────→ 403 KeyInactive
                           └─ rate limiting on → admit(key_hash, limit)
                                                   ├─ full ─→ 429
                                                   └─ ok ───→ ApiKeyPrincipal

Every store call is bounded by `store_timeout`, each key resolver on its
own; a slow or failing store turns into 503 StoreUnavailable. A static
key still resolves while the database is slow, but with rate limiting on
its admission also needs the store. Requests are never admitted because the
store could not be consulted.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from aftersales.auth.api_keys import ApiKeyStore
from aftersales.auth.credentials import Credential, extract_credential
from aftersales.auth.errors import AuthError, MissingCredential, fail_closed
from aftersales.auth.principals import ApiKeyPrincipal, Principal, UserPrincipal
from aftersales.auth.tokens import TokenService
from aftersales.services import rate_limiter

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class AuthGateway:
    """Turns request headers into an admitted Principal or an AuthError."""

    def __init__(
        self,
        token_service: TokenService,
        key_store: ApiKeyStore,
        rate_limit_enabled: bool = True,
        store_timeout: float = 5.0,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self.token_service = token_service
        self.key_store = key_store
        self.rate_limit_enabled = rate_limit_enabled
        self.store_timeout = store_timeout
        self._clock = clock

    async def authenticate(
        self,
        session: AsyncSession,
        headers: Mapping[str, str],
        query: Mapping[str, str] | None = None,
        *,
        allow_query_key: bool = False,
        path: str = "",
        credential: Credential | None = None,
    ) -> Principal:
        """
        Authenticate one request.

        `credential` may be passed in when the caller has already run the
        extractor (the FastAPI dependency does, to keep it for analytics).
        """
        if credential is None:
            credential = extract_credential(headers, query, allow_query=allow_query_key)

        try:
            if credential is None:
                raise MissingCredential()
            if credential.kind == "bearer":
                return self._authenticate_token(credential)
            return await self._authenticate_key(session, credential)
        except AuthError as exc:
            logger.warning(
                "Auth denied: status=%d reason=%s credential=%s path=%s",
                exc.status_code,
                exc.__class__.__name__,
                credential.fingerprint if credential else None,
                path,
            )
            raise

    def _authenticate_token(self, credential: Credential) -> UserPrincipal:
        claims = self.token_service.verify(credential.value)
        return UserPrincipal(id=claims.user_id, email=claims.email, role=claims.role)

    async def _authenticate_key(
        self,
        session: AsyncSession,
        credential: Credential,
    ) -> ApiKeyPrincipal:
        principal = await self.key_store.resolve(
            session, credential.value, timeout=self.store_timeout,
        )

        if self.rate_limit_enabled:
            try:
                await fail_closed(
                    rate_limiter.admit(
                        session,
                        principal.key_hash,
                        principal.rate_limit,
                        now=self._clock(),
                    ),
                    self.store_timeout,
                )
            except AuthError as exc:
                # the key itself was valid: the request log is attributed to it
                exc.principal = principal
                raise

        return principal
