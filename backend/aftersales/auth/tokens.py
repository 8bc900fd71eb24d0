"""
Signed session tokens (JWT, HS256).

Wire format:
    base64url(header) "." base64url(payload) "." base64url(HMAC-SHA256)
    header  = {"typ": "JWT", "alg": "HS256"}
    payload = {user_id, email, role, iat, exp, iss, aud}

The signing primitive comes from PyJWT (constant-time signature compare).
Expiry is checked here against an injected clock so that verification is a
pure function of (token, secret, now) — no database access at all.

A token whose header is intact but whose payload or signature segment is
not the canonical base64url encoding of some bytes is treated as tampered
(InvalidSignature), never as merely malformed.

Operational note: rotating JWT_SECRET invalidates every outstanding token.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import jwt
from jwt.exceptions import InvalidSignatureError, InvalidTokenError

from aftersales.auth.errors import InvalidSignature, InvalidToken, TokenExpired

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ["user_id", "email", "role", "iat", "exp", "iss", "aud"]


@dataclass(frozen=True, slots=True)
class TokenSubject:
    """Who a token is being issued for."""

    user_id: str
    email: str
    role: str


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Verified contents of a session token."""

    user_id: str
    email: str
    role: str
    issued_at: int
    expires_at: int
    issuer: str
    audience: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TokenClaims:
        return cls(
            user_id=str(payload["user_id"]),
            email=payload["email"],
            role=payload["role"],
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
            issuer=payload["iss"],
            audience=payload["aud"],
        )


class TokenService:
    """Issues and verifies session tokens for one deployment."""

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, subject: TokenSubject) -> str:
        now = int(self._clock())
        payload = {
            "user_id": subject.user_id,
            "email": subject.email,
            "role": subject.role,
            "iat": now,
            "exp": now + self.ttl_seconds,
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(
            payload, self._secret, algorithm=ALGORITHM, headers={"typ": "JWT"},
        )

    def verify(self, token: str) -> TokenClaims:
        """
        Verify signature, issuer/audience, then expiry.

        Raises:
            InvalidSignature: HMAC does not match (tampered or foreign secret).
            InvalidToken:     Malformed token or wrong issuer/audience.
            TokenExpired:     Signature is valid but now > exp.
        """
        header_segment, _, rest = token.partition(".")
        if not rest or not isinstance(_decode_json_segment(header_segment), dict):
            logger.debug("Token rejected: unreadable header")
            raise InvalidToken()

        # header intact: anything wrong from here on is a tampered signing input
        payload_segment, _, signature_segment = rest.rpartition(".")
        if not (_is_canonical_segment(payload_segment) and _is_canonical_segment(signature_segment)):
            raise InvalidSignature()

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": _REQUIRED_CLAIMS,
                },
            )
        except InvalidSignatureError as exc:
            raise InvalidSignature() from exc
        except InvalidTokenError as exc:
            logger.debug("Token rejected: %s", exc)
            raise InvalidToken() from exc

        claims = TokenClaims.from_payload(payload)
        if self._clock() > claims.expires_at:
            raise TokenExpired()
        return claims


def _is_canonical_segment(segment: str) -> bool:
    """True when `segment` is the exact unpadded base64url form of its bytes."""
    if not segment:
        return False
    try:
        raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except (binascii.Error, ValueError):
        return False
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") == segment


def _decode_json_segment(segment: str) -> Any:
    if not _is_canonical_segment(segment):
        return None
    try:
        return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))
    except ValueError:
        return None
