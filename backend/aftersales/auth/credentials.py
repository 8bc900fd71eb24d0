"""
Credential extraction — independent of the web framework.

Precedence (header names are case-insensitive):
  1. X-API-Key: <key>
  2. Authorization: Bearer <token>   or   Authorization: ApiKey <key>
  3. ?api_key=<key>                  (only when the route allows it)

A Bearer value that is not shaped like a signed token (three dot-separated
segments) comes from a legacy machine client and is treated as an API key.
Exactly one credential is returned: the session path and the API-key path
have disjoint permission models and are never mixed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from aftersales.auth.hashing import fingerprint

API_KEY_HEADER = "x-api-key"
AUTHORIZATION_HEADER = "authorization"
API_KEY_QUERY_PARAM = "api_key"

CredentialKind = Literal["bearer", "api_key"]


@dataclass(frozen=True, slots=True)
class Credential:
    """
    A credential pulled from a request.

    Attributes:
        kind:   "bearer" (session token) or "api_key".
        value:  The raw credential — never log it, use `.fingerprint`.
        source: "header" or "query"; query credentials are less trusted.
    """

    kind: CredentialKind
    value: str
    source: str = "header"

    @property
    def fingerprint(self) -> str | None:
        return fingerprint(self.value)

    def __repr__(self) -> str:
        return f"Credential(kind={self.kind!r}, value={self.fingerprint!r}, source={self.source!r})"


def looks_like_token(value: str) -> bool:
    """True when value has the header.payload.signature shape."""
    parts = value.split(".")
    return len(parts) == 3 and all(parts)


def _lower_keys(headers: Mapping[str, str]) -> dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def extract_credential(
    headers: Mapping[str, str],
    query: Mapping[str, str] | None = None,
    *,
    allow_query: bool = False,
) -> Credential | None:
    """
    Pull at most one credential out of request headers / query string.

    Args:
        headers:     Request headers (any mapping; matched case-insensitively).
        query:       Query-string parameters.
        allow_query: Accept ?api_key= for routes whose calling convention
                     needs it (e.g. pre-signed links).

    Returns:
        The credential, or None when nothing usable was presented.
    """
    lowered = _lower_keys(headers)

    # ── 1. Explicit API key header ──────────────────────────
    api_key = lowered.get(API_KEY_HEADER, "").strip()
    if api_key:
        return Credential(kind="api_key", value=api_key)

    # ── 2. Authorization header ─────────────────────────────
    authorization = lowered.get(AUTHORIZATION_HEADER, "").strip()
    if authorization:
        parts = authorization.split(" ", maxsplit=1)
        if len(parts) == 2:
            scheme, value = parts[0].lower(), parts[1].strip()
            if value and scheme == "bearer":
                kind: CredentialKind = "bearer" if looks_like_token(value) else "api_key"
                return Credential(kind=kind, value=value)
            if value and scheme == "apikey":
                return Credential(kind="api_key", value=value)

    # ── 3. Query-string fallback ────────────────────────────
    if allow_query and query:
        value = (query.get(API_KEY_QUERY_PARAM) or "").strip()
        if value:
            return Credential(kind="api_key", value=value, source="query")

    return None
