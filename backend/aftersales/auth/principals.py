"""
Authenticated identities attached to a request.

Exactly one principal is produced per successful authentication:
  • UserPrincipal   — a signed-in staff member (session token path)
  • ApiKeyPrincipal — a machine client (API key path)

Permissions are plain capability strings ("read", "customers.write", …)
held in a frozenset; "*" grants everything. The /v1 routes check the flat
API-key vocabulary (read, write, admin), so staff roles carry the flat
verbs that match their dotted grants: roles that may read analytics hold
"read", managers also hold "write". Admin is the wildcard. Downstream
handlers only ever call has_permission() and never look at how the
principal was built.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from aftersales.models.user import (
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_SERVICE_ADVISOR,
    ROLE_TECHNICIAN,
    ROLE_VIEWER,
)

WILDCARD = "*"

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    ROLE_ADMIN: frozenset({WILDCARD}),
    ROLE_MANAGER: frozenset({
        "customers.read", "customers.write", "customers.delete",
        "vehicles.read", "vehicles.write", "vehicles.delete",
        "services.read", "services.write", "services.delete",
        "bookings.read", "bookings.write", "bookings.delete",
        "inventory.read", "inventory.write", "inventory.delete",
        "reports.read", "analytics.read", "dashboard.read",
        "read", "write",
    }),
    ROLE_SERVICE_ADVISOR: frozenset({
        "customers.read", "customers.write",
        "vehicles.read", "vehicles.write",
        "services.read", "services.write",
        "bookings.read", "bookings.write",
        "inventory.read", "inventory.write",
        "reports.read", "dashboard.read",
    }),
    ROLE_TECHNICIAN: frozenset({
        "services.read", "services.write",
        "vehicles.read",
        "inventory.read",
        "dashboard.read",
    }),
    ROLE_VIEWER: frozenset({
        "customers.read", "vehicles.read", "services.read",
        "bookings.read", "inventory.read", "reports.read",
        "analytics.read", "dashboard.read",
        "read",
    }),
}


@dataclass(frozen=True, slots=True)
class UserPrincipal:
    """Signed-in staff member, resolved from session token claims."""

    id: str
    email: str
    role: str

    @property
    def name(self) -> str:
        return self.email

    @property
    def permissions(self) -> frozenset[str]:
        return ROLE_PERMISSIONS.get(self.role, frozenset())


@dataclass(frozen=True, slots=True)
class ApiKeyPrincipal:
    """
    Machine client resolved from an API key.

    Attributes:
        name:        Human-readable key name; analytics are grouped by it.
        permissions: Capability set, "*" meaning all.
        rate_limit:  Requests per hour.
        key_hash:    SHA-256 of the presented key; the rate-limit identity.
        source:      "database" or "static".
    """

    name: str
    permissions: frozenset[str]
    rate_limit: int
    key_hash: str
    source: str = "database"


Principal = Union[UserPrincipal, ApiKeyPrincipal]


def has_permission(principal: Principal, permission: str) -> bool:
    perms = principal.permissions
    return permission in perms or WILDCARD in perms
