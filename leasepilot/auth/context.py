"""
Auth context - the "who can see what" for each request.

`resolve_auth_context()` turns a verified account id into an immutable
AuthContext: the caller's role, the scope their queries are limited to,
and the capabilities the role grants. It runs on every request; nothing
is cached between requests, so role changes and unlinking take effect
immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import Table, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql import ColumnElement

from leasepilot.auth.capabilities import Capability, Role, get_capabilities, parse_role
from leasepilot.auth.errors import RoleMismatch
from leasepilot.storage.schema import contractors, tenants, user_organizations, users


class ScopeKind(str, Enum):
    """What a request's scope value refers to."""

    OWNER = "owner"                          # users.id of the manager
    ORGANIZATION = "organization"            # organizations.id
    LINKED_TENANT = "linked_tenant"          # tenants.id linked to the account
    LINKED_CONTRACTOR = "linked_contractor"  # contractors.id linked to the account


class ScopeFailure(str, Enum):
    """Why no scope could be resolved for an authenticated account."""

    ACCOUNT_NOT_FOUND = "account_not_found"
    NO_ORGANIZATION = "no_organization"
    NO_LINKED_RECORD = "no_linked_record"
    UNKNOWN_ROLE = "unknown_role"

    @property
    def status_code(self) -> int:
        # A deleted account is an authentication problem, the rest are access problems.
        return 401 if self is ScopeFailure.ACCOUNT_NOT_FOUND else 403

    @property
    def message(self) -> str:
        return {
            ScopeFailure.ACCOUNT_NOT_FOUND: "User not found",
            ScopeFailure.NO_ORGANIZATION: "No organization. Create or join one first.",
            ScopeFailure.NO_LINKED_RECORD: "No portal record is linked to this account",
            ScopeFailure.UNKNOWN_ROLE: "Account role is not recognized",
        }[self]


@dataclass(frozen=True)
class AuthContext:
    """
    Authorization context for a request.

    Usage in routes:
        def list_properties(ctx: AuthContext = Depends(require_role(Role.MANAGER))):
            query = select(properties).where(ctx.scope_clause(properties))
    """

    account_id: int
    email: str
    name: str
    role: Role
    scope_kind: ScopeKind
    scope_value: int
    capabilities: frozenset[Capability]

    def can(self, capability: Capability | str) -> bool:
        if isinstance(capability, str):
            try:
                capability = Capability(capability)
            except ValueError:
                return False
        return capability in self.capabilities

    def require(self, capability: Capability | str) -> None:
        """Raise RoleMismatch unless the role grants `capability`."""
        if not self.can(capability):
            raise RoleMismatch(f"Permission denied: {getattr(capability, 'value', capability)}")

    def scope_clause(self, table: Table) -> ColumnElement[bool]:
        """
        The filter every query on a manager-owned table must carry.

        Portal scopes have no owner column to filter on; their queries
        filter by `scope_value` on the linked record instead.
        """
        if self.scope_kind is ScopeKind.OWNER:
            return table.c.user_id == self.scope_value
        if self.scope_kind is ScopeKind.ORGANIZATION:
            return table.c.organization_id == self.scope_value
        raise ValueError(f"{self.scope_kind.value} scope has no owner clause")

    def owner_values(self) -> dict[str, Any]:
        """Owner columns to stamp on rows this caller creates."""
        if self.scope_kind is ScopeKind.OWNER:
            return {"user_id": self.scope_value, "organization_id": None}
        if self.scope_kind is ScopeKind.ORGANIZATION:
            return {"user_id": self.account_id, "organization_id": self.scope_value}
        raise ValueError(f"{self.scope_kind.value} scope cannot own rows")

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "kind": self.scope_kind.value,
            "value": self.scope_value,
            "capabilities": sorted(c.value for c in self.capabilities),
        }


# =============================================================================
# Context Resolution
# =============================================================================


def _first_organization(conn: Connection, account_id: int) -> int | None:
    return conn.execute(
        select(user_organizations.c.org_id)
        .where(user_organizations.c.user_id == account_id)
        .order_by(user_organizations.c.created_at, user_organizations.c.org_id)
        .limit(1)
    ).scalar()


def _linked_record(conn: Connection, table: Table, account_id: int) -> int | None:
    return conn.execute(
        select(table.c.id).where(table.c.portal_user_id == account_id).limit(1)
    ).scalar()


def resolve_auth_context(
    conn: Connection,
    account_id: int,
    scope_mode: str = "owner",
) -> AuthContext | ScopeFailure:
    """
    Resolve role and scope for an account.

    - manager → OWNER (own id) or ORGANIZATION (first membership), by mode
    - tenant → LINKED_TENANT (tenants.portal_user_id)
    - contractor → LINKED_CONTRACTOR (contractors.portal_user_id)

    Returns the ScopeFailure instead of raising; the guard maps it to 401/403.
    """
    account = conn.execute(
        select(users.c.id, users.c.email, users.c.name, users.c.role).where(users.c.id == account_id)
    ).first()
    if account is None:
        return ScopeFailure.ACCOUNT_NOT_FOUND

    role = parse_role(account.role)
    if role is None:
        return ScopeFailure.UNKNOWN_ROLE

    if role is Role.MANAGER:
        if scope_mode == "organization":
            org_id = _first_organization(conn, account_id)
            if org_id is None:
                return ScopeFailure.NO_ORGANIZATION
            kind, value = ScopeKind.ORGANIZATION, org_id
        else:
            kind, value = ScopeKind.OWNER, account_id
    elif role is Role.TENANT:
        tenant_id = _linked_record(conn, tenants, account_id)
        if tenant_id is None:
            return ScopeFailure.NO_LINKED_RECORD
        kind, value = ScopeKind.LINKED_TENANT, tenant_id
    else:
        contractor_id = _linked_record(conn, contractors, account_id)
        if contractor_id is None:
            return ScopeFailure.NO_LINKED_RECORD
        kind, value = ScopeKind.LINKED_CONTRACTOR, contractor_id

    return AuthContext(
        account_id=account.id,
        email=account.email,
        name=account.name,
        role=role,
        scope_kind=kind,
        scope_value=value,
        capabilities=get_capabilities(role),
    )
