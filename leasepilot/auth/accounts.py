"""
Credential store.

Accounts live in the `users` table. Emails are stored lowercased and
looked up case-insensitively. Every function takes the caller's
Connection; writes are expected to run inside `Database.begin()`.

Usage:
    with db.begin() as conn:
        account = create_account(conn, email="a@x.com", password="Secret123", name="A")

    with db.connect() as conn:
        account = authenticate(conn, "A@x.com", "Secret123")
"""

from __future__ import annotations

import logging
import re
import secrets
from functools import lru_cache
from typing import Any

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from leasepilot.auth.capabilities import Role, parse_role
from leasepilot.auth.errors import (
    DuplicateAccount,
    InvalidCredentials,
    PortalLinkConflict,
    WeakPassword,
)
from leasepilot.auth.jwt import hash_password, verify_password
from leasepilot.core.utils import normalize_email, row_to_dict, utc_now
from leasepilot.storage.schema import (
    contractors,
    notifications,
    organizations,
    properties,
    tenants,
    transactions,
    user_organizations,
    users,
)

logger = logging.getLogger(__name__)

PUBLIC_FIELDS = ("id", "email", "name", "role", "avatar_url", "created_at")

# Tables stamped with owner columns; children before parents.
OWNED_TABLES = (transactions, notifications, tenants, contractors, properties)


# bcrypt only looks at the first 72 bytes.
MAX_PASSWORD_BYTES = 72

_LETTER = re.compile(r"[A-Za-z]")
_DIGIT = re.compile(r"\d")


@lru_cache
def _dummy_hash(rounds: int) -> str:
    """A hash no password matches, checked when the email is unknown."""
    return hash_password(secrets.token_urlsafe(16), rounds=rounds)


# =============================================================================
# Helpers
# =============================================================================

def public_profile(account: dict[str, Any]) -> dict[str, Any]:
    """The account fields safe to return to a client."""
    profile = {k: account.get(k) for k in PUBLIC_FIELDS}
    role = parse_role(account.get("role"))
    if role is not None:
        profile["role"] = role.value
    return profile


def validate_password_strength(password: str, min_length: int = 8) -> None:
    """Raise WeakPassword unless the password is long enough and mixes letters and digits."""
    if len(password) < min_length:
        raise WeakPassword(f"Password must be at least {min_length} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise WeakPassword(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    if not _LETTER.search(password) or not _DIGIT.search(password):
        raise WeakPassword("Password must contain at least one letter and one digit")


def _email_matches(email: str):
    return func.lower(users.c.email) == normalize_email(email)


# =============================================================================
# Lookups
# =============================================================================

def get_account_by_id(conn: Connection, account_id: int) -> dict[str, Any] | None:
    row = conn.execute(select(users).where(users.c.id == account_id)).first()
    return row_to_dict(row) if row else None


def get_account_by_email(conn: Connection, email: str) -> dict[str, Any] | None:
    """Case-insensitive email lookup."""
    row = conn.execute(select(users).where(_email_matches(email))).first()
    return row_to_dict(row) if row else None


def email_taken(conn: Connection, email: str, exclude_id: int | None = None) -> bool:
    query = select(users.c.id).where(_email_matches(email))
    if exclude_id is not None:
        query = query.where(users.c.id != exclude_id)
    return conn.execute(query).first() is not None


# =============================================================================
# Registration / Login
# =============================================================================

def create_account(
    conn: Connection,
    *,
    email: str,
    password: str,
    name: str,
    role: Role = Role.MANAGER,
    rounds: int = 12,
    min_length: int = 8,
    scope_mode: str = "owner",
) -> dict[str, Any]:
    """
    Create an account.

    In organization mode a new manager also gets a personal organization
    and an owner membership, written in the caller's transaction.

    Raises:
        WeakPassword: password fails the strength rules
        DuplicateAccount: email already registered (any case)
    """
    validate_password_strength(password, min_length)
    if email_taken(conn, email):
        raise DuplicateAccount()

    now = utc_now()
    try:
        row = conn.execute(
            insert(users)
            .values(
                email=normalize_email(email),
                password_hash=hash_password(password, rounds),
                name=name.strip(),
                role=role.value,
                created_at=now,
                updated_at=now,
            )
            .returning(*users.c)
        ).first()
    except IntegrityError as e:
        # Lost a race with a concurrent registration of the same email.
        raise DuplicateAccount() from e

    account = row_to_dict(row)

    if role == Role.MANAGER and scope_mode == "organization":
        org_id = conn.execute(
            insert(organizations)
            .values(name=f"{account['name']}'s Portfolio", created_at=now, updated_at=now)
            .returning(organizations.c.id)
        ).scalar_one()
        conn.execute(
            insert(user_organizations).values(
                user_id=account["id"], org_id=org_id, role="owner", created_at=now
            )
        )
        logger.info("Created organization %s for account %s", org_id, account["id"])

    logger.info("Registered account %s (%s)", account["id"], role.value)
    return account


def authenticate(
    conn: Connection,
    email: str,
    password: str,
    explain: bool = False,
    rounds: int = 12,
) -> dict[str, Any]:
    """
    Check credentials and return the account.

    Unknown email and wrong password raise the same InvalidCredentials and
    both run one bcrypt check, so callers cannot tell them apart by body or
    by timing. With `explain`, the log says which.
    """
    account = get_account_by_email(conn, email)
    if account is None:
        verify_password(password, _dummy_hash(rounds))
        if explain:
            logger.info("Login failed: no account for %s", normalize_email(email))
        raise InvalidCredentials()

    if not verify_password(password, account["password_hash"]):
        if explain:
            logger.info("Login failed: wrong password for account %s", account["id"])
        raise InvalidCredentials()

    return account


# =============================================================================
# Self-service
# =============================================================================

def update_profile(
    conn: Connection,
    account_id: int,
    name: str | None = None,
    email: str | None = None,
) -> dict[str, Any] | None:
    """Update name and/or email. A new email must not belong to another account."""
    values: dict[str, Any] = {}
    if name is not None and name.strip():
        values["name"] = name.strip()
    if email is not None:
        if email_taken(conn, email, exclude_id=account_id):
            raise DuplicateAccount("Email already in use")
        values["email"] = normalize_email(email)

    if values:
        values["updated_at"] = utc_now()
        conn.execute(update(users).where(users.c.id == account_id).values(**values))
    return get_account_by_id(conn, account_id)


def change_password(
    conn: Connection,
    account_id: int,
    current_password: str,
    new_password: str,
    rounds: int = 12,
    min_length: int = 8,
) -> None:
    account = get_account_by_id(conn, account_id)
    if account is None or not verify_password(current_password, account["password_hash"]):
        raise InvalidCredentials("Current password is incorrect")
    validate_password_strength(new_password, min_length)

    conn.execute(
        update(users)
        .where(users.c.id == account_id)
        .values(password_hash=hash_password(new_password, rounds), updated_at=utc_now())
    )
    logger.info("Password changed for account %s", account_id)


def set_avatar(conn: Connection, account_id: int, avatar_url: str) -> dict[str, Any] | None:
    conn.execute(
        update(users)
        .where(users.c.id == account_id)
        .values(avatar_url=avatar_url, updated_at=utc_now())
    )
    return get_account_by_id(conn, account_id)


def delete_account(conn: Connection, account_id: int) -> bool:
    """
    Hard delete.

    Rows the account owns outright go with it. Organization rows stay with
    the organization and only lose their creator. Portal links are nulled.
    """
    for table in OWNED_TABLES:
        conn.execute(
            delete(table).where(table.c.user_id == account_id, table.c.organization_id.is_(None))
        )
    result = conn.execute(delete(users).where(users.c.id == account_id))
    if result.rowcount:
        logger.info("Deleted account %s", account_id)
    return result.rowcount > 0


# =============================================================================
# Portal invites
# =============================================================================

def link_portal_account(
    conn: Connection,
    *,
    table,
    record: dict[str, Any],
    email: str,
    password: str,
    name: str,
    role: Role,
    rounds: int = 12,
    min_length: int = 8,
) -> tuple[dict[str, Any], bool]:
    """
    Give a tenant or contractor record a login.

    An existing account with the same email is linked when it already has
    `role`; otherwise a new account is created. Returns (account, created).

    Raises:
        PortalLinkConflict: record already linked, the email belongs to an
            account with another role, or that account is linked elsewhere.
    """
    label = role.value
    if record.get("portal_user_id"):
        raise PortalLinkConflict(f"This {label} already has a portal account")

    existing = get_account_by_email(conn, email)
    if existing is not None:
        if parse_role(existing.get("role")) != role:
            raise PortalLinkConflict(f"A non-{label} account already exists with this email")
        already_linked = conn.execute(
            select(table.c.id).where(table.c.portal_user_id == existing["id"])
        ).first()
        if already_linked is not None:
            raise PortalLinkConflict(f"That account is already linked to another {label}")
        account, created = existing, False
    else:
        account = create_account(
            conn,
            email=email,
            password=password,
            name=name,
            role=role,
            rounds=rounds,
            min_length=min_length,
        )
        created = True

    conn.execute(
        update(table)
        .where(table.c.id == record["id"])
        .values(portal_user_id=account["id"], updated_at=utc_now())
    )
    logger.info("Linked %s %s to account %s", label, record["id"], account["id"])
    return account, created
