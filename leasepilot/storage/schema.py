"""
Relational schema.

Tables are declared with SQLAlchemy Core so queries stay explicit and
parameterized. Every manager-owned table carries both `user_id` and
`organization_id`; which one scopes a query depends on the deployment's
scope mode (see leasepilot.auth.context).
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)

from leasepilot.core.utils import utc_now

metadata = MetaData()


def _timestamps() -> list[Column]:
    return [
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
        Column("updated_at", DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now),
    ]


def _owner_columns() -> list[Column]:
    # Organization rows outlive the member who created them; account deletion
    # removes owner-mode rows explicitly (leasepilot.auth.accounts.delete_account).
    return [
        Column("user_id", Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True),
        Column(
            "organization_id",
            Integer,
            ForeignKey("organizations.id", ondelete="CASCADE"),
            index=True,
        ),
    ]


# =============================================================================
# Identity
# =============================================================================

organizations = Table(
    "organizations",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255), nullable=False),
    *_timestamps(),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("name", String(255), nullable=False),
    Column("role", String(100), nullable=False, default="manager"),
    Column("avatar_url", Text),
    *_timestamps(),
)

user_organizations = Table(
    "user_organizations",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("org_id", Integer, ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
    Column("role", String(50), nullable=False, default="owner"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", String(255), nullable=False, unique=True),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)


# =============================================================================
# Portfolio
# =============================================================================

properties = Table(
    "properties",
    metadata,
    Column("id", Integer, primary_key=True),
    *_owner_columns(),
    Column("name", String(255), nullable=False),
    Column("type", String(100)),
    Column("address", Text),
    Column("city", String(255)),
    Column("state", String(100)),
    Column("zip", String(20)),
    Column("bedrooms", Integer, default=0),
    Column("bathrooms", Numeric(3, 1), default=0),
    Column("sqft", Integer, default=0),
    Column("rent", Numeric(10, 2), default=0),
    Column("image_url", Text),
    Column("status", String(50), default="vacant"),
    *_timestamps(),
)

tenants = Table(
    "tenants",
    metadata,
    Column("id", Integer, primary_key=True),
    *_owner_columns(),
    Column("property_id", Integer, ForeignKey("properties.id", ondelete="SET NULL"), index=True),
    Column("first_name", String(255), nullable=False),
    Column("last_name", String(255), nullable=False),
    Column("email", String(255)),
    Column("phone", String(50)),
    Column("unit", String(100)),
    Column("status", String(50), default="active"),
    Column("lease_start", Date),
    Column("lease_end", Date),
    Column("balance", Numeric(10, 2), default=0),
    Column(
        "portal_user_id",
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        unique=True,
        index=True,
    ),
    *_timestamps(),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True),
    *_owner_columns(),
    Column("property_id", Integer, ForeignKey("properties.id", ondelete="SET NULL"), index=True),
    Column("type", String(50), nullable=False),
    Column("description", Text, nullable=False),
    Column("amount", Numeric(10, 2), nullable=False),
    Column("category", String(100)),
    Column("transaction_date", Date, nullable=False),
    Column("status", String(50), default="cleared"),
    *_timestamps(),
    CheckConstraint("type IN ('income', 'expense')", name="transactions_type_check"),
)

contractors = Table(
    "contractors",
    metadata,
    Column("id", Integer, primary_key=True),
    *_owner_columns(),
    Column("name", String(255), nullable=False),
    Column("company", String(255)),
    Column("phone", String(50)),
    Column("email", String(255)),
    Column("specialty", String(100)),
    Column(
        "portal_user_id",
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        unique=True,
        index=True,
    ),
    *_timestamps(),
)


# =============================================================================
# Operations
# =============================================================================

maintenance_requests = Table(
    "maintenance_requests",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("tenant_id", Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("property_id", Integer, ForeignKey("properties.id", ondelete="SET NULL")),
    Column("subject", String(255), nullable=False),
    Column("description", Text),
    Column("status", String(50), default="open"),
    Column("priority", String(50), default="normal"),
    Column("issue_type", String(50), default="other"),
    Column("photo_urls", Text),
    Column("assigned_vendor", String(255)),
    Column(
        "assigned_contractor_id",
        Integer,
        ForeignKey("contractors.id", ondelete="SET NULL"),
        index=True,
    ),
    *_timestamps(),
)

messages = Table(
    "messages",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("parent_message_id", Integer, ForeignKey("messages.id", ondelete="CASCADE"), index=True),
    Column("sender_user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True),
    Column("sender_tenant_id", Integer, ForeignKey("tenants.id", ondelete="CASCADE"), index=True),
    Column("sender_contractor_id", Integer, ForeignKey("contractors.id", ondelete="CASCADE"), index=True),
    Column("recipient_type", String(20), nullable=False),
    Column("recipient_tenant_id", Integer, ForeignKey("tenants.id", ondelete="CASCADE"), index=True),
    Column("recipient_contractor_id", Integer, ForeignKey("contractors.id", ondelete="CASCADE"), index=True),
    Column("recipient_user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True),
    Column("subject", String(255), nullable=False),
    Column("body", Text),
    Column("read_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    CheckConstraint(
        "recipient_type IN ('tenant', 'contractor', 'manager')",
        name="messages_recipient_type_check",
    ),
)

notifications = Table(
    "notifications",
    metadata,
    Column("id", Integer, primary_key=True),
    *_owner_columns(),
    Column("title", String(255), nullable=False),
    Column("message", Text),
    Column("type", String(50), default="info"),
    Column("read", Boolean, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)

announcements = Table(
    "announcements",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("property_id", Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="SET NULL")),
    Column("title", String(255), nullable=False),
    Column("message", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)

tenant_documents = Table(
    "tenant_documents",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("tenant_id", Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("file_url", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)
