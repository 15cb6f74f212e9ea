"""
Roles and capabilities.

This defines WHAT each role can do, not HOW we check it.
The actual checking happens in policies.py.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Platform-wide account role."""

    MANAGER = "manager"        # Full access to their portfolio
    TENANT = "tenant"          # Self-service for one linked tenant record
    CONTRACTOR = "contractor"  # Self-service for one linked contractor record


# Labels written by older versions of the app.
ROLE_ALIASES: dict[str, Role] = {
    "portfolio manager": Role.MANAGER,
    "property manager": Role.MANAGER,
}


def parse_role(raw: str | None) -> Role | None:
    """
    Normalize a stored role string.

    Returns None for unknown roles; callers treat that as "no access",
    never as a default role.
    """
    value = (raw or "").strip().lower()
    if value in ROLE_ALIASES:
        return ROLE_ALIASES[value]
    try:
        return Role(value)
    except ValueError:
        return None


class Capability(str, Enum):
    """
    Named capabilities.

    A caller's capabilities are derived from their role alone.
    """

    # Self-service
    VIEW_OWN_PROFILE = "can_view_own_profile"
    EDIT_OWN_PROFILE = "can_edit_own_profile"
    VIEW_LEASE = "can_view_lease"
    VIEW_BALANCE = "can_view_balance"
    PAY_RENT = "can_pay_rent"
    VIEW_PAYMENT_HISTORY = "can_view_payment_history"
    SUBMIT_MAINTENANCE_REQUEST = "can_submit_maintenance_request"
    VIEW_MAINTENANCE_STATUS = "can_view_maintenance_status"
    VIEW_ANNOUNCEMENTS = "can_view_announcements"
    DOWNLOAD_DOCUMENTS = "can_download_documents"
    VIEW_ASSIGNED_JOBS = "can_view_assigned_jobs"
    REPLY_TO_MESSAGES = "can_reply_to_messages"

    # Management
    MANAGE_PROPERTIES = "can_manage_properties"
    MANAGE_TENANTS = "can_manage_tenants"
    MANAGE_LEASES = "can_manage_leases"
    MANAGE_CONTRACTORS = "can_manage_contractors"
    MANAGE_MAINTENANCE = "can_manage_maintenance"
    VIEW_FINANCIAL_REPORTS = "can_view_financial_reports"
    SEND_MESSAGES = "can_send_messages"
    SEND_SMS = "can_send_sms"
    MANAGE_SETTINGS = "can_manage_settings"
    MANAGE_USERS = "can_manage_users"


# =============================================================================
# Capability Mappings
# =============================================================================


TENANT_CAPABILITIES: frozenset[Capability] = frozenset({
    Capability.VIEW_OWN_PROFILE,
    Capability.EDIT_OWN_PROFILE,
    Capability.VIEW_LEASE,
    Capability.VIEW_BALANCE,
    Capability.PAY_RENT,
    Capability.VIEW_PAYMENT_HISTORY,
    Capability.SUBMIT_MAINTENANCE_REQUEST,
    Capability.VIEW_MAINTENANCE_STATUS,
    Capability.VIEW_ANNOUNCEMENTS,
    Capability.DOWNLOAD_DOCUMENTS,
    Capability.REPLY_TO_MESSAGES,
})

CONTRACTOR_CAPABILITIES: frozenset[Capability] = frozenset({
    Capability.VIEW_OWN_PROFILE,
    Capability.EDIT_OWN_PROFILE,
    Capability.VIEW_ASSIGNED_JOBS,
    Capability.REPLY_TO_MESSAGES,
})

# Managers can do everything a tenant can, plus run the portfolio.
MANAGER_CAPABILITIES: frozenset[Capability] = TENANT_CAPABILITIES | frozenset({
    Capability.MANAGE_PROPERTIES,
    Capability.MANAGE_TENANTS,
    Capability.MANAGE_LEASES,
    Capability.MANAGE_CONTRACTORS,
    Capability.MANAGE_MAINTENANCE,
    Capability.VIEW_FINANCIAL_REPORTS,
    Capability.SEND_MESSAGES,
    Capability.SEND_SMS,
    Capability.MANAGE_SETTINGS,
    Capability.MANAGE_USERS,
})

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.MANAGER: MANAGER_CAPABILITIES,
    Role.TENANT: TENANT_CAPABILITIES,
    Role.CONTRACTOR: CONTRACTOR_CAPABILITIES,
}


def get_capabilities(role: Role | None) -> frozenset[Capability]:
    """All capabilities a role grants (empty for no role)."""
    if role is None:
        return frozenset()
    return ROLE_CAPABILITIES.get(role, frozenset())


def permission_map(role: Role | None) -> dict[str, bool]:
    """Flat {capability_name: True} map for the frontend."""
    return {cap.value: True for cap in sorted(get_capabilities(role), key=lambda c: c.value)}
