"""Services - query helpers shared by several routers."""

from leasepilot.services.messaging import (
    CONTRACTOR,
    TENANT,
    Participant,
    mark_portal_read,
    portal_reply,
    portal_threads,
    portal_unread_count,
    reply_subject,
)

__all__ = [
    "Participant",
    "TENANT",
    "CONTRACTOR",
    "reply_subject",
    "portal_threads",
    "portal_unread_count",
    "portal_reply",
    "mark_portal_read",
]
