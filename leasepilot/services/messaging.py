"""
Messaging - threads between a manager and tenants/contractors.

A thread is a root message from a manager (parent_message_id IS NULL)
plus its replies. Portal users only ever see threads addressed to their
own linked record, and only reply to those.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Column, func, insert, or_, select, update
from sqlalchemy.engine import Connection

from leasepilot.core.utils import row_to_dict, utc_now
from leasepilot.storage.schema import messages


@dataclass(frozen=True)
class Participant:
    """How one portal kind is addressed in the messages table."""

    kind: str  # recipient_type value
    recipient_column: Column
    sender_column: Column


TENANT = Participant("tenant", messages.c.recipient_tenant_id, messages.c.sender_tenant_id)
CONTRACTOR = Participant("contractor", messages.c.recipient_contractor_id, messages.c.sender_contractor_id)


def reply_subject(subject: str | None) -> str:
    subject = (subject or "").strip()
    return subject if subject.startswith("Re:") else f"Re: {subject}"


def _addressed_to(who: Participant, record_id: int):
    return (messages.c.recipient_type == who.kind) & (who.recipient_column == record_id)


# =============================================================================
# Portal side
# =============================================================================

def portal_threads(conn: Connection, who: Participant, record_id: int) -> list[dict[str, Any]]:
    """Threads addressed to the record, newest first, each with its replies."""
    rows = conn.execute(
        select(messages)
        .where(or_(_addressed_to(who, record_id), who.sender_column == record_id))
        .order_by(func.coalesce(messages.c.parent_message_id, messages.c.id), messages.c.created_at, messages.c.id)
    )

    roots: dict[int, dict[str, Any]] = {}
    replies: list[dict[str, Any]] = []
    for row in rows:
        message = {
            "id": row.id,
            "subject": row.subject,
            "body": row.body,
            "read_at": row.read_at,
            "created_at": row.created_at,
            "is_reply": row.parent_message_id is not None,
            "from_me": getattr(row, who.sender_column.name) is not None,
            "parent_message_id": row.parent_message_id,
            "replies": [],
        }
        if row.parent_message_id is None:
            roots[row.id] = message
        else:
            replies.append(message)

    for reply in replies:
        root = roots.get(reply["parent_message_id"])
        if root is not None:
            root["replies"].append(reply)

    return sorted(roots.values(), key=lambda m: (m["created_at"], m["id"]), reverse=True)


def portal_unread_count(conn: Connection, who: Participant, record_id: int) -> int:
    return conn.execute(
        select(func.count())
        .select_from(messages)
        .where(
            _addressed_to(who, record_id),
            messages.c.parent_message_id.is_(None),
            messages.c.read_at.is_(None),
        )
    ).scalar_one()


def portal_reply(
    conn: Connection,
    who: Participant,
    record_id: int,
    parent_message_id: int,
    body: str,
) -> dict[str, Any] | None:
    """
    Reply to a manager's thread. Returns None when the thread does not
    exist or is not addressed to this record.
    """
    parent = conn.execute(
        select(messages.c.id, messages.c.subject, messages.c.sender_user_id).where(
            messages.c.id == parent_message_id,
            messages.c.parent_message_id.is_(None),
            _addressed_to(who, record_id),
        )
    ).first()
    if parent is None:
        return None

    row = conn.execute(
        insert(messages)
        .values(
            parent_message_id=parent.id,
            recipient_type="manager",
            recipient_user_id=parent.sender_user_id,
            subject=reply_subject(parent.subject),
            body=body,
            created_at=utc_now(),
            **{who.sender_column.name: record_id},
        )
        .returning(messages.c.id, messages.c.subject, messages.c.body, messages.c.created_at)
    ).first()
    return row_to_dict(row)


def mark_portal_read(
    conn: Connection,
    who: Participant,
    record_id: int,
    message_id: int,
) -> dict[str, Any] | None:
    row = conn.execute(
        update(messages)
        .where(messages.c.id == message_id, _addressed_to(who, record_id))
        .values(read_at=utc_now())
        .returning(messages.c.id, messages.c.read_at)
    ).first()
    return row_to_dict(row) if row else None
