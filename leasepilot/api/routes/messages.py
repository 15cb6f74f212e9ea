"""Messages - manager side of tenant/contractor threads."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, insert, select, update

from leasepilot.api.dependencies import fetch_scoped, get_sms_sender
from leasepilot.auth import AuthContext, Capability, get_database, require_capability
from leasepilot.core.utils import clean_str, row_to_dict, rows_to_dicts, utc_now
from leasepilot.integrations.sms import MAX_SMS_LENGTH, SmsSender, send_and_log
from leasepilot.services.messaging import reply_subject
from leasepilot.storage.database import Database
from leasepilot.storage.schema import contractors, messages, properties, tenants

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])

messenger = require_capability(Capability.SEND_MESSAGES)


class SendMessageRequest(BaseModel):
    recipient_type: Literal["tenant", "contractor"]
    recipient_id: int = Field(ge=1)
    subject: str
    body: str | None = None
    send_sms: bool = False

    @field_validator("subject")
    @classmethod
    def _subject_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Subject is required")
        return value


class ReplyRequest(BaseModel):
    reply_to_message_id: int = Field(ge=1)
    body: str
    send_sms: bool = False

    @field_validator("body")
    @classmethod
    def _body_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message body is required")
        return value


def _recipient_phone(conn, recipient_type: str, recipient_id: int) -> str | None:
    table = tenants if recipient_type == "tenant" else contractors
    return clean_str(conn.execute(select(table.c.phone).where(table.c.id == recipient_id)).scalar())


@router.get("/unread-count")
def unread_count(
    ctx: AuthContext = Depends(messenger),
    database: Database = Depends(get_database),
):
    """Replies addressed to this manager that are still unread."""
    with database.connect() as conn:
        count = conn.execute(
            select(func.count())
            .select_from(messages)
            .where(messages.c.recipient_user_id == ctx.account_id, messages.c.read_at.is_(None))
        ).scalar_one()
    return {"count": count}


@router.post("/mark-replies-read")
def mark_replies_read(
    ctx: AuthContext = Depends(messenger),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        conn.execute(
            update(messages)
            .where(messages.c.recipient_user_id == ctx.account_id, messages.c.read_at.is_(None))
            .values(read_at=utc_now())
        )
    return {"ok": True}


@router.get("")
def list_threads(
    recipient_type: Literal["tenant", "contractor"] | None = None,
    ctx: AuthContext = Depends(messenger),
    database: Database = Depends(get_database),
):
    """Threads this manager started, newest first, each with its replies."""
    query = (
        select(
            messages.c.id,
            messages.c.recipient_type,
            messages.c.subject,
            messages.c.body,
            messages.c.read_at,
            messages.c.created_at,
            messages.c.recipient_tenant_id,
            messages.c.recipient_contractor_id,
            tenants.c.first_name.label("tenant_first_name"),
            tenants.c.last_name.label("tenant_last_name"),
            tenants.c.unit.label("tenant_unit"),
            properties.c.name.label("tenant_property_name"),
            contractors.c.name.label("contractor_name"),
            contractors.c.company.label("contractor_company"),
        )
        .select_from(
            messages.outerjoin(tenants, messages.c.recipient_tenant_id == tenants.c.id)
            .outerjoin(properties, tenants.c.property_id == properties.c.id)
            .outerjoin(contractors, messages.c.recipient_contractor_id == contractors.c.id)
        )
        .where(messages.c.sender_user_id == ctx.account_id, messages.c.parent_message_id.is_(None))
        .order_by(messages.c.created_at.desc(), messages.c.id.desc())
    )
    if recipient_type is not None:
        query = query.where(messages.c.recipient_type == recipient_type)

    with database.connect() as conn:
        threads = rows_to_dicts(conn.execute(query))
        ids = [t["id"] for t in threads]
        reply_rows = []
        if ids:
            reply_rows = conn.execute(
                select(
                    messages.c.id,
                    messages.c.parent_message_id,
                    messages.c.body,
                    messages.c.created_at,
                    messages.c.sender_user_id,
                    messages.c.sender_tenant_id,
                    messages.c.sender_contractor_id,
                    tenants.c.first_name,
                    tenants.c.last_name,
                    contractors.c.name.label("contractor_name"),
                )
                .select_from(
                    messages.outerjoin(tenants, messages.c.sender_tenant_id == tenants.c.id)
                    .outerjoin(contractors, messages.c.sender_contractor_id == contractors.c.id)
                )
                .where(messages.c.parent_message_id.in_(ids))
                .order_by(messages.c.created_at, messages.c.id)
            ).all()

    replies: dict[int, list[dict]] = {}
    for r in reply_rows:
        tenant_name = " ".join(p for p in (r.first_name, r.last_name) if p) if r.sender_tenant_id else None
        replies.setdefault(r.parent_message_id, []).append({
            "id": r.id,
            "body": r.body,
            "created_at": r.created_at,
            "from_tenant": r.sender_tenant_id is not None,
            "from_contractor": r.sender_contractor_id is not None,
            "from_manager": r.sender_user_id is not None,
            "tenant_name": tenant_name or None,
            "contractor_name": r.contractor_name,
        })

    for thread in threads:
        thread["replies"] = replies.get(thread["id"], [])
    return threads


@router.post("", status_code=201)
def send_message(
    data: SendMessageRequest,
    background: BackgroundTasks,
    ctx: AuthContext = Depends(messenger),
    database: Database = Depends(get_database),
    sms: SmsSender = Depends(get_sms_sender),
):
    """Start a thread with a tenant or contractor in scope. Optionally text it too."""
    if data.send_sms:
        ctx.require(Capability.SEND_SMS)
    body = clean_str(data.body)
    table = tenants if data.recipient_type == "tenant" else contractors

    with database.begin() as conn:
        if fetch_scoped(conn, table, ctx, data.recipient_id) is None:
            raise HTTPException(status_code=404, detail=f"{data.recipient_type.capitalize()} not found")

        row = conn.execute(
            insert(messages)
            .values(
                sender_user_id=ctx.account_id,
                recipient_type=data.recipient_type,
                recipient_tenant_id=data.recipient_id if data.recipient_type == "tenant" else None,
                recipient_contractor_id=data.recipient_id if data.recipient_type == "contractor" else None,
                subject=data.subject,
                body=body,
                created_at=utc_now(),
            )
            .returning(
                messages.c.id,
                messages.c.recipient_type,
                messages.c.subject,
                messages.c.body,
                messages.c.created_at,
            )
        ).first()
        phone = _recipient_phone(conn, data.recipient_type, data.recipient_id) if data.send_sms else None

    if phone:
        text = f"{data.subject}\n\n{body}" if body else data.subject
        background.add_task(send_and_log, sms, phone, text[:MAX_SMS_LENGTH], f"message {row.id}")
    return row_to_dict(row)


@router.post("/reply", status_code=201)
def reply(
    data: ReplyRequest,
    background: BackgroundTasks,
    ctx: AuthContext = Depends(messenger),
    database: Database = Depends(get_database),
    sms: SmsSender = Depends(get_sms_sender),
):
    """Reply on one of the caller's own threads."""
    if data.send_sms:
        ctx.require(Capability.SEND_SMS)
    with database.begin() as conn:
        root = conn.execute(
            select(messages).where(
                messages.c.id == data.reply_to_message_id,
                messages.c.parent_message_id.is_(None),
            )
        ).first()
        if root is None:
            raise HTTPException(status_code=404, detail="Thread not found")
        if root.sender_user_id != ctx.account_id:
            raise HTTPException(status_code=403, detail="You can only reply to your own threads")

        row = conn.execute(
            insert(messages)
            .values(
                parent_message_id=root.id,
                sender_user_id=ctx.account_id,
                recipient_type=root.recipient_type,
                recipient_tenant_id=root.recipient_tenant_id,
                recipient_contractor_id=root.recipient_contractor_id,
                subject=reply_subject(root.subject),
                body=data.body,
                created_at=utc_now(),
            )
            .returning(messages.c.id, messages.c.subject, messages.c.body, messages.c.created_at)
        ).first()

        phone = None
        if data.send_sms:
            recipient_id = root.recipient_tenant_id or root.recipient_contractor_id
            phone = _recipient_phone(conn, root.recipient_type, recipient_id)

    if phone:
        background.add_task(send_and_log, sms, phone, data.body[:MAX_SMS_LENGTH], f"reply {row.id}")
    return row_to_dict(row)
