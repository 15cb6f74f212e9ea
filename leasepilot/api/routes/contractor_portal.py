"""Contractor portal - assigned jobs and message threads for one linked contractor."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import case, select

from leasepilot.auth import AuthContext, Role, get_database, require_role
from leasepilot.auth.accounts import get_account_by_id, public_profile
from leasepilot.core.utils import row_to_dict, rows_to_dicts
from leasepilot.services.messaging import CONTRACTOR, mark_portal_read, portal_reply, portal_threads
from leasepilot.storage.database import Database
from leasepilot.storage.schema import contractors, maintenance_requests, properties, tenants

router = APIRouter(prefix="/api/contractor", tags=["contractor-portal"])

contractor_only = require_role(Role.CONTRACTOR)


class ReplyIn(BaseModel):
    parent_message_id: int = Field(ge=1)
    body: str

    @field_validator("body")
    @classmethod
    def _body_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message body is required")
        return value


@router.get("/profile")
def profile(
    ctx: AuthContext = Depends(contractor_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        account = get_account_by_id(conn, ctx.account_id)
        contractor = conn.execute(
            select(
                contractors.c.id,
                contractors.c.name,
                contractors.c.company,
                contractors.c.phone,
                contractors.c.email,
                contractors.c.specialty,
            ).where(contractors.c.id == ctx.scope_value)
        ).first()
    if contractor is None:
        raise HTTPException(status_code=403, detail="No portal record is linked to this account")
    return {"user": public_profile(account or {}), "contractor": row_to_dict(contractor)}


@router.get("/jobs")
def list_jobs(
    ctx: AuthContext = Depends(contractor_only),
    database: Database = Depends(get_database),
):
    """Maintenance requests assigned to me, emergencies first."""
    mr = maintenance_requests
    query = (
        select(
            mr.c.id,
            mr.c.subject,
            mr.c.description,
            mr.c.status,
            mr.c.priority,
            mr.c.issue_type,
            mr.c.created_at,
            mr.c.updated_at,
            properties.c.name.label("property_name"),
            properties.c.address.label("property_address"),
            tenants.c.unit.label("tenant_unit"),
        )
        .select_from(
            mr.outerjoin(properties, mr.c.property_id == properties.c.id)
            .outerjoin(tenants, mr.c.tenant_id == tenants.c.id)
        )
        .where(mr.c.assigned_contractor_id == ctx.scope_value)
        .order_by(
            case((mr.c.priority == "emergency", 0), else_=1),
            mr.c.created_at.desc(),
            mr.c.id.desc(),
        )
    )
    with database.connect() as conn:
        return rows_to_dicts(conn.execute(query))


@router.get("/messages")
def list_messages(
    ctx: AuthContext = Depends(contractor_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        return portal_threads(conn, CONTRACTOR, ctx.scope_value)


@router.post("/messages", status_code=201)
def reply_to_message(
    data: ReplyIn,
    ctx: AuthContext = Depends(contractor_only),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        reply = portal_reply(conn, CONTRACTOR, ctx.scope_value, data.parent_message_id, data.body)
    if reply is None:
        raise HTTPException(status_code=404, detail="Message not found or you cannot reply to it")
    return reply


@router.patch("/messages/{message_id}/read")
def mark_message_read(
    message_id: int,
    ctx: AuthContext = Depends(contractor_only),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        marked = mark_portal_read(conn, CONTRACTOR, ctx.scope_value, message_id)
    if marked is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return marked
