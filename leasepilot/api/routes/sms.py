"""
SMS - manager-initiated texts.

Handlers are async because the sender is; database lookups go through
the threadpool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import Table
from starlette.concurrency import run_in_threadpool

from leasepilot.api.dependencies import fetch_scoped, get_sms_sender
from leasepilot.auth import AuthContext, Capability, get_database, require_capability
from leasepilot.core.utils import clean_str
from leasepilot.integrations.sms import SmsResult, SmsSender
from leasepilot.storage.database import Database
from leasepilot.storage.schema import contractors, tenants

router = APIRouter(prefix="/api/sms", tags=["sms"])

texter = require_capability(Capability.SEND_SMS)

DEFAULT_MESSAGE = "Hi, this is your property manager. Please reach out when you can."


class SendSmsRequest(BaseModel):
    to: str | None = None
    body: str | None = None


class RecipientSmsRequest(BaseModel):
    body: str | None = None


def _delivered(result: SmsResult) -> dict:
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error or "Failed to send SMS")
    return {"success": True, "sid": result.sid}


async def _send_to_record(
    database: Database,
    sms: SmsSender,
    ctx: AuthContext,
    table: Table,
    record_id: int,
    label: str,
    body: str | None,
) -> dict:
    def lookup():
        with database.connect() as conn:
            return fetch_scoped(conn, table, ctx, record_id)

    record = await run_in_threadpool(lookup)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    phone = clean_str(record.get("phone"))
    if not phone:
        raise HTTPException(status_code=400, detail=f"This {label.lower()} has no phone number on file")

    return _delivered(await sms.send(phone, clean_str(body) or DEFAULT_MESSAGE))


@router.get("/status")
def sms_status(
    ctx: AuthContext = Depends(texter),
    sms: SmsSender = Depends(get_sms_sender),
):
    return {"configured": sms.configured}


@router.post("/send")
async def send_sms(
    data: SendSmsRequest,
    ctx: AuthContext = Depends(texter),
    sms: SmsSender = Depends(get_sms_sender),
):
    to = clean_str(data.to)
    body = clean_str(data.body)
    if not to:
        raise HTTPException(status_code=400, detail="Phone number (to) is required")
    if not body:
        raise HTTPException(status_code=400, detail="Message (body) is required")
    return _delivered(await sms.send(to, body))


@router.post("/send-to-contractor/{contractor_id}")
async def send_to_contractor(
    contractor_id: int,
    data: RecipientSmsRequest | None = None,
    ctx: AuthContext = Depends(texter),
    database: Database = Depends(get_database),
    sms: SmsSender = Depends(get_sms_sender),
):
    body = data.body if data else None
    return await _send_to_record(database, sms, ctx, contractors, contractor_id, "Contractor", body)


@router.post("/send-to-tenant/{tenant_id}")
async def send_to_tenant(
    tenant_id: int,
    data: RecipientSmsRequest | None = None,
    ctx: AuthContext = Depends(texter),
    database: Database = Depends(get_database),
    sms: SmsSender = Depends(get_sms_sender),
):
    body = data.body if data else None
    return await _send_to_record(database, sms, ctx, tenants, tenant_id, "Tenant", body)
