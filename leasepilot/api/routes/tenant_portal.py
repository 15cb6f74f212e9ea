"""
Tenant portal - self-service for an account linked to one tenant record.

Every query is keyed on `ctx.scope_value` (the linked tenants.id). A
request id belonging to another tenant answers 404, same as a missing one.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, get_args

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, ValidationError, field_validator
from sqlalchemy import insert, select, update
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from leasepilot.api.dependencies import get_file_storage, read_image_upload
from leasepilot.auth import AuthContext, Role, get_database, require_role
from leasepilot.auth.accounts import get_account_by_id, public_profile
from leasepilot.auth.policies import get_app_settings
from leasepilot.config import Settings
from leasepilot.core.utils import clean_str, generate_id, row_to_dict, rows_to_dicts, utc_now
from leasepilot.services.messaging import (
    TENANT,
    mark_portal_read,
    portal_reply,
    portal_threads,
    portal_unread_count,
)
from leasepilot.storage.database import Database
from leasepilot.storage.files import FileStorage
from leasepilot.storage.schema import (
    announcements,
    contractors,
    maintenance_requests,
    properties,
    tenant_documents,
    tenants,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenant", tags=["tenant-portal"])

tenant_only = require_role(Role.TENANT)

IssueType = Literal["plumbing", "electrical", "hvac", "appliance", "pest", "other"]
Priority = Literal["normal", "emergency"]
ISSUE_TYPES = get_args(IssueType)

MAX_MAINTENANCE_PHOTOS = 6


def _require_subject(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Subject is required")
    return value


def _coerce_priority(value):
    if value is None:
        return value
    return "emergency" if value == "emergency" else "normal"


def _coerce_issue_type(value):
    # Unknown categories file under "other".
    value = value.strip().lower() if isinstance(value, str) else value
    return value if value in ISSUE_TYPES else "other"


Subject = Annotated[str, Field(max_length=255), AfterValidator(_require_subject)]
PriorityIn = Annotated[Priority, BeforeValidator(_coerce_priority)]
IssueTypeIn = Annotated[IssueType, BeforeValidator(_coerce_issue_type)]


# =============================================================================
# Request Models
# =============================================================================

class MaintenanceIn(BaseModel):
    subject: Subject
    description: str | None = None
    priority: PriorityIn = "normal"
    issue_type: IssueTypeIn = "other"
    photo_urls: list[str] = []


class MaintenancePatch(BaseModel):
    subject: Subject | None = None
    description: str | None = None
    priority: PriorityIn | None = None


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


# =============================================================================
# Helpers
# =============================================================================

def _my_tenant(conn, ctx: AuthContext) -> dict[str, Any]:
    row = conn.execute(
        select(
            tenants,
            properties.c.name.label("property_name"),
            properties.c.address.label("property_address"),
            properties.c.city.label("property_city"),
            properties.c.state.label("property_state"),
            properties.c.zip.label("property_zip"),
            properties.c.rent.label("property_rent"),
        )
        .select_from(tenants.outerjoin(properties, tenants.c.property_id == properties.c.id))
        .where(tenants.c.id == ctx.scope_value)
    ).first()
    if row is None:
        # Unlinked between scope resolution and now.
        raise HTTPException(status_code=403, detail="No portal record is linked to this account")
    return row_to_dict(row)


def _maintenance_query(ctx: AuthContext):
    mr = maintenance_requests
    return (
        select(
            mr.c.id,
            mr.c.subject,
            mr.c.description,
            mr.c.status,
            mr.c.priority,
            mr.c.issue_type,
            mr.c.photo_urls,
            mr.c.assigned_contractor_id,
            mr.c.created_at,
            mr.c.updated_at,
            contractors.c.name.label("contractor_name"),
            contractors.c.company.label("contractor_company"),
            contractors.c.phone.label("contractor_phone"),
            contractors.c.email.label("contractor_email"),
        )
        .select_from(mr.outerjoin(contractors, mr.c.assigned_contractor_id == contractors.c.id))
        .where(mr.c.tenant_id == ctx.scope_value)
    )


def _present_request(row) -> dict[str, Any]:
    request = row_to_dict(row)
    request["photo_urls"] = json.loads(request["photo_urls"]) if request.get("photo_urls") else []
    return request


def _get_my_request(conn, ctx: AuthContext, request_id: int) -> dict[str, Any]:
    row = conn.execute(_maintenance_query(ctx).where(maintenance_requests.c.id == request_id)).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Maintenance request not found")
    return _present_request(row)


# =============================================================================
# Profile / Lease
# =============================================================================

@router.get("/profile")
def profile(
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        account = get_account_by_id(conn, ctx.account_id)
        tenant = _my_tenant(conn, ctx)
    return {"user": public_profile(account or {}), "tenant": tenant}


@router.get("/lease")
def lease(
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        t = _my_tenant(conn, ctx)
    keys = (
        "id", "property_id", "unit", "first_name", "last_name", "email", "phone",
        "lease_start", "lease_end", "status", "property_name", "property_address",
        "property_city", "property_state", "property_zip",
    )
    summary = {k: t.get(k) for k in keys}
    summary["balance"] = float(t["balance"] or 0)
    summary["property_rent"] = float(t["property_rent"]) if t.get("property_rent") is not None else None
    return summary


@router.get("/balance")
def balance(
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        t = _my_tenant(conn, ctx)
    return {"balance": float(t["balance"] or 0), "currency": "USD"}


@router.get("/payments")
def payments(ctx: AuthContext = Depends(tenant_only)):
    """Payment history. Rent is paid offline, so nothing is recorded here yet."""
    return []


@router.post("/pay")
def pay(ctx: AuthContext = Depends(tenant_only)):
    return JSONResponse(
        status_code=501,
        content={"detail": "Online payment coming soon. Please pay by check or contact your property manager."},
    )


# =============================================================================
# Maintenance
# =============================================================================

@router.get("/maintenance")
def list_maintenance(
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        rows = conn.execute(
            _maintenance_query(ctx).order_by(
                maintenance_requests.c.created_at.desc(), maintenance_requests.c.id.desc()
            )
        )
        return [_present_request(r) for r in rows]


async def _read_maintenance_submission(
    request: Request,
    max_bytes: int,
) -> tuple[MaintenanceIn, list[tuple[bytes, str, str]]]:
    """
    Parse a JSON body, or a multipart form with up to six `photos`.

    Returns the validated fields and the (data, extension, content_type)
    of each uploaded photo.
    """
    content_type = request.headers.get("content-type", "")
    photos: list[tuple[bytes, str, str]] = []

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        payload = {
            key: form[key]
            for key in ("subject", "description", "priority", "issue_type")
            if isinstance(form.get(key), str)
        }
        files = [f for f in form.getlist("photos") if isinstance(f, UploadFile)]
        if len(files) > MAX_MAINTENANCE_PHOTOS:
            raise HTTPException(status_code=400, detail=f"At most {MAX_MAINTENANCE_PHOTOS} photos per request")
        limit_mb = max_bytes // (1024 * 1024)
        for file in files:
            data, extension = await read_image_upload(file, max_bytes, f"Each photo must be under {limit_mb}MB")
            photos.append((data, extension, file.content_type))
    else:
        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Request body must be JSON or multipart form data")

    try:
        data = MaintenanceIn.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))
    return data, photos


@router.post("/maintenance", status_code=201)
async def submit_maintenance(
    request: Request,
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
    storage: FileStorage = Depends(get_file_storage),
    settings: Settings = Depends(get_app_settings),
):
    """Submit a request as JSON, or as a multipart form with photo uploads."""
    data, photos = await _read_maintenance_submission(request, settings.max_upload_bytes)

    keys = []
    photo_urls = list(data.photo_urls)
    if photos:
        photo_urls = []
        for content, extension, content_type in photos:
            key = f"maintenance/{ctx.scope_value}-{generate_id()}.{extension}"
            photo_urls.append(await storage.put(key, content, content_type=content_type))
            keys.append(key)

    def save():
        now = utc_now()
        with database.begin() as conn:
            tenant = _my_tenant(conn, ctx)
            row = conn.execute(
                insert(maintenance_requests)
                .values(
                    tenant_id=ctx.scope_value,
                    property_id=tenant["property_id"],
                    subject=data.subject,
                    description=clean_str(data.description),
                    status="open",
                    priority=data.priority,
                    issue_type=data.issue_type,
                    photo_urls=json.dumps(photo_urls) if photo_urls else None,
                    created_at=now,
                    updated_at=now,
                )
                .returning(maintenance_requests.c.id)
            ).first()
            return _get_my_request(conn, ctx, row.id)

    try:
        created = await run_in_threadpool(save)
    except Exception:
        for key in keys:
            await storage.delete(key)
        raise
    logger.info("Tenant %s submitted maintenance request %s", ctx.scope_value, created["id"])
    return created


@router.get("/maintenance/{request_id}")
def get_maintenance(
    request_id: int,
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        return _get_my_request(conn, ctx, request_id)


@router.patch("/maintenance/{request_id}")
def update_maintenance(
    request_id: int,
    data: MaintenancePatch,
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    """Edit my own request while it is still open."""
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    if "description" in changes:
        changes["description"] = clean_str(changes["description"])
    if not changes:
        raise HTTPException(status_code=400, detail="Provide subject, description, and/or priority")

    with database.begin() as conn:
        current = _get_my_request(conn, ctx, request_id)
        if current["status"] != "open":
            raise HTTPException(status_code=400, detail="Only open requests can be edited")
        conn.execute(
            update(maintenance_requests)
            .where(
                maintenance_requests.c.id == request_id,
                maintenance_requests.c.tenant_id == ctx.scope_value,
            )
            .values(**changes, updated_at=utc_now())
        )
        return _get_my_request(conn, ctx, request_id)


# =============================================================================
# Announcements / Documents
# =============================================================================

@router.get("/announcements")
def list_announcements(
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        property_id = _my_tenant(conn, ctx)["property_id"]
        if property_id is None:
            return []
        rows = conn.execute(
            select(
                announcements.c.id,
                announcements.c.title,
                announcements.c.message,
                announcements.c.created_at,
            )
            .where(announcements.c.property_id == property_id)
            .order_by(announcements.c.created_at.desc())
            .limit(50)
        )
        return rows_to_dicts(rows)


@router.get("/documents")
def list_documents(
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        rows = conn.execute(
            select(
                tenant_documents.c.id,
                tenant_documents.c.name,
                tenant_documents.c.file_url,
                tenant_documents.c.created_at,
            )
            .where(tenant_documents.c.tenant_id == ctx.scope_value)
            .order_by(tenant_documents.c.created_at.desc())
        )
        return rows_to_dicts(rows)


# =============================================================================
# Messages
# =============================================================================

@router.get("/messages")
def list_messages(
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        return portal_threads(conn, TENANT, ctx.scope_value)


@router.get("/messages/unread-count")
def messages_unread_count(
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        return {"unread_count": portal_unread_count(conn, TENANT, ctx.scope_value)}


@router.post("/messages", status_code=201)
def reply_to_message(
    data: ReplyIn,
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        reply = portal_reply(conn, TENANT, ctx.scope_value, data.parent_message_id, data.body)
    if reply is None:
        raise HTTPException(status_code=404, detail="Message not found or you cannot reply to it")
    return reply


@router.patch("/messages/{message_id}/read")
def mark_message_read(
    message_id: int,
    ctx: AuthContext = Depends(tenant_only),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        marked = mark_portal_read(conn, TENANT, ctx.scope_value, message_id)
    if marked is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return marked
