"""
Maintenance requests - manager view.

Tenants submit requests through the tenant portal; managers triage them
here. A request is in scope when its property or its tenant is.
"""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import case, or_, select, update

from leasepilot.api.dependencies import fetch_scoped, get_sms_sender
from leasepilot.auth import AuthContext, Role, get_database, require_role
from leasepilot.core.utils import clean_str, row_to_dict, rows_to_dicts, utc_now
from leasepilot.integrations.sms import SmsSender, send_and_log
from leasepilot.storage.database import Database
from leasepilot.storage.schema import contractors, maintenance_requests, properties, tenants

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/maintenance-requests", tags=["maintenance"])

manager = require_role(Role.MANAGER)

MaintenanceStatus = Literal["open", "in_progress", "waiting_vendor", "completed"]


class MaintenanceUpdate(BaseModel):
    status: MaintenanceStatus | None = None
    assigned_vendor: str | None = None
    assigned_contractor_id: int | None = None


def _request_query():
    mr = maintenance_requests
    return (
        select(
            mr,
            properties.c.name.label("property_name"),
            tenants.c.first_name.label("tenant_first_name"),
            tenants.c.last_name.label("tenant_last_name"),
            tenants.c.unit.label("tenant_unit"),
            contractors.c.name.label("contractor_name"),
            contractors.c.company.label("contractor_company"),
            contractors.c.phone.label("contractor_phone"),
            contractors.c.email.label("contractor_email"),
            contractors.c.specialty.label("contractor_specialty"),
        )
        .select_from(
            mr.outerjoin(properties, mr.c.property_id == properties.c.id)
            .outerjoin(tenants, mr.c.tenant_id == tenants.c.id)
            .outerjoin(contractors, mr.c.assigned_contractor_id == contractors.c.id)
        )
    )


def _in_scope(ctx: AuthContext):
    return or_(ctx.scope_clause(properties), ctx.scope_clause(tenants))


def _assignment_message(request: dict) -> str:
    subject = request.get("subject") or "Maintenance request"
    urgent = " [EMERGENCY]" if request.get("priority") == "emergency" else ""
    place = request.get("property_name") or "Property"
    unit = f" Unit {request['tenant_unit']}" if request.get("tenant_unit") else ""
    return (
        f'You\'ve been assigned to a maintenance request: "{subject}"{urgent} '
        f"at {place}{unit}. Please contact the property manager to schedule."
    )


@router.get("")
def list_requests(
    property_id: int | None = None,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    """All requests in scope, emergencies first, newest first."""
    query = _request_query().where(_in_scope(ctx))
    if property_id is not None:
        query = query.where(maintenance_requests.c.property_id == property_id)
    query = query.order_by(
        case((maintenance_requests.c.priority == "emergency", 0), else_=1),
        maintenance_requests.c.created_at.desc(),
        maintenance_requests.c.id.desc(),
    )
    with database.connect() as conn:
        return rows_to_dicts(conn.execute(query))


@router.patch("/{request_id}")
def update_request(
    request_id: int,
    data: MaintenanceUpdate,
    background: BackgroundTasks,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
    sms: SmsSender = Depends(get_sms_sender),
):
    """
    Update status and/or assignment.

    Assigning a contractor texts them the request. SMS problems are logged
    and never fail the update.
    """
    changes = data.model_dump(exclude_unset=True)
    if "status" in changes and changes["status"] is None:
        del changes["status"]
    if "assigned_vendor" in changes:
        changes["assigned_vendor"] = clean_str(changes["assigned_vendor"])
    if not changes:
        raise HTTPException(
            status_code=400,
            detail="Provide status, assigned_vendor, and/or assigned_contractor_id",
        )

    with database.begin() as conn:
        existing = conn.execute(
            _request_query().where(maintenance_requests.c.id == request_id, _in_scope(ctx))
        ).first()
        if existing is None:
            raise HTTPException(status_code=404, detail="Request not found")

        contractor_id = changes.get("assigned_contractor_id")
        if contractor_id is not None and fetch_scoped(conn, contractors, ctx, contractor_id) is None:
            raise HTTPException(status_code=400, detail="Contractor not found")

        conn.execute(
            update(maintenance_requests)
            .where(maintenance_requests.c.id == request_id)
            .values(**changes, updated_at=utc_now())
        )
        updated = row_to_dict(
            conn.execute(_request_query().where(maintenance_requests.c.id == request_id)).first()
        )

    if contractor_id is not None and updated.get("contractor_phone"):
        background.add_task(
            send_and_log,
            sms,
            updated["contractor_phone"],
            _assignment_message(updated),
            f"maintenance request {request_id} assignment",
        )
    elif contractor_id is not None:
        logger.info("Contractor %s has no phone; assignment SMS skipped", contractor_id)

    return updated
