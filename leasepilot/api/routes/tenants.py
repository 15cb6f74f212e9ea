"""Tenants - manager-side CRUD plus portal invites."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import delete, insert, select, update

from leasepilot.api.dependencies import check_property_in_scope, get_scoped_or_404
from leasepilot.auth import AuthContext, Role, get_database, require_role
from leasepilot.auth.accounts import link_portal_account, public_profile
from leasepilot.auth.policies import get_app_settings
from leasepilot.config import Settings
from leasepilot.core.utils import clean_str, row_to_dict, rows_to_dicts, utc_now
from leasepilot.storage.database import Database
from leasepilot.storage.schema import properties, tenants

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants", tags=["tenants"])

manager = require_role(Role.MANAGER)


class TenantIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    property_id: int | None = None
    unit: str | None = None
    status: str = "active"
    lease_start: date | None = None
    lease_end: date | None = None
    balance: Decimal = Decimal(0)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", "phone", "unit", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        return clean_str(value)


class InviteRequest(BaseModel):
    email: EmailStr
    password: str = Field(max_length=256)


def _tenant_query():
    return select(
        tenants,
        properties.c.name.label("property_name"),
        properties.c.address.label("property_address"),
    ).select_from(tenants.outerjoin(properties, tenants.c.property_id == properties.c.id))


@router.get("")
def list_tenants(
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        rows = conn.execute(
            _tenant_query()
            .where(ctx.scope_clause(tenants))
            .order_by(tenants.c.created_at.desc(), tenants.c.id.desc())
        )
        return rows_to_dicts(rows)


@router.get("/{tenant_id}")
def get_tenant(
    tenant_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        row = conn.execute(
            _tenant_query().where(tenants.c.id == tenant_id, ctx.scope_clause(tenants))
        ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return row_to_dict(row)


@router.post("", status_code=201)
def create_tenant(
    data: TenantIn,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    now = utc_now()
    with database.begin() as conn:
        check_property_in_scope(conn, ctx, data.property_id)
        row = conn.execute(
            insert(tenants)
            .values(**ctx.owner_values(), **data.model_dump(), created_at=now, updated_at=now)
            .returning(*tenants.c)
        ).first()
    logger.info("Tenant %s created", row.id)
    return row_to_dict(row)


@router.put("/{tenant_id}")
def update_tenant(
    tenant_id: int,
    data: TenantIn,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        get_scoped_or_404(conn, tenants, ctx, tenant_id, "Tenant")
        check_property_in_scope(conn, ctx, data.property_id)
        row = conn.execute(
            update(tenants)
            .where(tenants.c.id == tenant_id, ctx.scope_clause(tenants))
            .values(**data.model_dump(), updated_at=utc_now())
            .returning(*tenants.c)
        ).first()
    return row_to_dict(row)


@router.delete("/{tenant_id}")
def delete_tenant(
    tenant_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        get_scoped_or_404(conn, tenants, ctx, tenant_id, "Tenant")
        conn.execute(delete(tenants).where(tenants.c.id == tenant_id, ctx.scope_clause(tenants)))
    return {"message": "Tenant deleted successfully"}


@router.post("/{tenant_id}/invite")
def invite_tenant(
    tenant_id: int,
    data: InviteRequest,
    response: Response,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    """
    Give the tenant a portal login.

    Creates a tenant account (201), or links an existing tenant account
    with the same email (200).
    """
    with database.begin() as conn:
        tenant = get_scoped_or_404(conn, tenants, ctx, tenant_id, "Tenant")
        name = " ".join(p for p in (tenant["first_name"], tenant["last_name"]) if p) or data.email
        account, created = link_portal_account(
            conn,
            table=tenants,
            record=tenant,
            email=data.email,
            password=data.password,
            name=name,
            role=Role.TENANT,
            rounds=settings.bcrypt_rounds,
            min_length=settings.password_min_length,
        )

    if created:
        response.status_code = 201
        message = "Tenant invited. They can sign in with this email and password."
    else:
        message = "Tenant account already existed; linked to this tenant."
    return {"message": message, "user": public_profile(account)}
