"""Contractors - vendors a manager can assign maintenance work to."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import delete, insert, select, update

from leasepilot.api.dependencies import get_scoped_or_404
from leasepilot.auth import AuthContext, Role, get_database, require_role
from leasepilot.auth.accounts import link_portal_account, public_profile
from leasepilot.auth.policies import get_app_settings
from leasepilot.config import Settings
from leasepilot.core.utils import clean_str, row_to_dict, rows_to_dicts, utc_now
from leasepilot.storage.database import Database
from leasepilot.storage.schema import contractors

router = APIRouter(prefix="/api/contractors", tags=["contractors"])

manager = require_role(Role.MANAGER)

_PUBLIC_COLUMNS = (
    contractors.c.id,
    contractors.c.name,
    contractors.c.company,
    contractors.c.phone,
    contractors.c.email,
    contractors.c.specialty,
    contractors.c.portal_user_id,
    contractors.c.created_at,
)


class ContractorIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    company: str | None = None
    phone: str | None = None
    email: str | None = None
    specialty: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("company", "phone", "email", "specialty", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        return clean_str(value)


class ContractorPatch(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    company: str | None = None
    phone: str | None = None
    email: str | None = None
    specialty: str | None = None


class InviteRequest(BaseModel):
    email: EmailStr
    password: str = Field(max_length=256)


@router.get("")
def list_contractors(
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        rows = conn.execute(
            select(*_PUBLIC_COLUMNS)
            .where(ctx.scope_clause(contractors))
            .order_by(contractors.c.name, contractors.c.id)
        )
        return rows_to_dicts(rows)


@router.get("/{contractor_id}")
def get_contractor(
    contractor_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        return get_scoped_or_404(conn, contractors, ctx, contractor_id, "Contractor")


@router.post("", status_code=201)
def create_contractor(
    data: ContractorIn,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    now = utc_now()
    with database.begin() as conn:
        row = conn.execute(
            insert(contractors)
            .values(**ctx.owner_values(), **data.model_dump(), created_at=now, updated_at=now)
            .returning(*_PUBLIC_COLUMNS)
        ).first()
    return row_to_dict(row)


@router.patch("/{contractor_id}")
def update_contractor(
    contractor_id: int,
    data: ContractorPatch,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    """Partial update: only the fields present in the body change."""
    changes = data.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is None:
        raise HTTPException(status_code=400, detail="Name cannot be empty")
    for key in ("company", "phone", "email", "specialty"):
        if key in changes:
            changes[key] = clean_str(changes[key])
    if not changes:
        raise HTTPException(status_code=400, detail="Provide at least one field to update")

    with database.begin() as conn:
        get_scoped_or_404(conn, contractors, ctx, contractor_id, "Contractor")
        row = conn.execute(
            update(contractors)
            .where(contractors.c.id == contractor_id, ctx.scope_clause(contractors))
            .values(**changes, updated_at=utc_now())
            .returning(*_PUBLIC_COLUMNS)
        ).first()
    return row_to_dict(row)


@router.delete("/{contractor_id}", status_code=204)
def delete_contractor(
    contractor_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        get_scoped_or_404(conn, contractors, ctx, contractor_id, "Contractor")
        conn.execute(
            delete(contractors).where(contractors.c.id == contractor_id, ctx.scope_clause(contractors))
        )
    return Response(status_code=204)


@router.post("/{contractor_id}/invite")
def invite_contractor(
    contractor_id: int,
    data: InviteRequest,
    response: Response,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    """Give the contractor a portal login (201 created, 200 linked existing)."""
    with database.begin() as conn:
        contractor = get_scoped_or_404(conn, contractors, ctx, contractor_id, "Contractor")
        account, created = link_portal_account(
            conn,
            table=contractors,
            record=contractor,
            email=data.email,
            password=data.password,
            name=contractor["name"] or data.email,
            role=Role.CONTRACTOR,
            rounds=settings.bcrypt_rounds,
            min_length=settings.password_min_length,
        )

    if created:
        response.status_code = 201
        message = "Contractor invited. They can sign in with this email and password."
    else:
        message = "Contractor account already existed; linked to this contractor."
    return {"message": message, "user": public_profile(account)}
