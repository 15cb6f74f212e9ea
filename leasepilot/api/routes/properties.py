"""Properties - the manager's portfolio."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import delete, insert, select, update

from leasepilot.api.dependencies import get_scoped_or_404
from leasepilot.auth import AuthContext, Role, get_database, require_role
from leasepilot.core.utils import row_to_dict, rows_to_dicts, utc_now
from leasepilot.storage.database import Database
from leasepilot.storage.schema import properties

router = APIRouter(prefix="/api/properties", tags=["properties"])

manager = require_role(Role.MANAGER)


class PropertyIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    bedrooms: int = Field(default=0, ge=0)
    bathrooms: Decimal = Field(default=Decimal(0), ge=0)
    sqft: int = Field(default=0, ge=0)
    rent: Decimal = Field(default=Decimal(0), ge=0)
    image_url: str | None = None
    status: str = "vacant"


@router.get("")
def list_properties(
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        rows = conn.execute(
            select(properties)
            .where(ctx.scope_clause(properties))
            .order_by(properties.c.created_at.desc(), properties.c.id.desc())
        )
        return rows_to_dicts(rows)


@router.get("/{property_id}")
def get_property(
    property_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        return get_scoped_or_404(conn, properties, ctx, property_id, "Property")


@router.post("", status_code=201)
def create_property(
    data: PropertyIn,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    now = utc_now()
    with database.begin() as conn:
        row = conn.execute(
            insert(properties)
            .values(**ctx.owner_values(), **data.model_dump(), created_at=now, updated_at=now)
            .returning(*properties.c)
        ).first()
    return row_to_dict(row)


@router.put("/{property_id}")
def update_property(
    property_id: int,
    data: PropertyIn,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        get_scoped_or_404(conn, properties, ctx, property_id, "Property")
        row = conn.execute(
            update(properties)
            .where(properties.c.id == property_id, ctx.scope_clause(properties))
            .values(**data.model_dump(), updated_at=utc_now())
            .returning(*properties.c)
        ).first()
    return row_to_dict(row)


@router.delete("/{property_id}")
def delete_property(
    property_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        get_scoped_or_404(conn, properties, ctx, property_id, "Property")
        conn.execute(
            delete(properties).where(properties.c.id == property_id, ctx.scope_clause(properties))
        )
    return {"message": "Property deleted successfully"}
