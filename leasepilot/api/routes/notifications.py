"""Notifications - in-app notices for the manager's scope."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import insert, select, update

from leasepilot.auth import AuthContext, Role, get_database, require_role
from leasepilot.core.utils import row_to_dict, rows_to_dicts, utc_now
from leasepilot.storage.database import Database
from leasepilot.storage.schema import notifications

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

manager = require_role(Role.MANAGER)


class NotificationIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    message: str | None = None
    type: str = "info"


@router.get("")
def list_notifications(
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        rows = conn.execute(
            select(notifications)
            .where(ctx.scope_clause(notifications))
            .order_by(notifications.c.created_at.desc(), notifications.c.id.desc())
        )
        return rows_to_dicts(rows)


@router.post("", status_code=201)
def create_notification(
    data: NotificationIn,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        row = conn.execute(
            insert(notifications)
            .values(**ctx.owner_values(), **data.model_dump(), read=False, created_at=utc_now())
            .returning(*notifications.c)
        ).first()
    return row_to_dict(row)


@router.patch("/{notification_id}/read")
def mark_read(
    notification_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        row = conn.execute(
            update(notifications)
            .where(notifications.c.id == notification_id, ctx.scope_clause(notifications))
            .values(read=True)
            .returning(*notifications.c)
        ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return row_to_dict(row)
