"""
Shared route dependencies and scoped lookups.

Manager-owned rows are always fetched through `ctx.scope_clause()`, so a
row outside the caller's scope looks exactly like a missing one (404).
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, UploadFile
from sqlalchemy import Table, select
from sqlalchemy.engine import Connection

from leasepilot.auth.context import AuthContext
from leasepilot.core.utils import row_to_dict
from leasepilot.integrations.sms import SmsSender
from leasepilot.storage.files import FileStorage
from leasepilot.storage.schema import properties


def get_sms_sender(request: Request) -> SmsSender:
    return request.app.state.sms_sender


def get_file_storage(request: Request) -> FileStorage:
    return request.app.state.file_storage


def fetch_scoped(conn: Connection, table: Table, ctx: AuthContext, record_id: int) -> dict[str, Any] | None:
    row = conn.execute(
        select(table).where(table.c.id == record_id, ctx.scope_clause(table))
    ).first()
    return row_to_dict(row) if row else None


def get_scoped_or_404(
    conn: Connection,
    table: Table,
    ctx: AuthContext,
    record_id: int,
    label: str,
) -> dict[str, Any]:
    record = fetch_scoped(conn, table, ctx, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return record


def check_property_in_scope(conn: Connection, ctx: AuthContext, property_id: int | None) -> None:
    """A referenced property must belong to the caller's scope."""
    if property_id is None:
        return
    if fetch_scoped(conn, properties, ctx, property_id) is None:
        raise HTTPException(status_code=400, detail="Property not found")


# =============================================================================
# Image uploads
# =============================================================================

IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


async def read_image_upload(file: UploadFile, max_bytes: int, too_large: str) -> tuple[bytes, str]:
    """Read an uploaded image and return (data, extension), or raise 400."""
    extension = IMAGE_TYPES.get(file.content_type or "")
    if extension is None:
        raise HTTPException(status_code=400, detail="Only images (JPEG, PNG, GIF, WebP) are allowed")

    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise HTTPException(status_code=400, detail=too_large)
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return data, extension
