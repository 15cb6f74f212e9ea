"""Account self-service: profile, password, avatar, deletion."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from pydantic import BaseModel, EmailStr, Field
from starlette.concurrency import run_in_threadpool

from leasepilot.api.dependencies import get_file_storage, read_image_upload
from leasepilot.auth import AuthContext, get_database, require_auth
from leasepilot.auth.accounts import (
    change_password,
    delete_account,
    get_account_by_id,
    public_profile,
    set_avatar,
    update_profile,
)
from leasepilot.auth.jwt import TokenService
from leasepilot.auth.policies import get_app_settings, get_token_service
from leasepilot.auth.routes import clear_session_cookies
from leasepilot.config import Settings
from leasepilot.core.utils import generate_id
from leasepilot.storage.database import Database
from leasepilot.storage.files import FileStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

authenticated = require_auth()


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None


class PasswordChange(BaseModel):
    current_password: str = Field(max_length=256)
    new_password: str = Field(max_length=256)


def _account_or_404(conn, account_id: int) -> dict:
    account = get_account_by_id(conn, account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="User not found")
    return account


@router.get("/me")
def get_me(
    ctx: AuthContext = Depends(authenticated),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        return public_profile(_account_or_404(conn, ctx.account_id))


@router.put("/me")
def update_me(
    data: ProfileUpdate,
    ctx: AuthContext = Depends(authenticated),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        account = update_profile(conn, ctx.account_id, name=data.name, email=data.email)
    if account is None:
        raise HTTPException(status_code=404, detail="User not found")
    return public_profile(account)


@router.put("/me/password")
def change_my_password(
    data: PasswordChange,
    ctx: AuthContext = Depends(authenticated),
    database: Database = Depends(get_database),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
):
    """Change password and sign out every other session."""
    with database.begin() as conn:
        change_password(
            conn,
            ctx.account_id,
            data.current_password,
            data.new_password,
            rounds=settings.bcrypt_rounds,
            min_length=settings.password_min_length,
        )
        revoked = tokens.revoke_all_refresh_tokens(conn, ctx.account_id)
    logger.info("Revoked %s refresh tokens for account %s", revoked, ctx.account_id)
    return {"message": "Password updated successfully"}


@router.delete("/me")
def delete_me(
    response: Response,
    ctx: AuthContext = Depends(authenticated),
    database: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    with database.begin() as conn:
        if not delete_account(conn, ctx.account_id):
            raise HTTPException(status_code=404, detail="User not found")
    clear_session_cookies(response, settings)
    return {"message": "Account deleted successfully"}


@router.post("/me/avatar")
async def upload_avatar(
    file: UploadFile = File(...),
    ctx: AuthContext = Depends(authenticated),
    database: Database = Depends(get_database),
    storage: FileStorage = Depends(get_file_storage),
    settings: Settings = Depends(get_app_settings),
):
    """Upload a profile image (JPEG, PNG, GIF or WebP, up to the size limit)."""
    limit_mb = settings.max_upload_bytes // (1024 * 1024)
    data, extension = await read_image_upload(
        file, settings.max_upload_bytes, f"Image must be under {limit_mb}MB"
    )

    key = f"avatars/{ctx.account_id}-{generate_id()}.{extension}"
    url = await storage.put(key, data, content_type=file.content_type)

    def save():
        with database.begin() as conn:
            return set_avatar(conn, ctx.account_id, url)

    account = await run_in_threadpool(save)
    if account is None:
        await storage.delete(key)
        raise HTTPException(status_code=404, detail="User not found")
    return public_profile(account)
