# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   POST /api/auth/register - Create a manager account, start a session
#   POST /api/auth/login    - Start a session
#   POST /api/auth/demo     - Demo manager session (development only)
#   POST /api/auth/refresh  - Rotate the refresh token, new access token
#   POST /api/auth/logout   - Revoke the refresh token, clear cookies
#   GET  /api/auth/verify   - Current user + resolved scope
#
# Session transport is cookies (HTTP-only). Tokens are also returned in the
# body for API clients that send `Authorization: Bearer <access>`.
#
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.engine import Connection

from leasepilot.auth.accounts import (
    authenticate,
    create_account,
    get_account_by_email,
    get_account_by_id,
    public_profile,
)
from leasepilot.auth.capabilities import Role, permission_map
from leasepilot.auth.context import AuthContext
from leasepilot.auth.errors import InvalidRefreshToken
from leasepilot.auth.jwt import TokenService
from leasepilot.auth.policies import get_app_settings, get_database, get_token_service, require_auth
from leasepilot.config import Settings
from leasepilot.storage.database import Database

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# =============================================================================
# Request/Response Models
# =============================================================================

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(max_length=256)
    name: str = Field(min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(max_length=256)


class RefreshRequest(BaseModel):
    refresh_token: str | None = None


class SessionResponse(BaseModel):
    user: dict[str, Any]
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


# =============================================================================
# Cookies
# =============================================================================

def set_session_cookies(response: Response, settings: Settings, access_token: str, refresh_token: str) -> None:
    response.set_cookie(
        settings.access_cookie_name,
        access_token,
        max_age=settings.jwt_access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        refresh_token,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path=settings.refresh_cookie_path,
    )


def clear_session_cookies(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.access_cookie_name,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    response.delete_cookie(
        settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _presented_refresh_token(request: Request, data: RefreshRequest | None, settings: Settings) -> str | None:
    """Cookie first, JSON body as fallback."""
    token = request.cookies.get(settings.refresh_cookie_name)
    if not token and data is not None:
        token = data.refresh_token
    return token or None


def _start_session(
    conn: Connection,
    tokens: TokenService,
    settings: Settings,
    response: Response,
    account: dict[str, Any],
) -> SessionResponse:
    """Issue both tokens inside the caller's transaction."""
    # Access token first: a bad signing key fails before any write commits.
    access_token = tokens.issue_access_token(account["id"])
    refresh_token = tokens.issue_refresh_token(conn, account["id"])
    set_session_cookies(response, settings, access_token, refresh_token)
    return SessionResponse(
        user=public_profile(account),
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


# =============================================================================
# Public Endpoints
# =============================================================================

@router.post("/register", response_model=SessionResponse, status_code=201)
def register(
    data: RegisterRequest,
    response: Response,
    database: Database = Depends(get_database),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
):
    """
    Create a manager account.

    Sets the session cookies and returns the public profile.
    """
    with database.begin() as conn:
        account = create_account(
            conn,
            email=data.email,
            password=data.password,
            name=data.name,
            role=Role.MANAGER,
            rounds=settings.bcrypt_rounds,
            min_length=settings.password_min_length,
            scope_mode=settings.scope_mode,
        )
        return _start_session(conn, tokens, settings, response, account)


@router.post("/login", response_model=SessionResponse)
def login(
    data: LoginRequest,
    response: Response,
    database: Database = Depends(get_database),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
):
    """Authenticate and start a session."""
    with database.begin() as conn:
        account = authenticate(
            conn,
            data.email,
            data.password,
            explain=not settings.is_production,
            rounds=settings.bcrypt_rounds,
        )
        logger.info("Account %s logged in", account["id"])
        return _start_session(conn, tokens, settings, response, account)


@router.post("/demo", response_model=SessionResponse)
def demo_login(
    response: Response,
    database: Database = Depends(get_database),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
):
    """Sign in as the demo manager, creating it on first use. Development only."""
    if settings.is_production:
        raise HTTPException(status_code=404, detail="Not Found")

    with database.begin() as conn:
        account = get_account_by_email(conn, settings.demo_email)
        if account is None:
            account = create_account(
                conn,
                email=settings.demo_email,
                password=settings.demo_password,
                name="Demo Manager",
                role=Role.MANAGER,
                rounds=settings.bcrypt_rounds,
                min_length=settings.password_min_length,
                scope_mode=settings.scope_mode,
            )
        return _start_session(conn, tokens, settings, response, account)


@router.post("/refresh", response_model=SessionResponse)
def refresh(
    request: Request,
    response: Response,
    data: RefreshRequest | None = Body(default=None),
    database: Database = Depends(get_database),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
):
    """
    Exchange the refresh token for a new pair.

    The presented token is consumed; replaying it fails with 401.
    """
    presented = _presented_refresh_token(request, data, settings)

    rotated = None
    account = None
    if presented:
        with database.begin() as conn:
            rotated = tokens.rotate_refresh_token(conn, presented)
            if rotated is not None:
                account = get_account_by_id(conn, rotated.account_id)

    if rotated is None or account is None:
        raise InvalidRefreshToken(clear_cookies=True)

    set_session_cookies(response, settings, rotated.access_token, rotated.refresh_token)
    return SessionResponse(
        user=public_profile(account),
        access_token=rotated.access_token,
        refresh_token=rotated.refresh_token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    data: RefreshRequest | None = Body(default=None),
    database: Database = Depends(get_database),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
):
    """Revoke the refresh token (if any) and clear cookies. Always succeeds."""
    presented = _presented_refresh_token(request, data, settings)
    if presented:
        with database.begin() as conn:
            tokens.revoke_refresh_token(conn, presented)
    clear_session_cookies(response, settings)
    return {"ok": True}


# =============================================================================
# Protected Endpoints
# =============================================================================

@router.get("/verify")
def verify(
    ctx: AuthContext = Depends(require_auth()),
    database: Database = Depends(get_database),
):
    """Who am I, and what can I see? The frontend routes by `user.role`."""
    with database.connect() as conn:
        account = get_account_by_id(conn, ctx.account_id)
    if account is None:
        raise HTTPException(status_code=401, detail="User not found")
    return {
        "user": public_profile(account),
        "scope": ctx.to_dict(),
        "permissions": permission_map(ctx.role),
    }
