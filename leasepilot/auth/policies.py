"""
Policies - the access guard for route handlers.

Just use: `ctx: AuthContext = Depends(require_role(Role.MANAGER))`

Every guarded request walks the same steps, in order:
1. Store check     - no database configured → 503 (before any token work)
2. Authentication  - no access token (cookie or bearer) → 401
3. Verification    - TokenFailure → 401 with a failure-specific detail
4. Scope           - ScopeFailure → 401 (account gone) or 403
5. Role/capability - not allowed → 403 (RoleMismatch)

The resolved AuthContext is cached on `request.state` so several guards on
one request resolve it once. It never outlives the request.

The dependencies are plain `def` functions: they hit the database, so
FastAPI runs them in its threadpool.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from leasepilot.auth.capabilities import Capability, Role
from leasepilot.auth.context import AuthContext, ScopeFailure, resolve_auth_context
from leasepilot.auth.errors import RoleMismatch, StoreUnavailable
from leasepilot.auth.jwt import TokenFailure, TokenService
from leasepilot.config import Settings, get_settings
from leasepilot.integrations.sentry import set_user
from leasepilot.storage.database import Database

logger = logging.getLogger(__name__)


# Optional bearer (doesn't fail if no header; cookies are the default transport)
optional_bearer = HTTPBearer(auto_error=False)

_CONTEXT_ATTR = "auth_context"


# =============================================================================
# App-level collaborators
# =============================================================================


def get_app_settings(request: Request) -> Settings:
    """Settings the app was built with (falls back to the cached env settings)."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_database(request: Request) -> Database:
    """The injected Database handle; 503 when the store is not configured."""
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise StoreUnavailable()
    return database


def get_token_service(request: Request) -> TokenService:
    service = getattr(request.app.state, "token_service", None)
    if service is None:
        service = TokenService(get_app_settings(request))
        request.app.state.token_service = service
    return service


# =============================================================================
# Token extraction
# =============================================================================


def extract_access_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
) -> str | None:
    """An explicit Authorization header wins over the cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials
    settings = get_app_settings(request)
    return request.cookies.get(settings.access_cookie_name) or None


def _unauthenticated(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _authenticate(
    request: Request,
    database: Database,
    credentials: HTTPAuthorizationCredentials | None,
) -> AuthContext:
    token = extract_access_token(request, credentials)
    if not token:
        raise _unauthenticated("Not authenticated")

    result = get_token_service(request).verify_access_token(token)
    if isinstance(result, TokenFailure):
        logger.debug("Rejected access token: %s", result.value)
        raise _unauthenticated(result.message)

    settings = get_app_settings(request)
    with database.connect() as conn:
        resolved = resolve_auth_context(conn, result.sub, settings.scope_mode)

    if isinstance(resolved, ScopeFailure):
        logger.info("Scope resolution failed for account %s: %s", result.sub, resolved.value)
        if resolved.status_code == 401:
            raise _unauthenticated(resolved.message)
        raise HTTPException(status_code=resolved.status_code, detail=resolved.message)

    return resolved


# =============================================================================
# Main Interface
# =============================================================================


def _create_dependency(
    roles: frozenset[Role] = frozenset(),
    capabilities: tuple[Capability, ...] = (),
) -> Callable[..., AuthContext]:
    """Build a FastAPI dependency that resolves to a checked AuthContext."""

    def dependency(
        request: Request,
        database: Database = Depends(get_database),
        credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
    ) -> AuthContext:
        ctx = getattr(request.state, _CONTEXT_ATTR, None)
        if ctx is None:
            ctx = _authenticate(request, database, credentials)
            setattr(request.state, _CONTEXT_ATTR, ctx)
            set_user(ctx.account_id, ctx.role.value)

        if roles and ctx.role not in roles:
            raise RoleMismatch()
        for capability in capabilities:
            ctx.require(capability)
        return ctx

    return dependency


def require_auth() -> Callable[..., AuthContext]:
    """Any authenticated account with a resolvable scope."""
    return _create_dependency()


def require_role(*roles: Role) -> Callable[..., AuthContext]:
    """
    Require one of the given roles.

    Usage:
        @router.get("/properties")
        def list_properties(ctx: AuthContext = Depends(require_role(Role.MANAGER))):
            ...
    """
    return _create_dependency(roles=frozenset(roles))


def require_capability(*capabilities: Capability | str) -> Callable[..., AuthContext]:
    """Require ALL of the listed capabilities."""
    return _create_dependency(capabilities=tuple(Capability(c) for c in capabilities))
