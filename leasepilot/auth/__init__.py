"""
Authorization system - sessions, scope and route guards.

Design principles:
1. One guard dependency per route (`require_role`, `require_auth`)
2. Role decides the scope kind, scope decides the rows
3. Expected failures are returned as enums, not raised
4. Handlers never compare raw role strings
"""

from leasepilot.auth.context import AuthContext, ScopeFailure, ScopeKind, resolve_auth_context
from leasepilot.auth.policies import (
    get_database,
    require_auth,
    require_capability,
    require_role,
)
from leasepilot.auth.capabilities import Capability, Role
from leasepilot.auth.jwt import (
    RotatedTokens,
    TokenFailure,
    TokenPayload,
    TokenService,
    hash_password,
    verify_password,
)
from leasepilot.auth.routes import router as auth_router

__all__ = [
    # Main interface
    "require_auth",
    "require_role",
    "require_capability",
    "get_database",
    "AuthContext",
    "resolve_auth_context",
    # Types
    "Capability",
    "Role",
    "ScopeKind",
    "ScopeFailure",
    # Tokens
    "TokenService",
    "TokenPayload",
    "TokenFailure",
    "RotatedTokens",
    "hash_password",
    "verify_password",
    # Router
    "auth_router",
]
