"""
Auth error taxonomy.

Expected token and scope failures are *returned* as enums (see
leasepilot.auth.jwt.TokenFailure and leasepilot.auth.context.ScopeFailure).
The exceptions below are raised by the session lifecycle and the guard,
and rendered by one app-level handler as {"detail": ...}.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base for errors that map directly to an HTTP status."""

    status_code: int = 400
    default_detail: str = "Request failed"

    def __init__(self, detail: str | None = None, clear_cookies: bool = False):
        self.detail = detail or self.default_detail
        # Session cookies are dropped from the error response (dead refresh token).
        self.clear_cookies = clear_cookies
        super().__init__(self.detail)


class DuplicateAccount(AuthError):
    status_code = 400
    default_detail = "An account with this email already exists"


class WeakPassword(AuthError):
    status_code = 400
    default_detail = "Password is too weak"


class InvalidCredentials(AuthError):
    status_code = 401
    default_detail = "Invalid email or password"


class InvalidRefreshToken(AuthError):
    status_code = 401
    default_detail = "Invalid or expired refresh token, please log in again"


class RoleMismatch(AuthError):
    status_code = 403
    default_detail = "You do not have access to this resource"


class StoreUnavailable(AuthError):
    status_code = 503
    default_detail = "Service unavailable: database not configured or unreachable"


class PortalLinkConflict(AuthError):
    """A portal invite cannot link the requested account to the record."""

    status_code = 400
    default_detail = "This record already has a portal account"


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration (e.g. no signing key). Surfaces as a generic 500."""
