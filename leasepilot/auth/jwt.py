# =============================================================================
# Token Service
# =============================================================================
#
# Sessions are a pair of credentials:
#   - access token: signed JWT, short-lived (15 min), verified without storage
#   - refresh token: opaque random string, persisted (30 days), single-use
#
# Refresh tokens rotate: exchanging one deletes its record and inserts a new
# one in the same transaction, so a replayed (already used) token is rejected.
#
# Verification never raises for bad input. It returns a TokenFailure and the
# caller decides what to do with it.
#
# =============================================================================

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import bcrypt
import jwt
from pydantic import BaseModel
from sqlalchemy import delete, insert, select
from sqlalchemy.engine import Connection

from leasepilot.auth.errors import ConfigurationError
from leasepilot.config import DEV_JWT_SECRET, Settings
from leasepilot.core.utils import generate_id, utc_now
from leasepilot.storage.schema import refresh_tokens

logger = logging.getLogger(__name__)


# =============================================================================
# Models
# =============================================================================

class TokenPayload(BaseModel):
    """Verified access token claims."""
    sub: int  # account id
    exp: datetime
    iat: datetime
    type: str
    jti: str
    extra: dict[str, Any] = {}


class TokenFailure(str, Enum):
    """Why a token was rejected. All of these mean "unauthenticated"."""

    INVALID = "invalid"      # bad signature, wrong type, missing claims
    EXPIRED = "expired"      # signature fine, past exp
    MALFORMED = "malformed"  # not a JWT at all

    @property
    def message(self) -> str:
        return {
            TokenFailure.INVALID: "Invalid token",
            TokenFailure.EXPIRED: "Token expired",
            TokenFailure.MALFORMED: "Malformed token",
        }[self]


@dataclass(frozen=True)
class RotatedTokens:
    """Result of a successful refresh-token exchange."""
    account_id: int
    access_token: str
    refresh_token: str


_RESERVED_CLAIMS = {"sub", "exp", "iat", "type", "jti"}


# =============================================================================
# Password Hashing
# =============================================================================

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt (salted, cost factor `rounds`)."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except (ValueError, AttributeError):
        return False


def _digest(token: str) -> str:
    """Refresh tokens are stored as SHA-256 digests, never in clear."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# =============================================================================
# Token Service
# =============================================================================

class TokenService:
    """
    Issues and verifies session credentials.

    One instance per app, built from settings. Methods that touch refresh
    records take the caller's Connection so they join its transaction.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.jwt_access_token_expire_minutes)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_expire_days)

    def _signing_key(self) -> str:
        key = self.settings.jwt_secret_key
        if not key:
            raise ConfigurationError("JWT_SECRET_KEY is not set")
        if self.settings.is_production and key == DEV_JWT_SECRET:
            raise ConfigurationError("JWT_SECRET_KEY still uses the development default")
        return key

    # -------------------------------------------------------------------------
    # Access tokens
    # -------------------------------------------------------------------------

    def issue_access_token(
        self,
        account_id: int,
        claims: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> str:
        """Create a signed access token for an account."""
        now = now or utc_now()
        extra = {k: v for k, v in (claims or {}).items() if k not in _RESERVED_CLAIMS}
        payload = {
            "sub": str(account_id),
            "exp": now + self.access_ttl,
            "iat": now,
            "type": "access",
            "jti": generate_id("tok"),
            **extra,
        }
        return jwt.encode(payload, self._signing_key(), algorithm=self.settings.jwt_algorithm)

    def verify_access_token(self, token: str) -> TokenPayload | TokenFailure:
        """
        Decode and validate an access token.

        Returns:
            TokenPayload on success, otherwise the TokenFailure explaining why.
        """
        key = self._signing_key()
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[self.settings.jwt_algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            return TokenFailure.EXPIRED
        except jwt.InvalidSignatureError:
            return TokenFailure.INVALID
        except jwt.DecodeError:
            return TokenFailure.MALFORMED
        except jwt.InvalidTokenError:
            return TokenFailure.INVALID

        if payload.get("type") != "access":
            return TokenFailure.INVALID
        try:
            account_id = int(payload["sub"])
        except (TypeError, ValueError):
            return TokenFailure.INVALID

        return TokenPayload(
            sub=account_id,
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            type=payload["type"],
            jti=payload.get("jti", ""),
            extra={k: v for k, v in payload.items() if k not in _RESERVED_CLAIMS},
        )

    # -------------------------------------------------------------------------
    # Refresh tokens
    # -------------------------------------------------------------------------

    def issue_refresh_token(self, conn: Connection, account_id: int) -> str:
        """Persist a new refresh token for the account and return it."""
        now = utc_now()
        token = secrets.token_urlsafe(48)

        # Expired records for this account are dead weight; drop them here.
        conn.execute(
            delete(refresh_tokens).where(
                refresh_tokens.c.user_id == account_id,
                refresh_tokens.c.expires_at <= now,
            )
        )
        conn.execute(
            insert(refresh_tokens).values(
                user_id=account_id,
                token=_digest(token),
                expires_at=now + self.refresh_ttl,
                created_at=now,
            )
        )
        return token

    def rotate_refresh_token(self, conn: Connection, old_token: str) -> RotatedTokens | None:
        """
        Exchange a refresh token for a new access + refresh pair.

        Must run inside a transaction (Database.begin()): the delete of the
        old record and the insert of the new one commit together. Returns
        None when the token is unknown, already used, or expired.
        """
        if not old_token:
            return None

        row = conn.execute(
            select(refresh_tokens.c.id, refresh_tokens.c.user_id).where(
                refresh_tokens.c.token == _digest(old_token),
                refresh_tokens.c.expires_at > utc_now(),
            )
        ).first()
        if row is None:
            return None

        # A concurrent exchange of the same token deletes zero rows here.
        deleted = conn.execute(delete(refresh_tokens).where(refresh_tokens.c.id == row.id))
        if deleted.rowcount != 1:
            return None

        return RotatedTokens(
            account_id=row.user_id,
            access_token=self.issue_access_token(row.user_id),
            refresh_token=self.issue_refresh_token(conn, row.user_id),
        )

    def revoke_refresh_token(self, conn: Connection, token: str) -> bool:
        """Delete a refresh record. Unknown tokens are not an error."""
        if not token:
            return False
        result = conn.execute(delete(refresh_tokens).where(refresh_tokens.c.token == _digest(token)))
        return result.rowcount > 0

    def revoke_all_refresh_tokens(self, conn: Connection, account_id: int) -> int:
        """Sign the account out everywhere (password change)."""
        result = conn.execute(delete(refresh_tokens).where(refresh_tokens.c.user_id == account_id))
        return result.rowcount
