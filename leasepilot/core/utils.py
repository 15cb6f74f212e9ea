"""
Shared utility functions for the LeasePilot API.

This module contains common utilities used across the codebase.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.engine import Row


def generate_id(prefix: str = "") -> str:
    """
    Generate a unique ID with optional prefix.

    Args:
        prefix: Optional prefix (e.g., "tok", "avatar")

    Returns:
        A unique ID like "tok_a1b2c3d4e5f6"
    """
    uid = str(uuid.uuid4())[:12]
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """Emails are unique case-insensitively; store and compare lowercased."""
    return email.strip().lower()


def row_to_dict(row: Row | None) -> dict[str, Any]:
    """Convert a SQLAlchemy row to a plain dict ({} for None)."""
    if row is None:
        return {}
    return dict(row._mapping)


def rows_to_dicts(rows) -> list[dict[str, Any]]:
    return [dict(r._mapping) for r in rows]


def clean_str(value: Any) -> str | None:
    """Trim a free-text field; blank becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


_NON_DIGITS = re.compile(r"\D")


def to_e164(raw: str) -> str:
    """
    Best-effort E.164 formatting, assuming US numbers when no country code.

        "(555) 123-4567" -> "+15551234567"
        "15551234567"    -> "+15551234567"
    """
    raw = str(raw).strip()
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 10:
        return "+1" + digits
    if len(digits) == 11 and digits[0] == "1":
        return "+" + digits
    if raw.startswith("+"):
        return "+" + digits
    if 10 <= len(digits) <= 15:
        return "+" + digits
    return "+" + raw
