"""
Core module - shared helpers used across the API.

This module contains:
- utils: ids, timestamps, row conversion, text/phone normalization
"""

from leasepilot.core.utils import (
    generate_id,
    utc_now,
    normalize_email,
    row_to_dict,
    rows_to_dicts,
    clean_str,
    to_e164,
)

__all__ = [
    "generate_id",
    "utc_now",
    "normalize_email",
    "row_to_dict",
    "rows_to_dicts",
    "clean_str",
    "to_e164",
]
