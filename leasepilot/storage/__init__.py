"""
Storage layer.

- Database → SQLAlchemy engine (PostgreSQL in production, SQLite locally)
- FileStorage → uploaded files (local filesystem, S3-compatible later)
"""

from leasepilot.storage.database import Database, open_database
from leasepilot.storage.files import FileStorage, LocalFileStorage

__all__ = [
    "Database",
    "open_database",
    "FileStorage",
    "LocalFileStorage",
]
