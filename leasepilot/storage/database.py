"""
Database handle.

One explicitly constructed `Database` wraps the SQLAlchemy engine and is
handed to the app at startup (`app.state.database`). Routes receive it
through `Depends(get_database)`; nothing reaches for a module-level pool.

Usage:
    db = Database("sqlite:///./data/leasepilot.db")
    db.create_all()

    with db.begin() as conn:          # one transaction, committed on exit
        conn.execute(insert(users).values(...))

    with db.connect() as conn:        # read-only work
        conn.execute(select(users)).first()
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from leasepilot.storage.schema import metadata

logger = logging.getLogger(__name__)


class Database:
    """Connection source for every request; owns the engine and its pool."""

    def __init__(self, url: str, pool_timeout: int = 30, echo: bool = False):
        self.url = make_url(url)
        self.engine = self._create_engine(pool_timeout, echo)

    def _create_engine(self, pool_timeout: int, echo: bool) -> Engine:
        if self.url.get_backend_name() != "sqlite":
            return create_engine(
                self.url,
                pool_size=5,
                max_overflow=10,
                pool_timeout=pool_timeout,
                pool_recycle=1800,
                pool_pre_ping=True,
                echo=echo,
            )

        # Threadpool handlers share SQLite connections across threads.
        kwargs: dict = {"connect_args": {"check_same_thread": False}, "echo": echo}
        if self.url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(self.url.database).parent.mkdir(parents=True, exist_ok=True)

        engine = create_engine(self.url, **kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    # =========================================================================
    # Connections
    # =========================================================================

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """A connection for reads; nothing is committed."""
        with self.engine.connect() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """A connection inside one transaction; rolled back on error."""
        with self.engine.begin() as conn:
            yield conn

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_all(self) -> None:
        """Create missing tables. Existing tables are left untouched."""
        metadata.create_all(self.engine)

    def check_connection(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("Database connection failed: %s", e)
            return False

    def dispose(self) -> None:
        self.engine.dispose()

    def __repr__(self) -> str:
        return f"Database({self.url.render_as_string(hide_password=True)!r})"


def open_database(url: str, pool_timeout: int = 30, echo: bool = False) -> Database | None:
    """
    Build and initialize the database for app startup.

    Returns None when no URL is configured or the database is unreachable;
    the API then answers 503 on every store-backed route.
    """
    if not url:
        logger.warning("DATABASE_URL not set - store-backed routes will return 503")
        return None

    database = Database(url, pool_timeout=pool_timeout, echo=echo)
    if not database.check_connection():
        database.dispose()
        return None

    try:
        database.create_all()
    except SQLAlchemyError:
        logger.exception("Schema initialization failed - store-backed routes will return 503")
        database.dispose()
        return None

    logger.info("Database ready: %r", database)
    return database
