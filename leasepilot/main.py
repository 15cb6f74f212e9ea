"""
LeasePilot API - entry point.

    leasepilot            # serve on API_HOST:API_PORT
    leasepilot --reload   # development auto-reload
    leasepilot --init-db  # create tables and exit
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from leasepilot.config import configure_logging, get_settings
from leasepilot.storage import open_database

logger = logging.getLogger(__name__)


def init_db() -> int:
    """Create any missing tables in the configured database."""
    settings = get_settings()
    database = open_database(settings.database_url, echo=settings.database_echo)
    if database is None:
        logger.error("DATABASE_URL is not set")
        return 1
    database.create_all()
    database.dispose()
    logger.info("Tables ready at %r", database)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the LeasePilot API")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    parser.add_argument("--init-db", action="store_true", help="Create tables and exit")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings)

    if args.init_db:
        return init_db()

    uvicorn.run(
        "leasepilot.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
