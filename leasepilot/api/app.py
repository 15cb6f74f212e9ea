"""
FastAPI application for the LeasePilot API.

`create_app()` wires explicit collaborators into `app.state`:

    app.state.settings       Settings
    app.state.database       Database | None   (None → store routes answer 503)
    app.state.token_service  TokenService
    app.state.sms_sender     SmsSender
    app.state.file_storage   FileStorage

Anything not passed in is built from settings at startup.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from leasepilot.api.routes import (
    contractor_portal,
    contractors,
    maintenance,
    messages,
    notifications,
    properties,
    sms,
    tenant_portal,
    tenants,
    transactions,
    users,
)
from leasepilot.auth import auth_router
from leasepilot.auth.errors import AuthError, ConfigurationError
from leasepilot.auth.jwt import TokenService
from leasepilot.auth.policies import get_app_settings
from leasepilot.auth.routes import clear_session_cookies
from leasepilot.config import Settings, configure_logging, get_settings
from leasepilot.integrations.sentry import init_sentry
from leasepilot.integrations.sms import SmsSender, TwilioSmsSender
from leasepilot.storage import Database, FileStorage, LocalFileStorage, open_database

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    sms_sender: SmsSender | None = None,
    file_storage: FileStorage | None = None,
) -> FastAPI:
    """
    Build the API.

    Args:
        settings: defaults to the cached environment settings
        database: an open Database; when omitted, one is opened from
            `settings.database_url` at startup
        sms_sender: defaults to Twilio over HTTP
        file_storage: defaults to the local upload directory
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup app resources."""
        init_sentry(settings)

        owned = None
        if app.state.database is None:
            owned = open_database(
                settings.database_url,
                pool_timeout=settings.database_pool_timeout,
                echo=settings.database_echo,
            )
            app.state.database = owned
        if app.state.sms_sender is None:
            app.state.sms_sender = TwilioSmsSender.from_settings(settings)
        if app.state.file_storage is None:
            app.state.file_storage = LocalFileStorage(settings.upload_dir, settings.upload_url_prefix)

        logger.info(
            "LeasePilot API starting in %s mode (scope: %s)",
            settings.environment,
            settings.scope_mode,
        )
        yield

        if owned is not None:
            owned.dispose()
        logger.info("LeasePilot API shutting down")

    app = FastAPI(
        title="LeasePilot API",
        description="Property management backend: portfolio, tenants, maintenance, messaging",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.token_service = TokenService(settings)
    app.state.sms_sender = sms_sender
    app.state.file_storage = file_storage

    # CORS (credentials: the session rides in cookies)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app, settings)

    # Routers
    app.include_router(auth_router)
    for module in (
        users,
        properties,
        tenants,
        contractors,
        transactions,
        maintenance,
        messages,
        sms,
        notifications,
        tenant_portal,
        contractor_portal,
    ):
        app.include_router(module.router)

    @app.get("/api/health")
    def health(request: Request, app_settings: Settings = Depends(get_app_settings)):
        """Health check endpoint. Never requires auth."""
        db = request.app.state.database
        return {
            "status": "healthy",
            "service": "leasepilot-api",
            "environment": app_settings.environment,
            "database": "connected" if db is not None and db.check_connection() else "unavailable",
        }

    app.mount(
        settings.upload_url_prefix,
        StaticFiles(directory=settings.upload_dir, check_dir=False),
        name="uploads",
    )

    return app


# =============================================================================
# Error handling
# =============================================================================


def _register_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Every error leaves as {"detail": ...}; internals stay in the logs."""

    def _log_denied(request: Request, status_code: int, detail) -> None:
        if status_code in (401, 403) or status_code >= 500:
            logger.warning("HTTP %s %s %s - %s", status_code, request.method, request.url.path, detail)

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        _log_denied(request, exc.status_code, exc.detail)
        response = JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
        if exc.clear_cookies:
            clear_session_cookies(response, settings)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def handle_http(request: Request, exc: StarletteHTTPException):
        _log_denied(request, exc.status_code, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration(request: Request, exc: ConfigurationError):
        logger.error("Configuration error at %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error at %s %s", request.method, request.url.path, exc_info=exc)
        detail = "Internal server error"
        if not settings.is_production:
            detail = f"{detail} ({type(exc).__name__})"
        return JSONResponse(status_code=500, content={"detail": detail})


def build_app() -> FastAPI:
    """Entry point for `uvicorn leasepilot.api.app:app`."""
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings)


app = build_app()
