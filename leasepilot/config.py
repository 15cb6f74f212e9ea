"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

DEV_JWT_SECRET = "dev-jwt-secret-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # ==========================================================================
    # Environment
    # ==========================================================================

    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ==========================================================================
    # API Server
    # ==========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 3000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # ==========================================================================
    # Database
    # ==========================================================================

    # Empty means "not configured": every store-backed route answers 503.
    database_url: str = "sqlite:///./data/leasepilot.db"
    database_pool_timeout: int = 30
    database_echo: bool = False

    # "owner" scopes manager data by user_id, "organization" by organization_id.
    scope_mode: Literal["owner", "organization"] = "owner"

    # ==========================================================================
    # Authentication
    # ==========================================================================

    jwt_secret_key: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 30

    bcrypt_rounds: int = Field(default=12, ge=10, le=16)
    password_min_length: int = 8

    access_cookie_name: str = "access_token"
    refresh_cookie_name: str = "refresh_token"
    refresh_cookie_path: str = "/api/auth"

    demo_email: str = "demo@leasepilot.ai"
    demo_password: str = "demo1234"

    # ==========================================================================
    # SMS (Twilio)
    # ==========================================================================

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""

    # ==========================================================================
    # Uploads
    # ==========================================================================

    upload_dir: str = "./data/uploads"
    upload_url_prefix: str = "/uploads"
    max_upload_bytes: int = 5 * 1024 * 1024

    # ==========================================================================
    # Optional Services
    # ==========================================================================

    sentry_dsn: str = ""

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cookie_secure(self) -> bool:
        """Cookies only travel over HTTPS in production."""
        return self.is_production

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Set the root log format and level once at startup."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
