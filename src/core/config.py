"""Configuration management for the loop tracker.

All configuration is loaded from environment variables and/or .env file.
Feature flags default to False (disabled) when not set.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root detection
PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = PROJECT_ROOT / ".env"

DATABASE_FILE = PROJECT_ROOT / "loop_tracker.db"
ABSOLUTE_DATABASE_URL = f"sqlite:///{DATABASE_FILE.as_posix()}"

DEFAULT_JWT_SECRET = "dev-secret-change-me"


def _resolve_database_url(url: str) -> str:
    """
    Convert relative SQLite paths to absolute paths based on PROJECT_ROOT.

    This prevents issues when the app is started from different working directories.
    """
    if not url.startswith("sqlite:///"):
        return url

    path_part = url.replace("sqlite:///", "")

    if path_part.startswith("./") or (not path_part.startswith("/") and ":" not in path_part):
        if path_part.startswith("./"):
            path_part = path_part[2:]

        absolute_path = PROJECT_ROOT / path_part
        return f"sqlite:///{absolute_path.as_posix()}"

    return url


def _resolve_path(value: str) -> str:
    """Resolve a relative filesystem path against PROJECT_ROOT."""
    path = Path(value)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return path.as_posix()


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Runtime configuration powered by environment variables and .env overrides.

    All settings can be configured via:
    1. Environment variables (highest priority)
    2. .env file in project root (loaded automatically)
    3. Default values (lowest priority)

    Feature flags (ENABLE_*) default to False for safety.
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILE if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default=ABSOLUTE_DATABASE_URL,
        alias="DATABASE_URL",
        description="SQLAlchemy connection string.",
    )
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE", ge=1)
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW", ge=0)
    db_pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT", ge=1)

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------
    jwt_secret_key: str = Field(default=DEFAULT_JWT_SECRET, alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_access_token_expire_minutes: int = Field(
        default=60 * 24, alias="JWT_ACCESS_TOKEN_EXPIRE_MINUTES", ge=1
    )

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="ALLOWED_ORIGINS",
        description="Comma-separated list of CORS origins.",
    )

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------
    upload_dir: str = Field(default="uploads", alias="UPLOAD_DIR")
    max_image_bytes: int = Field(default=5 * 1024 * 1024, alias="MAX_IMAGE_BYTES", ge=1)
    max_images_per_request: int = Field(default=5, alias="MAX_IMAGES_PER_REQUEST", ge=1)
    max_document_bytes: int = Field(default=15 * 1024 * 1024, alias="MAX_DOCUMENT_BYTES", ge=1)
    max_documents_per_request: int = Field(default=10, alias="MAX_DOCUMENTS_PER_REQUEST", ge=1)

    # -------------------------------------------------------------------------
    # Loop Rules
    # -------------------------------------------------------------------------
    closing_soon_days: int = Field(default=3, alias="CLOSING_SOON_DAYS", ge=0)

    # -------------------------------------------------------------------------
    # Email Notifications
    # -------------------------------------------------------------------------
    enable_email_notifications: bool = Field(default=False, alias="ENABLE_EMAIL_NOTIFICATIONS")
    email_api_url: Optional[str] = Field(default=None, alias="EMAIL_API_URL")
    email_api_key: Optional[str] = Field(default=None, alias="EMAIL_API_KEY")
    email_from: str = Field(default="loops@localhost", alias="EMAIL_FROM")
    admin_notification_emails: str = Field(default="", alias="ADMIN_NOTIFICATION_EMAILS")
    email_timeout_seconds: float = Field(default=10.0, alias="EMAIL_TIMEOUT_SECONDS", gt=0)

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    dry_run: bool = Field(default=True, alias="DRY_RUN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="text", alias="LOG_FORMAT")  # "text" or "json"
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE")
    environment: str = Field(default="local", alias="ENVIRONMENT")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Ensure log format is valid."""
        lower = v.lower()
        if lower not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return lower

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Refuse to run production with the development signing key."""
        if self.environment == "production" and self.jwt_secret_key == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET_KEY must be set in production mode")
        return self

    @model_validator(mode="after")
    def resolve_paths(self) -> "Settings":
        """Convert relative SQLite and upload paths to absolute paths."""
        self.database_url = _resolve_database_url(self.database_url)
        self.upload_dir = _resolve_path(self.upload_dir)
        return self

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    def is_email_enabled(self) -> bool:
        """
        Check if email notifications are enabled AND configured.

        Returns True only if:
        - ENABLE_EMAIL_NOTIFICATIONS=true in .env
        - EMAIL_API_URL is set
        - at least one admin recipient is configured
        """
        return (
            self.enable_email_notifications
            and bool(self.email_api_url)
            and bool(self.admin_recipients)
        )

    @property
    def admin_recipients(self) -> List[str]:
        """Admin addresses that receive loop notifications."""
        return _split_csv(self.admin_notification_emails)

    @property
    def cors_origins(self) -> List[str]:
        """Parsed CORS origin list."""
        return _split_csv(self.allowed_origins)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once and cached. To reload settings,
    call `get_settings.cache_clear()` first.

    Returns:
        Settings object with all configuration.
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Clear settings cache and reload from environment.

    Useful for testing or after modifying .env file.
    """
    get_settings.cache_clear()
    return get_settings()
