"""Core module exports."""
from __future__ import annotations

from core.config import Settings, get_settings, reload_settings
from core.db import Base, SessionLocal, get_session, init_db, validate_database
from core.exceptions import (
    # Base
    LoopTrackerError,
    # Request
    NotFoundError,
    ForbiddenError,
    ValidationError,
    ConflictError,
    # Configuration
    ConfigurationError,
    # Infrastructure
    DatabaseError,
    StorageError,
    NotificationError,
)
from core.logging_config import (
    setup_logging,
    get_logger,
    get_context_logger,
    log_external_call,
    JSONFormatter,
    ContextLogger,
)
from core.models import (
    ActivityLog,
    ComplianceStatus,
    Loop,
    LoopDocument,
    LoopStatus,
    LoopTask,
    Organization,
    User,
    UserOrganization,
    UserRole,
)
from core.types import LoopStats

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reload_settings",
    # Database
    "get_session",
    "init_db",
    "validate_database",
    "SessionLocal",
    "Base",
    # Models
    "User",
    "UserRole",
    "Loop",
    "LoopStatus",
    "ComplianceStatus",
    "LoopTask",
    "LoopDocument",
    "Organization",
    "UserOrganization",
    "ActivityLog",
    "LoopStats",
    # Exceptions
    "LoopTrackerError",
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "ConflictError",
    "ConfigurationError",
    "DatabaseError",
    "StorageError",
    "NotificationError",
    # Logging
    "setup_logging",
    "get_logger",
    "get_context_logger",
    "log_external_call",
    "JSONFormatter",
    "ContextLogger",
]
