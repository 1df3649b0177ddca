"""Custom exceptions for the loop tracker."""
from __future__ import annotations

from typing import Any, Dict, Optional


class LoopTrackerError(Exception):
    """Base exception for all application errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Request Errors
# =============================================================================


class NotFoundError(LoopTrackerError):
    """Raised when a referenced entity does not exist."""

    status_code = 404
    error_code = "not_found"


class ForbiddenError(LoopTrackerError):
    """Raised when the acting user may not perform an operation."""

    status_code = 403
    error_code = "forbidden"


class ValidationError(LoopTrackerError):
    """Raised when input is missing, malformed, or out of range."""

    status_code = 400
    error_code = "validation_error"


class ConflictError(LoopTrackerError):
    """Raised when a write would violate a uniqueness rule."""

    status_code = 409
    error_code = "conflict"


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(LoopTrackerError):
    """Raised when required configuration is missing or invalid."""

    pass


# =============================================================================
# Infrastructure Errors
# =============================================================================


class DatabaseError(LoopTrackerError):
    """Base exception for database-related errors."""

    error_code = "database_error"


class StorageError(LoopTrackerError):
    """Raised when an uploaded file cannot be written or removed."""

    error_code = "storage_error"


class NotificationError(LoopTrackerError):
    """Raised when an outbound notification cannot be delivered."""

    error_code = "notification_error"


__all__ = [
    "LoopTrackerError",
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "ConflictError",
    "ConfigurationError",
    "DatabaseError",
    "StorageError",
    "NotificationError",
]
