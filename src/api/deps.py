"""Request-scoped dependencies for FastAPI routes."""
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from core.db import SessionLocal
from services.notification import NotificationService
from services.storage import UploadStorage


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a database session.

    The session commits when the route returns and rolls back if it raises,
    so every request is one unit of work.

    Yields:
        SQLAlchemy Session instance.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_readonly_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a session which never commits.

    Yields:
        SQLAlchemy Session instance (read-only mode).
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


def get_storage() -> UploadStorage:
    """Upload storage rooted at UPLOAD_DIR."""
    return UploadStorage()


def get_notifier() -> NotificationService:
    """Admin email notifier."""
    return NotificationService()


def client_ip(request: Request) -> Optional[str]:
    """Client address for the activity log, honouring X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


__all__ = ["get_db", "get_readonly_db", "get_storage", "get_notifier", "client_ip"]
