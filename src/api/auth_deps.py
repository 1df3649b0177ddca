"""Authentication dependencies for FastAPI routes."""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from api.deps import get_db
from core.auth import decode_access_token
from core.exceptions import ForbiddenError
from core.logging_config import get_logger
from core.models import User
from core.utils import utcnow

LOGGER = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Validate the bearer token and return the acting user.

    Suspended users are refused. Each authenticated request bumps the
    user's last_active timestamp.

    Raises 401 if the token is missing, invalid, or the user is unknown.
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid or expired token")

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid or expired token")

    user = db.get(User, user_id)
    if user is None or user.suspended:
        raise _unauthorized("User not found or suspended")

    user.last_active = utcnow()
    db.flush()
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require the current user to have the admin role."""
    if not current_user.is_admin:
        LOGGER.warning(f"User {current_user.id} refused admin-only route")
        raise ForbiddenError("Admin access required")
    return current_user


__all__ = ["get_current_user", "require_admin", "security"]
