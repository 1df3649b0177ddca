"""Activity log service for auditing user actions."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from core.logging_config import get_logger
from core.models import ActivityLog
from core.utils import utcnow

LOGGER = get_logger(__name__)

LOOP_ACTIVITY_LIMIT = 100


class ActivityAction:
    """Constants for activity log actions."""
    LOOP_CREATED = "LOOP_CREATED"
    LOOP_UPDATED = "LOOP_UPDATED"
    LOOP_DELETED = "LOOP_DELETED"
    LOOP_ARCHIVED = "LOOP_ARCHIVED"
    LOOP_UNARCHIVED = "LOOP_UNARCHIVED"
    IMAGES_UPLOADED = "IMAGES_UPLOADED"
    IMAGE_DELETED = "IMAGE_DELETED"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENT_DELETED = "DOCUMENT_DELETED"
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_DELETED = "TASK_DELETED"
    COMPLIANCE_REQUESTED = "COMPLIANCE_REQUESTED"
    COMPLIANCE_APPROVED = "COMPLIANCE_APPROVED"
    COMPLIANCE_DENIED = "COMPLIANCE_DENIED"
    ORGANIZATION_CREATED = "ORGANIZATION_CREATED"
    ORGANIZATION_UPDATED = "ORGANIZATION_UPDATED"
    ORGANIZATION_DELETED = "ORGANIZATION_DELETED"
    ORGANIZATION_MEMBER_ADDED = "ORGANIZATION_MEMBER_ADDED"
    ORGANIZATION_MEMBER_REMOVED = "ORGANIZATION_MEMBER_REMOVED"


class ActivityLogService:
    """
    Service for recording and reading the activity log.

    Writes run inside a SAVEPOINT: a failed insert is rolled back on its own
    and logged, leaving the caller's transaction usable.
    """

    def __init__(self, session: Session):
        """Initialize the activity log service."""
        self.session = session

    def log(
        self,
        user_id: Optional[int],
        action: str,
        description: str,
        loop_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> Optional[ActivityLog]:
        """
        Record an action.

        Args:
            user_id: Acting user.
            action: Action name (use ActivityAction constants).
            description: Human-readable summary.
            loop_id: Loop the action concerns, if any.
            metadata: Optional JSON metadata.
            ip_address: Client address of the request.

        Returns:
            The created ActivityLog, or None if it could not be written.
        """
        entry = ActivityLog(
            user_id=user_id,
            action=action,
            description=description,
            loop_id=loop_id,
            event_metadata=metadata or {},
            ip_address=ip_address,
            created_at=utcnow(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(entry)
                self.session.flush()
        except SQLAlchemyError as e:
            LOGGER.error(f"Failed to record activity {action}: {e}")
            return None

        LOGGER.debug(f"Recorded activity {action} by user {user_id}")
        return entry

    def get_loop_activity(
        self,
        loop_id: int,
        limit: int = LOOP_ACTIVITY_LIMIT,
    ) -> List[ActivityLog]:
        """Most recent activity for a loop, newest first."""
        stmt = (
            select(ActivityLog)
            .options(selectinload(ActivityLog.user))
            .where(ActivityLog.loop_id == loop_id)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))


__all__ = ["ActivityAction", "ActivityLogService", "LOOP_ACTIVITY_LIMIT"]
