"""Loop checklist tasks."""
from __future__ import annotations

from datetime import date
from typing import Any, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError, ValidationError
from core.logging_config import get_logger
from core.models import LoopTask, User
from core.utils import parse_date, utcnow
from domain.loops import LoopService

LOGGER = get_logger(__name__)


def _clean_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Task title is required")
    return title.strip()


def _clean_due_date(value: Any) -> Optional[date]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("due_date must be an ISO date")
    return parsed


class TaskService:
    """Service for a loop's task checklist."""

    def __init__(self, session: Session):
        """Initialize the task service."""
        self.session = session
        self.loops = LoopService(session)

    def list_tasks(self, loop_id: int, actor: User) -> List[LoopTask]:
        """
        Tasks for a loop in checklist order.

        Incomplete tasks come first; within each group tasks are ordered by
        due date with undated tasks last, then newest first.
        """
        self.loops.get_accessible_loop(loop_id, actor)
        stmt = (
            select(LoopTask)
            .where(LoopTask.loop_id == loop_id)
            .order_by(
                LoopTask.completed.asc(),
                LoopTask.due_date.is_(None).asc(),
                LoopTask.due_date.asc(),
                LoopTask.created_at.desc(),
                LoopTask.id.desc(),
            )
        )
        return list(self.session.scalars(stmt))

    def add_task(
        self,
        loop_id: int,
        title: Any,
        actor: User,
        due_date: Any = None,
    ) -> LoopTask:
        """
        Add a task to a loop.

        Args:
            loop_id: Parent loop.
            title: Task title; trimmed and required.
            actor: Owner of the loop or an admin.
            due_date: Optional ISO date.

        Returns:
            The new LoopTask.
        """
        clean_title = _clean_title(title)
        clean_due = _clean_due_date(due_date)
        self.loops.get_accessible_loop(loop_id, actor)

        task = LoopTask(
            loop_id=loop_id,
            title=clean_title,
            due_date=clean_due,
            completed=False,
            created_by=actor.id,
            created_at=utcnow(),
        )
        self.session.add(task)
        self.session.flush()

        LOGGER.debug(f"Added task {task.id} to loop {loop_id}")
        return task

    def get_task(self, loop_id: int, task_id: int, actor: User) -> LoopTask:
        """Fetch a task that belongs to an accessible loop."""
        self.loops.get_accessible_loop(loop_id, actor)
        task = self.session.get(LoopTask, task_id)
        if task is None or task.loop_id != loop_id:
            raise NotFoundError("Task not found")
        return task

    def update_task(
        self,
        loop_id: int,
        task_id: int,
        changes: Mapping[str, Any],
        actor: User,
    ) -> LoopTask:
        """
        Apply a partial update to a task.

        A missing or null value leaves the field as it is. Marking a task
        complete stamps completed_at; reopening it clears the stamp.
        """
        task = self.get_task(loop_id, task_id, actor)

        title: Optional[str] = changes.get("title")
        if title is not None:
            task.title = _clean_title(title)

        due = changes.get("due_date")
        if due is not None:
            task.due_date = _clean_due_date(due)

        completed = changes.get("completed")
        if completed is not None:
            completed = bool(completed)
            if completed and not task.completed:
                task.completed_at = utcnow()
            elif not completed:
                task.completed_at = None
            task.completed = completed

        self.session.flush()
        LOGGER.debug(f"Updated task {task_id} in loop {loop_id}")
        return task

    def delete_task(self, loop_id: int, task_id: int, actor: User) -> None:
        task = self.get_task(loop_id, task_id, actor)
        self.session.delete(task)
        self.session.flush()
        LOGGER.debug(f"Deleted task {task_id} from loop {loop_id}")


__all__ = ["TaskService"]
