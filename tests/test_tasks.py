"""Tests for loop checklist tasks."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.models import LoopTask
from domain.tasks import TaskService


class TestTaskOrdering:
    """Checklist order."""

    def test_incomplete_dated_first(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        done = LoopTask(loop_id=loop.id, title="done", completed=True, created_at=base)
        dated = LoopTask(loop_id=loop.id, title="dated", due_date=date(2025, 1, 1),
                         created_at=base + timedelta(minutes=1))
        undated = LoopTask(loop_id=loop.id, title="undated", created_at=base + timedelta(minutes=2))
        db_session.add_all([done, dated, undated])
        db_session.flush()

        tasks = TaskService(db_session).list_tasks(loop.id, agent_user)

        assert [t.title for t in tasks] == ["dated", "undated", "done"]

    def test_ties_newest_first(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        older = LoopTask(loop_id=loop.id, title="older", created_at=base)
        newer = LoopTask(loop_id=loop.id, title="newer", created_at=base + timedelta(hours=1))
        db_session.add_all([older, newer])
        db_session.flush()

        tasks = TaskService(db_session).list_tasks(loop.id, agent_user)
        assert [t.title for t in tasks] == ["newer", "older"]


class TestTaskMutations:
    """Adding, completing and deleting tasks."""

    def test_add_trims_title(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        task = TaskService(db_session).add_task(loop.id, "  Order inspection ", agent_user, "2025-07-01")

        assert task.title == "Order inspection"
        assert task.due_date == date(2025, 7, 1)
        assert task.completed is False
        assert task.created_by == agent_user.id

    @pytest.mark.parametrize("title", ["", "   ", None])
    def test_blank_title_rejected(self, db_session, agent_user, make_loop, title):
        loop = make_loop(agent_user)
        with pytest.raises(ValidationError):
            TaskService(db_session).add_task(loop.id, title, agent_user)

    def test_complete_and_reopen(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        service = TaskService(db_session)
        task = service.add_task(loop.id, "Sign", agent_user)

        service.update_task(loop.id, task.id, {"completed": True}, agent_user)
        assert task.completed is True
        assert task.completed_at is not None

        service.update_task(loop.id, task.id, {"completed": False}, agent_user)
        assert task.completed is False
        assert task.completed_at is None

    def test_null_values_leave_fields(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        service = TaskService(db_session)
        task = service.add_task(loop.id, "Sign", agent_user, "2025-07-01")

        service.update_task(loop.id, task.id, {"title": None, "due_date": None}, agent_user)

        assert task.title == "Sign"
        assert task.due_date == date(2025, 7, 1)

    def test_task_from_other_loop_not_found(self, db_session, agent_user, make_loop):
        first = make_loop(agent_user)
        second = make_loop(agent_user)
        service = TaskService(db_session)
        task = service.add_task(first.id, "Sign", agent_user)

        with pytest.raises(NotFoundError):
            service.update_task(second.id, task.id, {"completed": True}, agent_user)
        with pytest.raises(NotFoundError):
            service.delete_task(second.id, task.id, agent_user)

    def test_delete(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        service = TaskService(db_session)
        task = service.add_task(loop.id, "Sign", agent_user)

        service.delete_task(loop.id, task.id, agent_user)
        assert service.list_tasks(loop.id, agent_user) == []

    def test_other_agent_forbidden(self, db_session, agent_user, other_agent, make_loop):
        loop = make_loop(agent_user)
        with pytest.raises(ForbiddenError):
            TaskService(db_session).add_task(loop.id, "Sign", other_agent)
