"""Tests for the activity log and admin email notifications."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from core.models import ActivityLog
from services import notification
from services.activity import ActivityAction, ActivityLogService
from services.notification import NotificationService, build_updated_loop_email


class TestActivityLog:
    """ActivityLogService."""

    def test_log_entry(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)

        entry = ActivityLogService(db_session).log(
            agent_user.id, ActivityAction.LOOP_CREATED, "Created loop", loop_id=loop.id,
            metadata={"type": "Listing"}, ip_address="10.0.0.1",
        )

        assert entry is not None
        assert entry.event_metadata == {"type": "Listing"}
        assert entry.ip_address == "10.0.0.1"

    def test_failed_write_leaves_session_usable(self, db_session, agent_user, make_loop):
        service = ActivityLogService(db_session)

        assert service.log(99999, ActivityAction.LOOP_UPDATED, "ghost user") is None

        loop = make_loop(agent_user)
        assert loop.id is not None
        assert db_session.query(ActivityLog).count() == 0

    def test_loop_activity_newest_first(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        other = make_loop(agent_user)
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for offset, action in enumerate(["first", "second", "third"]):
            db_session.add(ActivityLog(
                user_id=agent_user.id, action=action, description=action, loop_id=loop.id,
                created_at=base + timedelta(minutes=offset),
            ))
        db_session.add(ActivityLog(
            user_id=agent_user.id, action="elsewhere", description="x", loop_id=other.id,
            created_at=base,
        ))
        db_session.flush()

        logs = ActivityLogService(db_session).get_loop_activity(loop.id, limit=2)

        assert [log.action for log in logs] == ["third", "second"]
        assert logs[0].user.name == "Bob Agent"


class TestNotificationService:
    """NotificationService.send_email."""

    def test_no_recipients(self):
        assert NotificationService(recipients=[]).send_email("s", "t") is False

    def test_dry_run(self):
        assert NotificationService(recipients=["ops@example.com"]).send_email("s", "t", dry_run=True)

    def test_disabled_without_api_url(self, monkeypatch):
        monkeypatch.setattr(notification.SETTINGS, "dry_run", False)
        monkeypatch.setattr(notification.SETTINGS, "email_api_url", None)

        assert NotificationService(recipients=["ops@example.com"]).send_email("s", "t") is False

    def _live(self, monkeypatch):
        monkeypatch.setattr(notification.SETTINGS, "dry_run", False)
        monkeypatch.setattr(notification.SETTINGS, "enable_email_notifications", True)
        monkeypatch.setattr(notification.SETTINGS, "email_api_url", "https://mail.test/send")

    def test_sends_payload(self, monkeypatch):
        self._live(monkeypatch)
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"id": "msg_1"})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        sent = NotificationService(recipients=["ops@example.com"], client=client).send_email(
            "Loop updated", "body"
        )

        assert sent is True
        assert seen["url"] == "https://mail.test/send"
        assert b"ops@example.com" in seen["body"]

    def test_http_failure_returns_false(self, monkeypatch):
        self._live(monkeypatch)
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(502)))

        service = NotificationService(recipients=["ops@example.com"], client=client)

        assert service.send_email("Loop updated", "body") is False

    def test_update_email_lists_changes(self):
        message = build_updated_loop_email(
            {"id": 7, "type": "Listing", "property_address": "1 Elm"},
            "Bob Agent",
            {"status": "closing", "notes": "hi"},
        )
        assert message["subject"] == "Loop updated: 1 Elm"
        assert "- notes: hi\n- status: closing" in message["text"]
