"""Tests for due-date urgency."""
from __future__ import annotations

from datetime import timedelta

import pytest

from domain import loops, urgency
from domain.loops import LoopService
from domain.urgency import UrgencyLevel, classify_urgency, with_urgency


class TestClassifyUrgency:
    """classify_urgency boundaries."""

    def test_due_today(self, today):
        urgency = classify_urgency(today, "active", today=today)
        assert urgency.level is UrgencyLevel.DUE_TODAY
        assert urgency.magnitude == 0
        assert urgency.badge == "DUE TODAY"

    def test_one_day_overdue(self, today):
        urgency = classify_urgency(today - timedelta(days=1), "active", today=today)
        assert urgency.level is UrgencyLevel.OVERDUE
        assert urgency.magnitude == 1
        assert urgency.badge == "OVERDUE: 1 DAY"
        assert urgency.countdown == "1 day overdue"

    def test_three_days_is_due_soon(self, today):
        urgency = classify_urgency((today + timedelta(days=3)).isoformat(), "closing", today=today)
        assert urgency.level is UrgencyLevel.DUE_SOON
        assert urgency.badge == "CLOSING SOON: 3 DAYS LEFT"
        assert urgency.countdown == "3 days left"

    def test_four_days_is_normal(self, today):
        urgency = classify_urgency(today + timedelta(days=4), "active", today=today)
        assert urgency.level is UrgencyLevel.NORMAL
        assert urgency.badge is None

    @pytest.mark.parametrize("status", ["closed", "cancelled"])
    def test_terminal_statuses_have_no_urgency(self, today, status):
        urgency = classify_urgency(today - timedelta(days=30), status, today=today)
        assert urgency.level is UrgencyLevel.NONE
        assert urgency.badge is None

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_unusable_dates(self, today, value):
        assert classify_urgency(value, "active", today=today).level is UrgencyLevel.NONE


def test_with_urgency_copies_row(today):
    row = {"id": 1, "end_date": (today + timedelta(days=2)).isoformat(), "status": "active"}

    result = with_urgency(row, today=today)

    assert "urgency" not in row
    assert result["urgency"]["level"] == "due-soon"
    assert result["urgency"]["magnitude"] == 2


class TestDueSoonWindow:
    """The due-soon window follows CLOSING_SOON_DAYS."""

    def test_window_from_settings(self, today, monkeypatch):
        monkeypatch.setattr(urgency.SETTINGS, "closing_soon_days", 5)

        assert classify_urgency(today + timedelta(days=5), "active", today=today).level is UrgencyLevel.DUE_SOON
        assert classify_urgency(today + timedelta(days=6), "active", today=today).level is UrgencyLevel.NORMAL

    def test_explicit_window_wins(self, today):
        result = classify_urgency(today + timedelta(days=3), "active", today=today, soon_days=1)
        assert result.level is UrgencyLevel.NORMAL

    def test_badges_match_closing_list(self, db_session, admin_user, make_loop, today, monkeypatch):
        monkeypatch.setattr(urgency.SETTINGS, "closing_soon_days", 5)
        monkeypatch.setattr(loops.SETTINGS, "closing_soon_days", 5)
        make_loop(admin_user, end_date=today + timedelta(days=5))
        make_loop(admin_user, end_date=today + timedelta(days=6))

        rows = LoopService(db_session).closing_loops(today=today)

        assert len(rows) == 1
        assert with_urgency(rows[0], today=today)["urgency"]["level"] == "due-soon"
