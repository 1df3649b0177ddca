"""Tests for the people directory."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.exceptions import NotFoundError
from domain.organizations import OrganizationService
from domain.people import PeopleService


class TestPeopleService:
    """PeopleService queries."""

    def test_search_by_name_or_email(self, db_session, admin_user, agent_user, other_agent):
        service = PeopleService(db_session)

        assert [u["name"] for u in service.search_users("carol@")] == ["Carol Agent"]
        assert {u["name"] for u in service.search_users("agent")} == {"Bob Agent", "Carol Agent"}

    def test_recently_active_first(self, db_session, admin_user, agent_user, other_agent):
        agent_user.last_active = datetime(2025, 6, 1, tzinfo=timezone.utc)
        other_agent.last_active = datetime(2025, 6, 10, tzinfo=timezone.utc)
        db_session.flush()

        names = [u["name"] for u in PeopleService(db_session).search_users()]

        assert names == ["Carol Agent", "Bob Agent", "Alice Admin"]

    def test_users_carry_organizations(self, db_session, admin_user, agent_user):
        OrganizationService(db_session).create_organization(
            "North Office", admin_user, user_ids=[agent_user.id]
        )

        user = PeopleService(db_session).get_user(agent_user.id)

        assert user["organizations"][0]["name"] == "North Office"

    def test_missing_user(self, db_session, tables):
        with pytest.raises(NotFoundError):
            PeopleService(db_session).get_user(424242)
