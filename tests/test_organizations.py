"""Tests for organizations and memberships."""
from __future__ import annotations

import pytest
from sqlalchemy import func, select

from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.models import Organization, UserOrganization
from domain.organizations import OrganizationService


def _membership_count(session, org_id=None):
    stmt = select(func.count(UserOrganization.id))
    if org_id is not None:
        stmt = stmt.where(UserOrganization.organization_id == org_id)
    return session.scalar(stmt)


class TestCreateOrganization:
    """OrganizationService.create_organization."""

    def test_create_with_members(self, db_session, admin_user, agent_user):
        org = OrganizationService(db_session).create_organization(
            " North Office ", admin_user, description="Uptown", user_ids=[agent_user.id, 999999]
        )

        assert org.name == "North Office"
        assert org.created_by == admin_user.id
        assert _membership_count(db_session, org.id) == 1

    def test_blank_name(self, db_session, admin_user):
        with pytest.raises(ValidationError):
            OrganizationService(db_session).create_organization("  ", admin_user)

    def test_duplicate_name_conflicts(self, db_session, admin_user):
        service = OrganizationService(db_session)
        service.create_organization("North Office", admin_user)

        with pytest.raises(ConflictError):
            service.create_organization("North Office", admin_user)

        assert db_session.scalar(select(func.count(Organization.id))) == 1

    def test_names_are_case_sensitive(self, db_session, admin_user):
        service = OrganizationService(db_session)
        service.create_organization("North Office", admin_user)
        service.create_organization("north office", admin_user)
        assert len(service.list_organizations()) == 2


class TestMemberships:
    """Adding and removing members."""

    def test_readd_is_idempotent(self, db_session, admin_user, agent_user, other_agent):
        service = OrganizationService(db_session)
        org = service.create_organization("North Office", admin_user)

        service.add_member(org.id, agent_user.id, admin_user)
        membership = service.add_member(org.id, agent_user.id, other_agent)

        assert _membership_count(db_session, org.id) == 1
        assert membership.assigned_by == other_agent.id

    def test_unknown_user(self, db_session, admin_user):
        service = OrganizationService(db_session)
        org = service.create_organization("North Office", admin_user)
        with pytest.raises(NotFoundError):
            service.add_member(org.id, 999999, admin_user)

    def test_remove_member(self, db_session, admin_user, agent_user):
        service = OrganizationService(db_session)
        org = service.create_organization("North Office", admin_user, user_ids=[agent_user.id])

        assert service.remove_member(org.id, agent_user.id) is True
        assert service.remove_member(org.id, agent_user.id) is False

    def test_members_and_available_users(self, db_session, admin_user, agent_user, other_agent):
        service = OrganizationService(db_session)
        other_agent.suspended = True
        org = service.create_organization("North Office", admin_user, user_ids=[agent_user.id])

        members = service.list_members(org.id)
        assert [m["name"] for m in members] == ["Bob Agent"]
        assert members[0]["assigned_by_name"] == "Alice Admin"

        available = service.list_available_users(org.id)
        assert [u["name"] for u in available] == ["Alice Admin"]


class TestUpdateDelete:
    """Renaming and deleting organizations."""

    def test_rename_conflict(self, db_session, admin_user):
        service = OrganizationService(db_session)
        service.create_organization("North Office", admin_user)
        south = service.create_organization("South Office", admin_user)

        with pytest.raises(ConflictError):
            service.update_organization(south.id, "North Office")

        renamed = service.update_organization(south.id, "South Office", "Downtown")
        assert renamed.description == "Downtown"

    def test_delete_removes_memberships(self, db_session, admin_user, agent_user):
        service = OrganizationService(db_session)
        org = service.create_organization("North Office", admin_user, user_ids=[agent_user.id])

        service.delete_organization(org.id)

        assert db_session.get(Organization, org.id) is None
        assert _membership_count(db_session) == 0

    def test_get_missing(self, db_session, tables):
        with pytest.raises(NotFoundError):
            OrganizationService(db_session).get_organization(424242)

    def test_detail_lists_users(self, db_session, admin_user, agent_user):
        service = OrganizationService(db_session)
        org = service.create_organization("North Office", admin_user, user_ids=[agent_user.id])

        detail = service.get_organization(org.id)

        assert detail["creator_name"] == "Alice Admin"
        assert detail["member_count"] == 1
        assert detail["users"][0]["email"] == "bob@example.com"
