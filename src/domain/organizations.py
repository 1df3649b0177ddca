"""Organization domain service - named groups of users."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.logging_config import get_logger
from core.models import Organization, User, UserOrganization
from core.utils import isoformat_or_none, utcnow

LOGGER = get_logger(__name__)


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Organization name is required")
    return name.strip()


def _org_to_dict(
    org: Organization,
    creator_name: Optional[str] = None,
    member_count: Optional[int] = None,
) -> Dict[str, Any]:
    data = {
        "id": org.id,
        "name": org.name,
        "description": org.description,
        "created_by": org.created_by,
        "creator_name": creator_name,
        "created_at": isoformat_or_none(org.created_at),
        "updated_at": isoformat_or_none(org.updated_at),
    }
    if member_count is not None:
        data["member_count"] = member_count
    return data


class OrganizationService:
    """Service for organizations and their memberships."""

    def __init__(self, session: Session):
        """Initialize the organization service."""
        self.session = session

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get(self, organization_id: int) -> Organization:
        org = self.session.get(Organization, organization_id)
        if org is None:
            raise NotFoundError("Organization not found")
        return org

    def _get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Organization.id).where(Organization.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Organization.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def list_organizations(self) -> List[Dict[str, Any]]:
        """All organizations with creator name and member count, by name."""
        creator = aliased(User)
        stmt = (
            select(
                Organization,
                creator.name,
                func.count(UserOrganization.id),
            )
            .outerjoin(creator, Organization.created_by == creator.id)
            .outerjoin(UserOrganization, UserOrganization.organization_id == Organization.id)
            .group_by(Organization.id, creator.name)
            .order_by(Organization.name.asc())
        )
        return [
            _org_to_dict(org, creator_name, count)
            for org, creator_name, count in self.session.execute(stmt)
        ]

    def get_organization(self, organization_id: int) -> Dict[str, Any]:
        """One organization with its members."""
        org = self.get(organization_id)
        creator_name = self.session.scalar(select(User.name).where(User.id == org.created_by))
        members = self.list_members(organization_id)
        data = _org_to_dict(org, creator_name, len(members))
        data["users"] = members
        return data

    def list_members(self, organization_id: int) -> List[Dict[str, Any]]:
        """Members of an organization with who assigned them, by name."""
        self.get(organization_id)
        assigner = aliased(User)
        stmt = (
            select(User, UserOrganization, assigner.name)
            .join(UserOrganization, UserOrganization.user_id == User.id)
            .outerjoin(assigner, UserOrganization.assigned_by == assigner.id)
            .where(UserOrganization.organization_id == organization_id)
            .order_by(User.name.asc())
        )
        return [
            {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "role": user.role,
                "assigned_at": isoformat_or_none(membership.assigned_at),
                "assigned_by": membership.assigned_by,
                "assigned_by_name": assigner_name,
            }
            for user, membership, assigner_name in self.session.execute(stmt)
        ]

    def list_available_users(self, organization_id: int) -> List[Dict[str, Any]]:
        """Non-suspended users who are not yet members, by name."""
        self.get(organization_id)
        members = select(UserOrganization.user_id).where(
            UserOrganization.organization_id == organization_id
        )
        stmt = (
            select(User)
            .where(User.id.not_in(members), User.suspended.is_(False))
            .order_by(User.name.asc())
        )
        return [
            {"id": u.id, "name": u.name, "email": u.email, "role": u.role}
            for u in self.session.scalars(stmt)
        ]

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create_organization(
        self,
        name: Any,
        actor: User,
        description: Optional[str] = None,
        user_ids: Optional[Iterable[int]] = None,
    ) -> Organization:
        """
        Create an organization, optionally seeding its members.

        Members that cannot be added (for example unknown user ids) are
        skipped with a warning; the organization is still created.

        Args:
            name: Unique, case-sensitive name; trimmed and required.
            actor: Creating admin.
            description: Optional description.
            user_ids: Users to add as initial members.

        Returns:
            The new Organization.

        Raises:
            ValidationError: If the name is blank.
            ConflictError: If the name is already in use.
        """
        clean_name = _clean_name(name)
        if self._name_taken(clean_name):
            raise ConflictError("Organization name already exists")

        now = utcnow()
        org = Organization(
            name=clean_name,
            description=description or "",
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session.begin_nested():
                self.session.add(org)
                self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("Organization name already exists") from exc

        for user_id in user_ids or []:
            try:
                self.add_member(org.id, user_id, actor)
            except NotFoundError:
                LOGGER.warning(f"Skipped unknown user {user_id} for organization {org.id}")

        LOGGER.info(f"Created organization {org.id} ({org.name})")
        return org

    def update_organization(
        self,
        organization_id: int,
        name: Any,
        description: Optional[str] = None,
    ) -> Organization:
        """Rename or re-describe an organization."""
        clean_name = _clean_name(name)
        org = self.get(organization_id)
        if self._name_taken(clean_name, exclude_id=organization_id):
            raise ConflictError("Organization name already exists")

        org.name = clean_name
        org.description = description or ""
        org.updated_at = utcnow()
        try:
            with self.session.begin_nested():
                self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("Organization name already exists") from exc
        return org

    def delete_organization(self, organization_id: int) -> None:
        """Delete an organization and all of its memberships in one unit."""
        org = self.get(organization_id)
        self.session.execute(
            delete(UserOrganization).where(UserOrganization.organization_id == organization_id)
        )
        self.session.delete(org)
        self.session.flush()
        LOGGER.info(f"Deleted organization {organization_id}")

    def add_member(self, organization_id: int, user_id: int, actor: User) -> UserOrganization:
        """
        Assign a user to an organization.

        Re-adding an existing member keeps a single row and refreshes
        assigned_by and assigned_at.
        """
        self.get(organization_id)
        self._get_user(user_id)

        membership = self.session.scalar(
            select(UserOrganization).where(
                UserOrganization.organization_id == organization_id,
                UserOrganization.user_id == user_id,
            )
        )
        if membership is None:
            membership = UserOrganization(user_id=user_id, organization_id=organization_id)
            self.session.add(membership)
        membership.assigned_by = actor.id
        membership.assigned_at = utcnow()
        self.session.flush()

        LOGGER.debug(f"User {user_id} assigned to organization {organization_id}")
        return membership

    def remove_member(self, organization_id: int, user_id: int) -> bool:
        """Remove a membership. Returns False if the user was not a member."""
        self.get(organization_id)
        result = self.session.execute(
            delete(UserOrganization).where(
                UserOrganization.organization_id == organization_id,
                UserOrganization.user_id == user_id,
            )
        )
        self.session.flush()
        return bool(result.rowcount)


__all__ = ["OrganizationService"]
