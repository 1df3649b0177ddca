"""People directory: users with their organization memberships."""
from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from core.models import Organization, User, UserOrganization


class PeopleService:
    """Read-only queries over users for the people directory."""

    def __init__(self, session: Session):
        """Initialize the people service."""
        self.session = session

    def _organizations_by_user(self, user_ids: List[int]) -> Dict[int, List[Dict[str, Any]]]:
        if not user_ids:
            return {}
        stmt = (
            select(UserOrganization.user_id, Organization.id, Organization.name)
            .join(Organization, Organization.id == UserOrganization.organization_id)
            .where(UserOrganization.user_id.in_(user_ids))
            .order_by(Organization.name.asc())
        )
        grouped: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        for user_id, org_id, org_name in self.session.execute(stmt):
            grouped[user_id].append({"id": org_id, "name": org_name})
        return grouped

    def search_users(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Users whose name or email contains ``search``.

        Results are ordered by most recent activity (never-active users
        last), then by name. Each user carries an ``organizations`` list.
        """
        stmt = select(User)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        stmt = stmt.order_by(
            User.last_active.is_(None).asc(),
            User.last_active.desc(),
            User.name.asc(),
        )
        users = list(self.session.scalars(stmt))
        orgs = self._organizations_by_user([u.id for u in users])
        return [{**u.to_dict(), "organizations": orgs.get(u.id, [])} for u in users]

    def get_user(self, user_id: int) -> Dict[str, Any]:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return {**user.to_dict(), "organizations": self._organizations_by_user([user.id]).get(user.id, [])}


__all__ = ["PeopleService"]
