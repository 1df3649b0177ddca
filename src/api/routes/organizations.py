"""Organization routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user, require_admin
from api.deps import client_ip, get_db
from core.exceptions import NotFoundError
from core.logging_config import get_logger
from core.models import User
from domain.organizations import OrganizationService
from services.activity import ActivityAction, ActivityLogService

router = APIRouter()
LOGGER = get_logger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================


class OrganizationCreate(BaseModel):
    """Request body for organization creation."""

    name: Optional[str] = Field(None, description="Unique organization name")
    description: Optional[str] = None
    user_ids: List[int] = Field(default_factory=list, description="Initial members")


class OrganizationUpdate(BaseModel):
    """Request body for organization update."""

    name: Optional[str] = None
    description: Optional[str] = None


class MemberAdd(BaseModel):
    """Request body for adding a user to an organization."""

    user_id: int


# =============================================================================
# Routes
# =============================================================================


@router.get("")
async def list_organizations(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """All organizations with member counts."""
    organizations = OrganizationService(db).list_organizations()
    return {"success": True, "organizations": organizations}


@router.get("/{organization_id}")
async def get_organization(
    organization_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """One organization with its members."""
    organization = OrganizationService(db).get_organization(organization_id)
    return {"success": True, "organization": organization}


@router.post("", status_code=201)
async def create_organization(
    body: OrganizationCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Create an organization, optionally with initial members (admin only)."""
    org = OrganizationService(db).create_organization(
        body.name, user, description=body.description, user_ids=body.user_ids
    )
    ActivityLogService(db).log(
        user.id,
        ActivityAction.ORGANIZATION_CREATED,
        f"Created organization {org.name}",
        metadata={"organization_id": org.id, "user_ids": body.user_ids},
        ip_address=client_ip(request),
    )
    return {
        "success": True,
        "message": "Organization created successfully",
        "organizationId": org.id,
    }


@router.put("/{organization_id}")
async def update_organization(
    organization_id: int,
    body: OrganizationUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Rename or re-describe an organization (admin only)."""
    org = OrganizationService(db).update_organization(
        organization_id, body.name, description=body.description
    )
    ActivityLogService(db).log(
        user.id,
        ActivityAction.ORGANIZATION_UPDATED,
        f"Updated organization {org.name}",
        metadata={"organization_id": org.id},
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "Organization updated successfully"}


@router.delete("/{organization_id}")
async def delete_organization(
    organization_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Delete an organization and its memberships (admin only)."""
    OrganizationService(db).delete_organization(organization_id)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.ORGANIZATION_DELETED,
        f"Deleted organization {organization_id}",
        metadata={"organization_id": organization_id},
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "Organization deleted successfully"}


@router.get("/{organization_id}/users")
async def list_organization_users(
    organization_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Members of an organization."""
    users = OrganizationService(db).list_members(organization_id)
    return {"success": True, "users": users}


@router.get("/{organization_id}/available-users")
async def list_available_users(
    organization_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Users who could be added to an organization (admin only)."""
    users = OrganizationService(db).list_available_users(organization_id)
    return {"success": True, "users": users}


@router.post("/{organization_id}/users")
async def add_organization_user(
    organization_id: int,
    body: MemberAdd,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Assign a user to an organization; re-adding refreshes the assignment."""
    OrganizationService(db).add_member(organization_id, body.user_id, user)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.ORGANIZATION_MEMBER_ADDED,
        f"Added user {body.user_id} to organization {organization_id}",
        metadata={"organization_id": organization_id, "user_id": body.user_id},
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "User added to organization successfully"}


@router.delete("/{organization_id}/users/{user_id}")
async def remove_organization_user(
    organization_id: int,
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Remove a user from an organization (admin only)."""
    if not OrganizationService(db).remove_member(organization_id, user_id):
        raise NotFoundError("User is not a member of this organization")
    ActivityLogService(db).log(
        user.id,
        ActivityAction.ORGANIZATION_MEMBER_REMOVED,
        f"Removed user {user_id} from organization {organization_id}",
        metadata={"organization_id": organization_id, "user_id": user_id},
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "User removed from organization successfully"}
