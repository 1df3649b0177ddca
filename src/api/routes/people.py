"""People directory routes."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user
from api.deps import get_db
from core.models import User
from domain.people import PeopleService

router = APIRouter()


@router.get("")
async def search_people(
    search: Optional[str] = Query(default=None, description="Name or email substring"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Users with their organizations, most recently active first."""
    people = PeopleService(db).search_users(search)
    return {"success": True, "users": people, "count": len(people)}


@router.get("/{user_id}")
async def get_person(
    user_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """One user with their organizations."""
    return {"success": True, "user": PeopleService(db).get_user(user_id)}
