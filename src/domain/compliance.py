"""Compliance review workflow for loops.

The cycle is request -> approve | deny, and a fresh request may be issued
from any state, which resets the loop to pending. Each transition is a plain
write: concurrent reviews resolve by last write wins.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict

from sqlalchemy.orm import Session

from core.logging_config import get_logger
from core.models import ComplianceStatus, Loop, User
from core.utils import utcnow
from domain.loops import LoopService, ensure_admin

LOGGER = get_logger(__name__)


class ComplianceAction(str, enum.Enum):
    """Transitions of the review cycle."""
    REQUEST = "request"
    APPROVE = "approve"
    DENY = "deny"


@dataclass(frozen=True)
class _Transition:
    target: ComplianceStatus
    admin_only: bool
    stamp_requested: bool


TRANSITIONS: Dict[ComplianceAction, _Transition] = {
    ComplianceAction.REQUEST: _Transition(ComplianceStatus.PENDING, admin_only=False, stamp_requested=True),
    ComplianceAction.APPROVE: _Transition(ComplianceStatus.APPROVED, admin_only=True, stamp_requested=False),
    ComplianceAction.DENY: _Transition(ComplianceStatus.DENIED, admin_only=True, stamp_requested=False),
}


def next_status(current: ComplianceStatus, action: ComplianceAction) -> ComplianceStatus:
    """
    Resulting state after an action.

    Every action is accepted from every state, so the current state never
    affects the outcome.
    """
    return TRANSITIONS[action].target


class ComplianceService:
    """Service applying compliance transitions to loops."""

    def __init__(self, session: Session):
        """Initialize the compliance service."""
        self.session = session
        self.loops = LoopService(session)

    def apply(self, loop_id: int, action: ComplianceAction, actor: User) -> Loop:
        """
        Apply one review transition.

        Role checks run before the loop is read or written, so a refused
        actor never changes state.

        Args:
            loop_id: Target loop.
            action: Transition to apply.
            actor: Acting user.

        Returns:
            The updated Loop.

        Raises:
            ForbiddenError: If the actor may not perform the action.
            NotFoundError: If the loop does not exist.
        """
        transition = TRANSITIONS[action]
        if transition.admin_only:
            ensure_admin(actor, f"Only admins can {action.value} compliance")
            loop = self.loops.get_loop(loop_id)
        else:
            loop = self.loops.get_accessible_loop(loop_id, actor)

        previous = loop.compliance_status
        loop.compliance_status = next_status(ComplianceStatus(previous), action).value
        if transition.stamp_requested:
            loop.compliance_requested_at = utcnow()
        else:
            loop.compliance_reviewed_at = utcnow()
            loop.compliance_reviewer_id = actor.id
        self.session.flush()

        LOGGER.info(
            f"Compliance for loop {loop_id}: {previous} -> {loop.compliance_status} by user {actor.id}"
        )
        return loop

    def request_review(self, loop_id: int, actor: User) -> Loop:
        return self.apply(loop_id, ComplianceAction.REQUEST, actor)

    def approve(self, loop_id: int, actor: User) -> Loop:
        return self.apply(loop_id, ComplianceAction.APPROVE, actor)

    def deny(self, loop_id: int, actor: User) -> Loop:
        return self.apply(loop_id, ComplianceAction.DENY, actor)


__all__ = [
    "ComplianceAction",
    "ComplianceService",
    "TRANSITIONS",
    "next_status",
]
