"""SQLAlchemy ORM models for the loop tracker."""
from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


# =============================================================================
# Enums
# =============================================================================


class UserRole(str, enum.Enum):
    """User roles for authorization."""
    ADMIN = "admin"
    AGENT = "agent"


class LoopStatus(str, enum.Enum):
    """Lifecycle status of a loop as stored."""
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    UNDER_CONTRACT = "under-contract"
    WITHDRAWN = "withdrawn"
    SOLD = "sold"
    TERMINATED = "terminated"
    PRE_OFFER = "pre-offer"


# Statuses that still count toward the closing-soon and overdue lists
OPEN_STATUSES = (LoopStatus.ACTIVE.value, LoopStatus.CLOSING.value)

# Statuses for which a deadline no longer matters
TERMINAL_STATUSES = frozenset({LoopStatus.CLOSED.value, LoopStatus.CANCELLED.value})


class ComplianceStatus(str, enum.Enum):
    """Compliance review state of a loop."""
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


# =============================================================================
# User Model
# =============================================================================


class User(Base):
    """
    Application user.

    Credentials are managed outside this service; only identity, role and
    activity are tracked here.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.AGENT.value, nullable=False)
    suspended: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_active: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    memberships: Mapped[List["UserOrganization"]] = relationship(
        "UserOrganization",
        back_populates="user",
        foreign_keys="UserOrganization.user_id",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "suspended": self.suspended,
            "last_active": self.last_active.isoformat() if self.last_active else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =============================================================================
# Loop Model
# =============================================================================


class Loop(Base):
    """
    A single real-estate transaction file tracked from creation to closing.
    """
    __tablename__ = "loops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Classification
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(50), default=LoopStatus.ACTIVE.value, nullable=False, index=True
    )
    tags: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Deal
    sale: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)

    # Property and client
    property_address: Mapped[str] = mapped_column(String(500), nullable=False)
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Structured payloads
    images: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    participants: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    # Compliance review
    compliance_status: Mapped[str] = mapped_column(
        String(20), default=ComplianceStatus.NONE.value, nullable=False
    )
    compliance_requested_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    compliance_reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    compliance_reviewer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )

    # Ownership
    creator_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    creator: Mapped[Optional["User"]] = relationship("User", foreign_keys=[creator_id])

    __table_args__ = (
        Index("ix_loops_archived_end_date", "archived", "end_date"),
    )


# =============================================================================
# Task and Document Models
# =============================================================================


class LoopTask(Base):
    """A checklist item attached to a loop."""
    __tablename__ = "loop_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    loop_id: Mapped[int] = mapped_column(ForeignKey("loops.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "loop_id": self.loop_id,
            "title": self.title,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "completed": self.completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class LoopDocument(Base):
    """Metadata for a file uploaded to a loop. The bytes live in upload storage."""
    __tablename__ = "loop_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    loop_id: Mapped[int] = mapped_column(ForeignKey("loops.id"), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    mimetype: Mapped[str] = mapped_column(String(100), nullable=False)
    uploaded_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "loop_id": self.loop_id,
            "filename": self.filename,
            "original_name": self.original_name,
            "size": self.size,
            "mimetype": self.mimetype,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =============================================================================
# Organization Models
# =============================================================================


class Organization(Base):
    """A named group of users."""
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    memberships: Mapped[List["UserOrganization"]] = relationship(
        "UserOrganization", back_populates="organization", passive_deletes=True
    )


class UserOrganization(Base):
    """Membership of a user in an organization."""
    __tablename__ = "user_organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id"), nullable=False, index=True
    )
    assigned_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped["User"] = relationship(
        "User", back_populates="memberships", foreign_keys=[user_id]
    )
    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="memberships"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_user_organization"),
    )


# =============================================================================
# Activity Log Model
# =============================================================================


class ActivityLog(Base):
    """Append-only audit record of a user action."""
    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    loop_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )

    user: Mapped[Optional["User"]] = relationship("User")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "action": self.action,
            "description": self.description,
            "loop_id": self.loop_id,
            "metadata": self.event_metadata,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


__all__ = [
    "UserRole",
    "LoopStatus",
    "ComplianceStatus",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "User",
    "Loop",
    "LoopTask",
    "LoopDocument",
    "Organization",
    "UserOrganization",
    "ActivityLog",
]
