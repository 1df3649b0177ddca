"""Loop domain service - core business logic for transaction loops."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import Select, case, delete, func, or_, select
from sqlalchemy.orm import Session

from core.config import get_settings
from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.logging_config import get_logger
from core.models import OPEN_STATUSES, Loop, LoopDocument, LoopStatus, LoopTask, User
from core.types import LoopStats
from core.utils import isoformat_or_none, month_bounds, parse_date, today as current_date, utcnow
from domain.details import normalize_details

LOGGER = get_logger(__name__)
SETTINGS = get_settings()


# =============================================================================
# Query Parameters
# =============================================================================


class SortField(str, enum.Enum):
    """Columns the store may order loops by."""
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    END_DATE = "end_date"
    SALE = "sale"
    STATUS = "status"
    TYPE = "type"

    @classmethod
    def parse(cls, value: Any) -> "SortField":
        """Map a raw sort key to a member, falling back to created_at."""
        try:
            return cls(value)
        except ValueError:
            return cls.CREATED_AT

    @classmethod
    def supports(cls, value: Any) -> bool:
        return value in cls._value2member_map_


class SortOrder(str, enum.Enum):
    """Sort direction."""
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: Any) -> "SortOrder":
        """Map a raw direction to a member, falling back to descending."""
        if isinstance(value, str) and value.lower() == cls.ASC.value:
            return cls.ASC
        return cls.DESC


# Every SortField must have a column here
_SORT_COLUMNS = {
    SortField.CREATED_AT: Loop.created_at,
    SortField.UPDATED_AT: Loop.updated_at,
    SortField.END_DATE: Loop.end_date,
    SortField.SALE: Loop.sale,
    SortField.STATUS: Loop.status,
    SortField.TYPE: Loop.type,
}

CURRENT_MONTH = "current"


def parse_limit(value: Any) -> Optional[int]:
    """Positive integer limit, or None when absent, non-numeric, or not positive."""
    if value is None or isinstance(value, bool):
        return None
    try:
        limit = int(str(value).strip())
    except ValueError:
        return None
    return limit if limit > 0 else None


def parse_flag(value: Any) -> bool:
    """Query-string boolean: only a literal true turns it on."""
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == "true"


@dataclass(frozen=True)
class LoopFilter:
    """Filter, sort and limit options for listing loops."""

    status: Optional[str] = None
    type: Optional[str] = None
    search: Optional[str] = None
    end_month: Optional[str] = None
    creator_id: Optional[int] = None
    archived: bool = False
    sort: SortField = SortField.CREATED_AT
    order: SortOrder = SortOrder.DESC
    limit: Optional[int] = None

    @classmethod
    def from_params(
        cls,
        status: Optional[str] = None,
        type: Optional[str] = None,
        search: Optional[str] = None,
        end_month: Optional[str] = None,
        creator_id: Optional[int] = None,
        archived: Any = False,
        sort: Any = None,
        order: Any = None,
        limit: Any = None,
    ) -> "LoopFilter":
        """Build a filter from loosely-typed request parameters."""
        return cls(
            status=status or None,
            type=type or None,
            search=search or None,
            end_month=end_month or None,
            creator_id=creator_id,
            archived=parse_flag(archived),
            sort=SortField.parse(sort),
            order=SortOrder.parse(order),
            limit=parse_limit(limit),
        )

    def scoped_to(self, actor: Optional[User]) -> "LoopFilter":
        """Restrict the filter to the actor's own loops unless they are an admin."""
        if actor is None or actor.is_admin:
            return self
        return replace(self, creator_id=actor.id)


# =============================================================================
# Access Rules
# =============================================================================


def can_access_loop(actor: User, loop: Loop) -> bool:
    """Admins see every loop; everyone else only the loops they created."""
    return actor.is_admin or loop.creator_id == actor.id


def ensure_can_access(actor: User, loop: Loop) -> None:
    if not can_access_loop(actor, loop):
        raise ForbiddenError("Access denied")


def ensure_admin(actor: User, message: str = "Admin access required") -> None:
    if not actor.is_admin:
        raise ForbiddenError(message)


# =============================================================================
# Payload Normalization
# =============================================================================


EDITABLE_FIELDS = (
    "type",
    "sale",
    "start_date",
    "end_date",
    "tags",
    "status",
    "property_address",
    "client_name",
    "client_email",
    "client_phone",
    "notes",
    "participants",
    "details",
)

_REQUIRED_TEXT_FIELDS = ("type", "property_address")
_DATE_FIELDS = ("start_date", "end_date")
_STATUS_VALUES = frozenset(s.value for s in LoopStatus)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def normalize_participants(raw: Any) -> Optional[List[Dict[str, Any]]]:
    """Coerce a participant list into [{id, name, email}, ...]."""
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("participants must be a list")

    participants = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise ValidationError("each participant must be an object")
        participants.append({
            "id": entry.get("id"),
            "name": entry.get("name"),
            "email": entry.get("email"),
        })
    return participants


def normalize_field(name: str, value: Any) -> Any:
    """
    Validate and coerce one editable loop field.

    Raises:
        ValidationError: If the value is unusable for the field.
    """
    if name in _REQUIRED_TEXT_FIELDS:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} is required")
        return value.strip()

    if name == "status":
        if value not in _STATUS_VALUES:
            raise ValidationError(f"status must be one of {sorted(_STATUS_VALUES)}")
        return value

    if name == "sale":
        value = _blank_to_none(value)
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("sale must be a number") from exc

    if name in _DATE_FIELDS:
        value = _blank_to_none(value)
        if value is None:
            return None
        parsed = parse_date(value)
        if parsed is None:
            raise ValidationError(f"{name} must be an ISO date")
        return parsed

    if name == "participants":
        return normalize_participants(value)

    if name == "details":
        return normalize_details(value)

    return _blank_to_none(value)


# =============================================================================
# Serialization
# =============================================================================


def serialize_loop(loop: Loop, creator_name: Optional[str] = None) -> Dict[str, Any]:
    """Convert a loop row into an API-shaped dict."""
    return {
        "id": loop.id,
        "type": loop.type,
        "sale": loop.sale,
        "creator_id": loop.creator_id,
        "creator_name": creator_name,
        "created_at": isoformat_or_none(loop.created_at),
        "updated_at": isoformat_or_none(loop.updated_at),
        "start_date": isoformat_or_none(loop.start_date),
        "end_date": isoformat_or_none(loop.end_date),
        "tags": loop.tags,
        "status": loop.status,
        "property_address": loop.property_address,
        "client_name": loop.client_name,
        "client_email": loop.client_email,
        "client_phone": loop.client_phone,
        "notes": loop.notes,
        "images": list(loop.images or []),
        "participants": list(loop.participants or []),
        "archived": loop.archived,
        "details": dict(loop.details) if loop.details is not None else None,
        "compliance_status": loop.compliance_status,
        "compliance_requested_at": isoformat_or_none(loop.compliance_requested_at),
        "compliance_reviewed_at": isoformat_or_none(loop.compliance_reviewed_at),
        "compliance_reviewer_id": loop.compliance_reviewer_id,
    }


@dataclass
class DeletedLoop:
    """What was removed by a loop deletion."""

    loop_id: int
    type: str
    property_address: str
    image_files: List[str] = field(default_factory=list)
    document_files: List[str] = field(default_factory=list)


# =============================================================================
# Loop Service
# =============================================================================


class LoopService:
    """Service for creating, querying and maintaining loops."""

    def __init__(self, session: Session):
        """Initialize the loop service."""
        self.session = session

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _select(self) -> Select:
        return select(Loop, User.name.label("creator_name")).outerjoin(
            User, Loop.creator_id == User.id
        )

    def _rows(self, stmt: Select) -> List[Dict[str, Any]]:
        return [serialize_loop(loop, creator_name) for loop, creator_name in self.session.execute(stmt)]

    def list_loops(
        self,
        filters: LoopFilter,
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """
        List loops matching a filter.

        The sort column always comes from the SortField allow-list, so no
        caller-supplied text reaches the ORDER BY clause.

        Args:
            filters: Filter, sort and limit options.
            today: Reference date for the current-month window.

        Returns:
            Loop dicts including creator_name.
        """
        stmt = self._select().where(Loop.archived.is_(filters.archived))

        if filters.status:
            stmt = stmt.where(Loop.status == filters.status)
        if filters.type:
            stmt = stmt.where(Loop.type == filters.type)
        if filters.creator_id is not None:
            stmt = stmt.where(Loop.creator_id == filters.creator_id)
        if filters.search:
            pattern = f"%{_escape_like(filters.search)}%"
            stmt = stmt.where(
                or_(
                    Loop.property_address.ilike(pattern, escape="\\"),
                    Loop.client_name.ilike(pattern, escape="\\"),
                    Loop.tags.ilike(pattern, escape="\\"),
                )
            )
        if filters.end_month == CURRENT_MONTH:
            first, last = month_bounds(today or current_date())
            stmt = stmt.where(Loop.end_date.between(first, last))

        column = _SORT_COLUMNS[filters.sort]
        if filters.order is SortOrder.ASC:
            stmt = stmt.order_by(column.asc(), Loop.id.asc())
        else:
            stmt = stmt.order_by(column.desc(), Loop.id.desc())

        if filters.limit:
            stmt = stmt.limit(filters.limit)

        return self._rows(stmt)

    def get_loop(self, loop_id: int) -> Loop:
        """Fetch a loop or raise NotFoundError."""
        loop = self.session.get(Loop, loop_id)
        if loop is None:
            raise NotFoundError("Loop not found")
        return loop

    def get_accessible_loop(self, loop_id: int, actor: User) -> Loop:
        """Fetch a loop the actor may see and act on."""
        loop = self.get_loop(loop_id)
        ensure_can_access(actor, loop)
        return loop

    def get_loop_detail(self, loop_id: int, actor: User) -> Dict[str, Any]:
        """Serialized loop with creator_name, subject to visibility rules."""
        loop = self.get_accessible_loop(loop_id, actor)
        creator_name = loop.creator.name if loop.creator else None
        return serialize_loop(loop, creator_name)

    def _scoped_deadline_query(self, creator_id: Optional[int]) -> Select:
        stmt = self._select().where(
            Loop.archived.is_(False),
            Loop.status.in_(OPEN_STATUSES),
            Loop.end_date.is_not(None),
        )
        if creator_id is not None:
            stmt = stmt.where(Loop.creator_id == creator_id)
        return stmt

    def closing_loops(
        self,
        creator_id: Optional[int] = None,
        today: Optional[date] = None,
        days: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Open, non-archived loops whose end date falls within the closing window.

        Args:
            creator_id: Restrict to one creator's loops.
            today: Reference date (defaults to the current UTC date).
            days: Window length, inclusive of both ends (CLOSING_SOON_DAYS).

        Returns:
            Loop dicts ordered by end_date ascending.
        """
        start = today or current_date()
        window = SETTINGS.closing_soon_days if days is None else days
        stmt = self._scoped_deadline_query(creator_id).where(
            Loop.end_date.between(start, start + timedelta(days=window))
        ).order_by(Loop.end_date.asc(), Loop.id.asc())
        return self._rows(stmt)

    def overdue_loops(
        self,
        creator_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Open, non-archived loops whose end date has passed, oldest first."""
        start = today or current_date()
        stmt = self._scoped_deadline_query(creator_id).where(
            Loop.end_date < start
        ).order_by(Loop.end_date.asc(), Loop.id.asc())
        return self._rows(stmt)

    def stats(self) -> LoopStats:
        """Counts by status and total sale value over non-archived loops."""
        row = self.session.execute(
            select(
                func.count(Loop.id),
                func.count(case((Loop.status == LoopStatus.ACTIVE.value, 1))),
                func.count(case((Loop.status == LoopStatus.CLOSING.value, 1))),
                func.count(case((Loop.status == LoopStatus.CLOSED.value, 1))),
                func.sum(Loop.sale),
            ).where(Loop.archived.is_(False))
        ).one()
        total, active, closing, closed, total_sales = row
        return LoopStats(
            total=total or 0,
            active=active or 0,
            closing=closing or 0,
            closed=closed or 0,
            total_sales=float(total_sales or 0),
        )

    def dashboard_stats(self, actor: User, today: Optional[date] = None) -> LoopStats:
        """Global stats plus the actor-scoped closing-soon count."""
        base = self.stats()
        creator_id = None if actor.is_admin else actor.id
        closing_soon = len(self.closing_loops(creator_id=creator_id, today=today))
        return replace(base, closing_soon=closing_soon)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create_loop(self, data: Mapping[str, Any], actor: User) -> Loop:
        """
        Create a loop owned by the acting user.

        Args:
            data: Field values; type and property_address are required.
            actor: The creating user.

        Returns:
            The persisted Loop.

        Raises:
            ValidationError: If required fields are missing or malformed.
        """
        values = {name: normalize_field(name, data[name]) for name in EDITABLE_FIELDS if name in data}
        for name in _REQUIRED_TEXT_FIELDS:
            if name not in values:
                raise ValidationError("Type and property address are required")

        now = utcnow()
        loop = Loop(
            **values,
            creator_id=actor.id,
            archived=False,
            created_at=now,
            updated_at=now,
        )
        if loop.status is None:
            loop.status = LoopStatus.ACTIVE.value
        self.session.add(loop)
        self.session.flush()

        LOGGER.info(f"Created loop {loop.id} ({loop.type}) for {loop.property_address}")
        return loop

    def update_loop(
        self,
        loop_id: int,
        changes: Mapping[str, Any],
        actor: User,
    ) -> Tuple[Loop, Dict[str, Any]]:
        """
        Apply a partial update to a loop.

        Only keys present in ``changes`` are considered; every other field is
        left exactly as stored. When nothing differs, the row is not written
        and updated_at stays put.

        Args:
            loop_id: Loop to update.
            changes: Field name to new value.
            actor: The acting user (owner or admin).

        Returns:
            (loop, applied) where applied maps each changed field to its new value.
        """
        loop = self.get_accessible_loop(loop_id, actor)

        unknown = [name for name in changes if name not in EDITABLE_FIELDS]
        if unknown:
            raise ValidationError(f"Unknown loop fields: {', '.join(sorted(unknown))}")

        applied: Dict[str, Any] = {}
        for name, raw in changes.items():
            value = normalize_field(name, raw)
            if getattr(loop, name) != value:
                applied[name] = value

        if applied:
            for name, value in applied.items():
                setattr(loop, name, value)
            loop.updated_at = utcnow()
            self.session.flush()
            LOGGER.info(f"Updated loop {loop.id}: {sorted(applied)}")

        return loop, applied

    def set_images(self, loop: Loop, images: Iterable[Dict[str, Any]]) -> None:
        """Replace the stored image list (callers handle file storage)."""
        loop.images = list(images) or None
        loop.updated_at = utcnow()
        self.session.flush()

    def remove_image(self, loop_id: int, filename: str, actor: User) -> Dict[str, Any]:
        """
        Detach one image from a loop.

        Returns:
            The removed image entry, so the caller can delete the file.
        """
        loop = self.get_accessible_loop(loop_id, actor)
        images = list(loop.images or [])
        if not images:
            raise NotFoundError("No images found for this loop")

        match = next((img for img in images if img.get("filename") == filename), None)
        if match is None:
            raise NotFoundError("Image not found")

        self.set_images(loop, [img for img in images if img is not match])
        return match

    def delete_loop(self, loop_id: int, actor: User) -> DeletedLoop:
        """
        Hard-delete a loop together with its task and document rows.

        Returns:
            A DeletedLoop naming the stored files the caller should remove.
        """
        loop = self.get_loop(loop_id)
        ensure_admin(actor, "Only admins can delete loops")

        documents = self.session.scalars(
            select(LoopDocument).where(LoopDocument.loop_id == loop_id)
        ).all()
        deleted = DeletedLoop(
            loop_id=loop.id,
            type=loop.type,
            property_address=loop.property_address,
            image_files=[img.get("filename") for img in (loop.images or []) if img.get("filename")],
            document_files=[doc.filename for doc in documents],
        )

        self.session.execute(delete(LoopTask).where(LoopTask.loop_id == loop_id))
        self.session.execute(delete(LoopDocument).where(LoopDocument.loop_id == loop_id))
        self.session.delete(loop)
        self.session.flush()

        LOGGER.info(
            f"Deleted loop {loop_id} with {len(documents)} documents and "
            f"{len(deleted.image_files)} images"
        )
        return deleted

    def set_archived(self, loop_id: int, archived: bool, actor: User) -> Loop:
        """Archive or restore a loop."""
        loop = self.get_loop(loop_id)
        verb = "archive" if archived else "unarchive"
        ensure_admin(actor, f"Only admins can {verb} loops")
        if loop.archived != archived:
            loop.archived = archived
            loop.updated_at = utcnow()
            self.session.flush()
        LOGGER.info(f"Loop {loop_id} archived={archived}")
        return loop

    def archive_loop(self, loop_id: int, actor: User) -> Loop:
        return self.set_archived(loop_id, True, actor)

    def unarchive_loop(self, loop_id: int, actor: User) -> Loop:
        return self.set_archived(loop_id, False, actor)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


__all__ = [
    "SortField",
    "SortOrder",
    "LoopFilter",
    "LoopService",
    "DeletedLoop",
    "EDITABLE_FIELDS",
    "CURRENT_MONTH",
    "parse_limit",
    "parse_flag",
    "can_access_loop",
    "ensure_can_access",
    "ensure_admin",
    "normalize_field",
    "normalize_participants",
    "serialize_loop",
]
