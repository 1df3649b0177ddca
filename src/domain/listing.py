"""Loop browsing: archive-mode merging, extended sort keys and review filters.

The store can only order by the SortField allow-list. Browsing also allows
sorting by other loop fields (agent name, submission time, listing start)
and showing archived and live loops together; those cases are finished in
memory over serialized rows. Review-tag filters always run in memory, after
sorting, so they never disturb the order of the rows they keep.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from core.logging_config import get_logger
from core.models import ComplianceStatus, LoopStatus, User
from core.utils import parse_datetime
from domain.loops import LoopFilter, LoopService, SortField, SortOrder

LOGGER = get_logger(__name__)

Row = Mapping[str, Any]


class ArchivedMode(str, enum.Enum):
    """Which archival states a browse request covers."""
    HIDE = "hide"
    ONLY = "only"
    ALL = "all"

    @classmethod
    def parse(cls, value: Any) -> "ArchivedMode":
        try:
            return cls(value)
        except ValueError:
            return cls.HIDE


# Toolbar status keys and the stored status each one selects
UI_STATUS_TO_API: Dict[str, str] = {
    "pre-listing": LoopStatus.ACTIVE.value,
    "private-listing": LoopStatus.ACTIVE.value,
    "active-listing": LoopStatus.ACTIVE.value,
    "under-contract": LoopStatus.UNDER_CONTRACT.value,
    "withdrawn": LoopStatus.WITHDRAWN.value,
    "sold": LoopStatus.SOLD.value,
    "terminated": LoopStatus.TERMINATED.value,
    "leased": LoopStatus.CLOSED.value,
    "pre-offer": LoopStatus.PRE_OFFER.value,
    "new": LoopStatus.ACTIVE.value,
    "in-progress": LoopStatus.CLOSING.value,
    "done": LoopStatus.CLOSED.value,
}


def status_for_ui_key(key: Optional[str]) -> Optional[str]:
    """
    Stored status for a toolbar key.

    Stored status values pass through unchanged; blank means no filter.
    """
    if not key:
        return None
    return UI_STATUS_TO_API.get(key, key)


# =============================================================================
# Merge
# =============================================================================


def merge_rows(*batches: Iterable[Row]) -> List[Row]:
    """
    Concatenate row batches, keeping one row per id.

    A later row with the same id replaces the earlier one in place.
    """
    merged: Dict[Any, Row] = {}
    for batch in batches:
        for row in batch:
            merged[row["id"]] = row
    return list(merged.values())


# =============================================================================
# In-memory Sort
# =============================================================================


SORT_GETTERS: Dict[str, Callable[[Row], Any]] = {
    "start_date": lambda row: row.get("start_date") or "",
    "compliance_requested_at": lambda row: row.get("compliance_requested_at") or "",
    "creator_name": lambda row: (row.get("creator_name") or "").lower(),
}


def sort_value(row: Row, key: str) -> Any:
    getter = SORT_GETTERS.get(key)
    return getter(row) if getter else row.get(key)


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, (date, datetime)) or isinstance(value, str):
        return parse_datetime(value)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def compare_values(a: Any, b: Any) -> int:
    """
    Ascending comparison of two present values.

    Dates compare as dates, numbers numerically, and anything else by its
    text.
    """
    da, db = _as_datetime(a), _as_datetime(b)
    if da is not None and db is not None:
        return _cmp(da, db)
    if _is_number(a) and _is_number(b):
        return _cmp(a, b)
    if isinstance(a, str) and isinstance(b, str):
        return _cmp(a, b)
    return _cmp(str(a), str(b))


def sort_rows(rows: Sequence[Row], key: str, order: SortOrder) -> List[Row]:
    """
    Stable sort of serialized loops by any field.

    Missing and empty values go last in both directions.
    """
    direction = 1 if order is SortOrder.ASC else -1

    def comparator(left: Row, right: Row) -> int:
        a, b = sort_value(left, key), sort_value(right, key)
        a_missing, b_missing = _is_missing(a), _is_missing(b)
        if a_missing and b_missing:
            return 0
        if a_missing:
            return 1
        if b_missing:
            return -1
        return compare_values(a, b) * direction

    return sorted(rows, key=cmp_to_key(comparator))


# =============================================================================
# Review Filters
# =============================================================================


def _compliance_is(status: ComplianceStatus) -> Callable[[Row], bool]:
    return lambda row: row.get("compliance_status") == status.value


def _returned_or_terminated(row: Row) -> bool:
    return (
        row.get("compliance_status") == ComplianceStatus.DENIED.value
        or row.get("status") == LoopStatus.TERMINATED.value
    )


def _always(row: Row) -> bool:
    return True


REVIEW_TAG_PREDICATES: Dict[str, Callable[[Row], bool]] = {
    "need_review": _compliance_is(ComplianceStatus.PENDING),
    "approved_for_commission": _compliance_is(ComplianceStatus.APPROVED),
    "listing_approved": _compliance_is(ComplianceStatus.APPROVED),
    "returned_to_agent": _returned_or_terminated,
    "terminated": _returned_or_terminated,
    "closed": lambda row: row.get("status") == LoopStatus.CLOSED.value,
    # Document categories are browsing aids and never narrow the list
    "listing_documents": _always,
    "contract_documents": _always,
}

UNSUBMITTED = "unsubmitted"


def matches_any_tag(row: Row, tags: Iterable[str]) -> bool:
    """True if any selected tag's predicate accepts the row. Unknown tags accept."""
    return any(REVIEW_TAG_PREDICATES.get(tag, _always)(row) for tag in tags)


@dataclass(frozen=True)
class ReviewFilter:
    """Review-stage and tag selections for listing-side and buying-side loops."""

    review_stage: Optional[str] = None
    listing_contract: Tuple[str, ...] = ()
    buying_contract: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.review_stage or self.listing_contract or self.buying_contract)

    def matches(self, row: Row) -> bool:
        if self.review_stage == UNSUBMITTED:
            if row.get("compliance_status") not in (None, "", ComplianceStatus.NONE.value):
                return False
        for group in (self.listing_contract, self.buying_contract):
            if group and not matches_any_tag(row, group):
                return False
        return True

    def apply(self, rows: Iterable[Row]) -> List[Row]:
        return [row for row in rows if self.matches(row)]


# =============================================================================
# Browse
# =============================================================================


@dataclass(frozen=True)
class BrowseRequest:
    """Everything a loop browse view can ask for."""

    filters: LoopFilter = field(default_factory=LoopFilter)
    sort: str = SortField.CREATED_AT.value
    order: SortOrder = SortOrder.DESC
    archived_mode: ArchivedMode = ArchivedMode.HIDE
    review: ReviewFilter = field(default_factory=ReviewFilter)
    limit: Optional[int] = None

    @property
    def store_sortable(self) -> bool:
        return SortField.supports(self.sort)


class LoopListingService:
    """Runs browse requests, letting the store sort when it can."""

    def __init__(self, session: Session):
        """Initialize the listing service."""
        self.session = session
        self.loops = LoopService(session)

    def _server_filter(self, request: BrowseRequest, actor: Optional[User]) -> LoopFilter:
        base = request.filters.scoped_to(actor)
        if request.store_sortable:
            return replace(base, sort=SortField(request.sort), order=request.order, limit=None)
        return replace(base, sort=SortField.CREATED_AT, order=SortOrder.DESC, limit=None)

    def browse(
        self,
        request: BrowseRequest,
        actor: Optional[User] = None,
        today: Optional[date] = None,
    ) -> List[Row]:
        """
        Run a browse request.

        Args:
            request: Filters, sort, archive mode and review selections.
            actor: Non-admin actors only ever see their own loops.
            today: Reference date for current-month filtering.

        Returns:
            Serialized loops in final display order.
        """
        server_filter = self._server_filter(request, actor)

        if request.archived_mode is ArchivedMode.ALL:
            rows = merge_rows(
                self.loops.list_loops(replace(server_filter, archived=False), today=today),
                self.loops.list_loops(replace(server_filter, archived=True), today=today),
            )
        else:
            archived = request.archived_mode is ArchivedMode.ONLY
            rows = self.loops.list_loops(replace(server_filter, archived=archived), today=today)

        # Two result sets are each ordered; only a full re-sort orders the union
        if not request.store_sortable or request.archived_mode is ArchivedMode.ALL:
            rows = sort_rows(rows, request.sort, request.order)

        if not request.review.is_empty:
            rows = request.review.apply(rows)

        if request.limit:
            rows = rows[: request.limit]

        LOGGER.debug(
            f"Browse sort={request.sort} mode={request.archived_mode.value} -> {len(rows)} rows"
        )
        return rows


__all__ = [
    "ArchivedMode",
    "BrowseRequest",
    "LoopListingService",
    "ReviewFilter",
    "REVIEW_TAG_PREDICATES",
    "SORT_GETTERS",
    "UI_STATUS_TO_API",
    "UNSUBMITTED",
    "compare_values",
    "matches_any_tag",
    "merge_rows",
    "sort_rows",
    "sort_value",
    "status_for_ui_key",
]
