"""Domain layer for loop tracker business logic.

This module keeps business rules apart from infrastructure (CLI, API).
All loop, task, document, compliance and organization operations go
through the domain services.
"""
from __future__ import annotations

from .loops import LoopService, LoopFilter, SortField, SortOrder, DeletedLoop
from .compliance import ComplianceService, ComplianceAction
from .listing import LoopListingService, BrowseRequest, ArchivedMode, ReviewFilter
from .urgency import Urgency, UrgencyLevel, classify_urgency
from .tasks import TaskService
from .documents import DocumentService
from .organizations import OrganizationService
from .people import PeopleService

__all__ = [
    # Loops
    "LoopService",
    "LoopFilter",
    "SortField",
    "SortOrder",
    "DeletedLoop",
    # Compliance
    "ComplianceService",
    "ComplianceAction",
    # Listing
    "LoopListingService",
    "BrowseRequest",
    "ArchivedMode",
    "ReviewFilter",
    # Urgency
    "Urgency",
    "UrgencyLevel",
    "classify_urgency",
    # Tasks and documents
    "TaskService",
    "DocumentService",
    # Organizations and people
    "OrganizationService",
    "PeopleService",
]
