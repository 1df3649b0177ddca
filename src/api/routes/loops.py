"""Loop routes: listing, CRUD, images, documents, tasks, compliance and activity."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user, require_admin
from api.deps import client_ip, get_db, get_notifier, get_storage
from core.logging_config import get_logger
from core.models import User
from core.utils import today as current_date
from domain.compliance import ComplianceService
from domain.details import DETAILS_GROUPS, require_known_detail_keys
from domain.documents import DocumentService
from domain.listing import (
    ArchivedMode,
    BrowseRequest,
    LoopListingService,
    ReviewFilter,
    status_for_ui_key,
)
from domain.loops import LoopFilter, LoopService, SortOrder, serialize_loop
from domain.tasks import TaskService
from domain.urgency import with_urgency
from services.activity import ActivityAction, ActivityLogService
from services.notification import NotificationService
from services.storage import DOCUMENTS_SUBDIR, IMAGES_SUBDIR, IncomingFile, UploadStorage

router = APIRouter()
LOGGER = get_logger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================


class Participant(BaseModel):
    """A person attached to a loop."""

    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None


class LoopFields(BaseModel):
    """Editable loop fields. Values are validated by the loop service."""

    model_config = ConfigDict(extra="forbid")

    type: Optional[str] = Field(None, description="Transaction type")
    sale: Optional[float] = Field(None, description="Sale price")
    start_date: Optional[str] = Field(None, description="ISO start date")
    end_date: Optional[str] = Field(None, description="ISO end (closing) date")
    tags: Optional[str] = Field(None, description="Free-form tags")
    status: Optional[str] = Field(None, description="Stored loop status")
    property_address: Optional[str] = Field(None, description="Property address")
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    notes: Optional[str] = None
    participants: Optional[List[Participant]] = None
    details: Optional[Dict[str, Any]] = Field(None, description="Open key/value details")


class LoopCreate(LoopFields):
    """Request body for loop creation."""


class LoopUpdate(LoopFields):
    """Request body for a partial loop update. Omitted fields are preserved."""


class TaskCreate(BaseModel):
    """Request body for adding a task."""

    title: Optional[str] = None
    due_date: Optional[str] = None


class TaskUpdate(BaseModel):
    """Request body for updating a task. Null fields are left unchanged."""

    title: Optional[str] = None
    due_date: Optional[str] = None
    completed: Optional[bool] = None


# =============================================================================
# Helpers
# =============================================================================


def _row(row: Dict[str, Any]) -> Dict[str, Any]:
    return with_urgency(row, current_date())


def _loop_payload(body: LoopFields) -> Dict[str, Any]:
    data = body.model_dump(exclude_unset=True)
    if "details" in data:
        require_known_detail_keys(data["details"])
    return data


async def _read_uploads(files: List[UploadFile]) -> List[IncomingFile]:
    incoming = []
    for upload in files:
        incoming.append(
            IncomingFile(
                original_name=upload.filename or "upload",
                mimetype=upload.content_type or "",
                data=await upload.read(),
            )
        )
    return incoming


# =============================================================================
# Listing Routes
# =============================================================================


@router.get("")
async def list_loops(
    status: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    end_month: Optional[str] = Query(default=None, description="'current' for this month"),
    creator_id: Optional[int] = Query(default=None, description="Admins only"),
    archived: Optional[str] = Query(default=None),
    sort: Optional[str] = Query(default=None),
    order: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """List loops. Non-admins only ever see the loops they created."""
    filters = LoopFilter.from_params(
        status=status,
        type=type,
        search=search,
        end_month=end_month,
        creator_id=creator_id,
        archived=archived,
        sort=sort,
        order=order,
        limit=limit,
    ).scoped_to(user)

    rows = LoopService(db).list_loops(filters)
    loops = [_row(r) for r in rows]
    return {"success": True, "loops": loops, "count": len(loops)}


@router.get("/browse")
async def browse_loops(
    status: Optional[str] = Query(default=None, description="Stored status or toolbar key"),
    type: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    end_month: Optional[str] = Query(default=None),
    archived_mode: Optional[str] = Query(default=None, description="hide, only or all"),
    sort: Optional[str] = Query(default=None),
    order: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    review_stage: Optional[str] = Query(default=None),
    listing_contract: List[str] = Query(default=[]),
    buying_contract: List[str] = Query(default=[]),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Browse loops with any sort key, archive modes and review filters."""
    filters = LoopFilter.from_params(
        status=status_for_ui_key(status),
        type=type,
        search=search,
        end_month=end_month,
        limit=limit,
    )
    request = BrowseRequest(
        filters=filters,
        sort=sort or filters.sort.value,
        order=SortOrder.parse(order),
        archived_mode=ArchivedMode.parse(archived_mode),
        review=ReviewFilter(
            review_stage=review_stage or None,
            listing_contract=tuple(listing_contract),
            buying_contract=tuple(buying_contract),
        ),
        limit=filters.limit,
    )

    rows = LoopListingService(db).browse(request, actor=user, today=current_date())
    loops = [_row(r) for r in rows]
    return {"success": True, "loops": loops, "count": len(loops)}


@router.get("/stats")
async def get_dashboard_stats(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Dashboard counters: status counts, total sales and closing-soon count."""
    stats = LoopService(db).dashboard_stats(user, today=current_date())
    return {"success": True, "stats": stats.as_dict()}


@router.get("/closing")
async def get_closing_loops(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Open loops whose end date falls within the closing-soon window."""
    creator_id = None if user.is_admin else user.id
    rows = LoopService(db).closing_loops(creator_id=creator_id, today=current_date())
    return {"success": True, "loops": [_row(r) for r in rows]}


@router.get("/overdue")
async def get_overdue_loops(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Open loops whose end date has passed."""
    creator_id = None if user.is_admin else user.id
    rows = LoopService(db).overdue_loops(creator_id=creator_id, today=current_date())
    return {"success": True, "loops": [_row(r) for r in rows]}


@router.get("/details-groups")
async def get_details_groups(
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Registered detail field groups, in display order."""
    return {"success": True, "groups": [g.to_dict() for g in DETAILS_GROUPS]}


# =============================================================================
# Loop CRUD
# =============================================================================


@router.post("", status_code=201)
async def create_loop(
    body: LoopCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: NotificationService = Depends(get_notifier),
) -> Dict[str, Any]:
    """Create a loop owned by the current user and notify admins."""
    loop = LoopService(db).create_loop(_loop_payload(body), user)
    row = serialize_loop(loop, user.name)

    ActivityLogService(db).log(
        user.id,
        ActivityAction.LOOP_CREATED,
        f"Created {loop.type} loop for {loop.property_address}",
        loop_id=loop.id,
        ip_address=client_ip(request),
    )
    background_tasks.add_task(notifier.notify_loop_created, row, user.name)

    return {
        "success": True,
        "message": "Loop created successfully",
        "id": loop.id,
        "loop": _row(row),
    }


@router.get("/{loop_id}")
async def get_loop(
    loop_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Get one loop the current user may see."""
    row = LoopService(db).get_loop_detail(loop_id, user)
    return {"success": True, "loop": _row(row)}


@router.put("/{loop_id}")
async def update_loop(
    loop_id: int,
    body: LoopUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: NotificationService = Depends(get_notifier),
) -> Dict[str, Any]:
    """Apply a partial update. Fields missing from the body keep their values."""
    service = LoopService(db)
    loop, applied = service.update_loop(loop_id, _loop_payload(body), user)
    row = serialize_loop(loop, loop.creator.name if loop.creator else None)

    if applied:
        changes = {name: row.get(name) for name in applied}
        ActivityLogService(db).log(
            user.id,
            ActivityAction.LOOP_UPDATED,
            f"Updated loop for {loop.property_address}",
            loop_id=loop.id,
            metadata={"fields": sorted(applied)},
            ip_address=client_ip(request),
        )
        background_tasks.add_task(notifier.notify_loop_updated, row, user.name, changes)

    return {
        "success": True,
        "message": "Loop updated successfully" if applied else "No changes",
        "changed": bool(applied),
        "loop": _row(row),
    }


@router.delete("/{loop_id}")
async def delete_loop(
    loop_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    storage: UploadStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """Delete a loop with its tasks, documents and stored files (admin only)."""
    deleted = LoopService(db).delete_loop(loop_id, user)

    ActivityLogService(db).log(
        user.id,
        ActivityAction.LOOP_DELETED,
        f"Deleted {deleted.type} loop for {deleted.property_address}",
        loop_id=deleted.loop_id,
        ip_address=client_ip(request),
    )
    if deleted.image_files:
        background_tasks.add_task(storage.delete_images, deleted.image_files)
    if deleted.document_files:
        background_tasks.add_task(storage.delete_documents, deleted.document_files)

    return {"success": True, "message": "Loop deleted successfully"}


@router.put("/{loop_id}/archive")
async def archive_loop(
    loop_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Hide a loop from default views (admin only)."""
    loop = LoopService(db).archive_loop(loop_id, user)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.LOOP_ARCHIVED,
        f"Archived loop for {loop.property_address}",
        loop_id=loop.id,
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "Loop archived successfully"}


@router.put("/{loop_id}/unarchive")
async def unarchive_loop(
    loop_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Restore an archived loop (admin only)."""
    loop = LoopService(db).unarchive_loop(loop_id, user)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.LOOP_UNARCHIVED,
        f"Unarchived loop for {loop.property_address}",
        loop_id=loop.id,
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "Loop unarchived successfully"}


# =============================================================================
# Images
# =============================================================================


@router.post("/{loop_id}/images", status_code=201)
async def upload_images(
    loop_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    images: List[UploadFile] = File(...),
    replace_images: bool = Form(False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: UploadStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """
    Attach images to a loop.

    New images are appended unless ``replace_images`` is set, in which case
    the previous images and their files are removed.
    """
    service = LoopService(db)
    loop = service.get_accessible_loop(loop_id, user)

    stored = storage.save_images(await _read_uploads(images))
    storage.discard_on_rollback(db, IMAGES_SUBDIR, stored)
    entries = [s.to_image_entry() for s in stored]

    previous = list(loop.images or [])
    if replace_images:
        service.set_images(loop, entries)
        old_files = [img.get("filename") for img in previous if img.get("filename")]
        if old_files:
            background_tasks.add_task(storage.delete_images, old_files)
    else:
        service.set_images(loop, previous + entries)

    ActivityLogService(db).log(
        user.id,
        ActivityAction.IMAGES_UPLOADED,
        f"Uploaded {len(entries)} image(s)",
        loop_id=loop.id,
        metadata={"files": [e["filename"] for e in entries], "replaced": replace_images},
        ip_address=client_ip(request),
    )
    return {"success": True, "images": list(loop.images or [])}


@router.delete("/{loop_id}/images/{filename}")
async def delete_image(
    loop_id: int,
    filename: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: UploadStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """Remove one image from a loop; its file is deleted after the response."""
    service = LoopService(db)
    removed = service.remove_image(loop_id, filename, user)
    background_tasks.add_task(storage.delete_images, [removed["filename"]])

    ActivityLogService(db).log(
        user.id,
        ActivityAction.IMAGE_DELETED,
        f"Deleted image {removed.get('original_name') or filename}",
        loop_id=loop_id,
        ip_address=client_ip(request),
    )
    loop = service.get_loop(loop_id)
    return {
        "success": True,
        "message": "Image deleted successfully",
        "images": list(loop.images or []),
    }


# =============================================================================
# Documents
# =============================================================================


@router.get("/{loop_id}/documents")
async def list_documents(
    loop_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Documents for a loop, newest first."""
    documents = DocumentService(db).list_documents(loop_id, user)
    return {"success": True, "documents": [d.to_dict() for d in documents]}


@router.post("/{loop_id}/documents", status_code=201)
async def upload_documents(
    loop_id: int,
    request: Request,
    documents: List[UploadFile] = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: UploadStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """Upload documents to a loop."""
    service = DocumentService(db)
    service.ensure_can_upload(loop_id, user)

    stored = storage.save_documents(await _read_uploads(documents))
    storage.discard_on_rollback(db, DOCUMENTS_SUBDIR, stored)
    rows = service.add_documents(loop_id, stored, user)

    ActivityLogService(db).log(
        user.id,
        ActivityAction.DOCUMENT_UPLOADED,
        f"Uploaded {len(rows)} document(s)",
        loop_id=loop_id,
        metadata={"files": [r.original_name for r in rows]},
        ip_address=client_ip(request),
    )
    return {
        "success": True,
        "message": "Documents uploaded",
        "uploaded": len(rows),
        "documents": [r.to_dict() for r in rows],
    }


@router.get("/{loop_id}/documents/{document_id}/download")
async def download_document(
    loop_id: int,
    document_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: UploadStorage = Depends(get_storage),
) -> FileResponse:
    """Stream a stored document under its original name."""
    document = DocumentService(db).get_document(loop_id, document_id, user)
    path = storage.path_for(DOCUMENTS_SUBDIR, document.filename)
    return FileResponse(path, media_type=document.mimetype, filename=document.original_name)


@router.delete("/{loop_id}/documents/{document_id}")
async def delete_document(
    loop_id: int,
    document_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: UploadStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """Delete a document; its stored file is removed after the response."""
    document = DocumentService(db).delete_document(loop_id, document_id, user)
    background_tasks.add_task(storage.delete_documents, [document.filename])

    ActivityLogService(db).log(
        user.id,
        ActivityAction.DOCUMENT_DELETED,
        f"Deleted document {document.original_name}",
        loop_id=loop_id,
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "Document deleted"}


# =============================================================================
# Tasks
# =============================================================================


@router.get("/{loop_id}/tasks")
async def list_tasks(
    loop_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Tasks for a loop: open first, soonest due first, undated last."""
    tasks = TaskService(db).list_tasks(loop_id, user)
    return {"success": True, "tasks": [t.to_dict() for t in tasks]}


@router.post("/{loop_id}/tasks", status_code=201)
async def add_task(
    loop_id: int,
    body: TaskCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Add a task to a loop."""
    task = TaskService(db).add_task(loop_id, body.title, user, due_date=body.due_date)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.TASK_CREATED,
        f"Added task: {task.title}",
        loop_id=loop_id,
        ip_address=client_ip(request),
    )
    return {"success": True, "taskId": task.id, "task": task.to_dict()}


@router.put("/{loop_id}/tasks/{task_id}")
async def update_task(
    loop_id: int,
    task_id: int,
    body: TaskUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Update a task's title, due date or completion."""
    task = TaskService(db).update_task(loop_id, task_id, body.model_dump(), user)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.TASK_UPDATED,
        f"Updated task: {task.title}",
        loop_id=loop_id,
        metadata={"completed": task.completed},
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "Task updated", "task": task.to_dict()}


@router.delete("/{loop_id}/tasks/{task_id}")
async def delete_task(
    loop_id: int,
    task_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Delete a task."""
    TaskService(db).delete_task(loop_id, task_id, user)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.TASK_DELETED,
        f"Deleted task {task_id}",
        loop_id=loop_id,
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "Task deleted"}


# =============================================================================
# Compliance
# =============================================================================


@router.post("/{loop_id}/compliance/request")
async def request_compliance_review(
    loop_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Submit a loop for compliance review."""
    loop = ComplianceService(db).request_review(loop_id, user)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.COMPLIANCE_REQUESTED,
        "Requested compliance review",
        loop_id=loop.id,
        ip_address=client_ip(request),
    )
    return {
        "success": True,
        "message": "Compliance review requested",
        "compliance_status": loop.compliance_status,
    }


@router.put("/{loop_id}/compliance/approve")
async def approve_compliance(
    loop_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Approve a loop's paperwork (admin only)."""
    loop = ComplianceService(db).approve(loop_id, user)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.COMPLIANCE_APPROVED,
        "Approved compliance",
        loop_id=loop.id,
        ip_address=client_ip(request),
    )
    return {
        "success": True,
        "message": "Compliance approved",
        "compliance_status": loop.compliance_status,
    }


@router.put("/{loop_id}/compliance/deny")
async def deny_compliance(
    loop_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Return a loop's paperwork to the agent (admin only)."""
    loop = ComplianceService(db).deny(loop_id, user)
    ActivityLogService(db).log(
        user.id,
        ActivityAction.COMPLIANCE_DENIED,
        "Denied compliance",
        loop_id=loop.id,
        ip_address=client_ip(request),
    )
    return {
        "success": True,
        "message": "Compliance denied",
        "compliance_status": loop.compliance_status,
    }


# =============================================================================
# Activity
# =============================================================================


@router.get("/{loop_id}/activity")
async def get_loop_activity(
    loop_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Latest activity for a loop, newest first."""
    LoopService(db).get_accessible_loop(loop_id, user)
    logs = ActivityLogService(db).get_loop_activity(loop_id)
    return {"success": True, "logs": [entry.to_dict() for entry in logs], "count": len(logs)}
