"""Documents attached to loops.

Document rows hold metadata only; the bytes are written by UploadStorage.
Rows are never edited after creation.
"""
from __future__ import annotations

from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from core.logging_config import get_logger
from core.models import LoopDocument, User
from core.utils import utcnow
from domain.loops import LoopService
from services.storage import StoredFile

LOGGER = get_logger(__name__)


class DocumentService:
    """Service for a loop's document list."""

    def __init__(self, session: Session):
        """Initialize the document service."""
        self.session = session
        self.loops = LoopService(session)

    def list_documents(self, loop_id: int, actor: User) -> List[LoopDocument]:
        """Documents for a loop, newest first."""
        self.loops.get_accessible_loop(loop_id, actor)
        stmt = (
            select(LoopDocument)
            .where(LoopDocument.loop_id == loop_id)
            .order_by(LoopDocument.created_at.desc(), LoopDocument.id.desc())
        )
        return list(self.session.scalars(stmt))

    def ensure_can_upload(self, loop_id: int, actor: User) -> None:
        """Access check to run before any file is written."""
        self.loops.get_accessible_loop(loop_id, actor)

    def add_documents(
        self,
        loop_id: int,
        files: Iterable[StoredFile],
        actor: User,
    ) -> List[LoopDocument]:
        """
        Record stored files as documents of a loop.

        Args:
            loop_id: Parent loop.
            files: Metadata of files already written to storage.
            actor: Owner of the loop or an admin.

        Returns:
            The new LoopDocument rows.
        """
        self.loops.get_accessible_loop(loop_id, actor)
        now = utcnow()
        documents = [
            LoopDocument(
                loop_id=loop_id,
                filename=f.filename,
                original_name=f.original_name,
                size=f.size,
                mimetype=f.mimetype,
                uploaded_by=actor.id,
                created_at=now,
            )
            for f in files
        ]
        self.session.add_all(documents)
        self.session.flush()

        LOGGER.info(f"Added {len(documents)} document(s) to loop {loop_id}")
        return documents

    def get_document(self, loop_id: int, document_id: int, actor: User) -> LoopDocument:
        """Fetch a document that belongs to an accessible loop."""
        self.loops.get_accessible_loop(loop_id, actor)
        document = self.session.get(LoopDocument, document_id)
        if document is None or document.loop_id != loop_id:
            raise NotFoundError("Document not found")
        return document

    def delete_document(self, loop_id: int, document_id: int, actor: User) -> LoopDocument:
        """
        Delete a document row.

        Returns:
            The deleted row, so the caller can remove the stored file.
        """
        document = self.get_document(loop_id, document_id, actor)
        self.session.delete(document)
        self.session.flush()
        LOGGER.info(f"Deleted document {document_id} from loop {loop_id}")
        return document


__all__ = ["DocumentService"]
