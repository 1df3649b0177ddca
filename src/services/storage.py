"""Local filesystem storage for loop images and documents."""
from __future__ import annotations

import os
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

from sqlalchemy import event
from sqlalchemy.orm import Session

from core.config import get_settings
from core.exceptions import NotFoundError, StorageError, ValidationError
from core.logging_config import get_logger
from core.utils import utcnow

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

DOCUMENT_MIMETYPES: FrozenSet[str] = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
})

IMAGES_SUBDIR = "images"
DOCUMENTS_SUBDIR = "documents"

# session.info key for files written during the current unit of work
PENDING_UPLOADS_KEY = "pending_uploads"


@dataclass
class IncomingFile:
    """An uploaded file as received from the client."""

    original_name: str
    mimetype: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class StoredFile:
    """Metadata for a file written to upload storage."""

    filename: str
    original_name: str
    size: int
    mimetype: str

    def to_image_entry(self) -> Dict[str, Any]:
        """Entry stored in a loop's images list."""
        return {
            "filename": self.filename,
            "original_name": self.original_name,
            "size": self.size,
            "mimetype": self.mimetype,
            "uploaded_at": utcnow().isoformat(),
        }


def _generate_name(prefix: str, original_name: str) -> str:
    """Unique stored name: <prefix>-<epoch ms>-<random><ext>."""
    ext = Path(original_name).suffix.lower()
    if not ext.replace(".", "").isalnum():
        ext = ""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"


def _safe_name(filename: str) -> str:
    name = os.path.basename(filename)
    if not name or name != filename or name in (".", ".."):
        raise NotFoundError("File not found")
    return name


class UploadStorage:
    """
    Writes validated uploads under UPLOAD_DIR.

    Images live in ``images/`` and documents in ``documents/``. Size, count
    and type limits come from settings; a batch is validated completely
    before any file is written.
    """

    def __init__(self, base_dir: Optional[str] = None):
        """Initialize storage rooted at ``base_dir`` (defaults to UPLOAD_DIR)."""
        self.base_dir = Path(base_dir or SETTINGS.upload_dir)

    def _dir(self, subdir: str) -> Path:
        path = self.base_dir / subdir
        path.mkdir(parents=True, exist_ok=True)
        return path

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_images(self, files: Sequence[IncomingFile]) -> None:
        """
        Check an image batch against type, size and count limits.

        Raises:
            ValidationError: On the first file that breaks a rule.
        """
        if len(files) > SETTINGS.max_images_per_request:
            raise ValidationError(
                f"At most {SETTINGS.max_images_per_request} images may be uploaded at once"
            )
        for f in files:
            if not (f.mimetype or "").startswith("image/"):
                raise ValidationError(f"{f.original_name}: only image files are allowed")
            if f.size > SETTINGS.max_image_bytes:
                raise ValidationError(f"{f.original_name}: image exceeds the size limit")

    def validate_documents(self, files: Sequence[IncomingFile]) -> None:
        """
        Check a document batch against type, size and count limits.

        Raises:
            ValidationError: On the first file that breaks a rule.
        """
        if not files:
            raise ValidationError("No documents were uploaded")
        if len(files) > SETTINGS.max_documents_per_request:
            raise ValidationError(
                f"At most {SETTINGS.max_documents_per_request} documents may be uploaded at once"
            )
        for f in files:
            if f.mimetype not in DOCUMENT_MIMETYPES:
                raise ValidationError(
                    f"{f.original_name}: only PDF, Word, Excel and text documents are allowed"
                )
            if f.size > SETTINGS.max_document_bytes:
                raise ValidationError(f"{f.original_name}: document exceeds the size limit")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _write(self, subdir: str, prefix: str, files: Iterable[IncomingFile]) -> List[StoredFile]:
        target = self._dir(subdir)
        stored: List[StoredFile] = []
        try:
            for f in files:
                name = _generate_name(prefix, f.original_name)
                (target / name).write_bytes(f.data)
                stored.append(StoredFile(name, f.original_name, f.size, f.mimetype))
        except OSError as exc:
            self._remove(subdir, [s.filename for s in stored])
            raise StorageError(f"Could not store upload: {exc}") from exc

        LOGGER.info(f"Stored {len(stored)} file(s) in {subdir}")
        return stored

    def save_images(self, files: Sequence[IncomingFile]) -> List[StoredFile]:
        self.validate_images(files)
        return self._write(IMAGES_SUBDIR, "loop", files)

    def save_documents(self, files: Sequence[IncomingFile]) -> List[StoredFile]:
        self.validate_documents(files)
        return self._write(DOCUMENTS_SUBDIR, "doc", files)

    # -------------------------------------------------------------------------
    # Reads and Deletes
    # -------------------------------------------------------------------------

    def path_for(self, subdir: str, filename: str) -> Path:
        """Absolute path of a stored file; raises NotFoundError if missing."""
        path = self.base_dir / subdir / _safe_name(filename)
        if not path.is_file():
            raise NotFoundError("File not found")
        return path

    def _remove(self, subdir: str, filenames: Iterable[str]) -> int:
        removed = 0
        for name in filenames:
            try:
                (self.base_dir / subdir / _safe_name(name)).unlink()
                removed += 1
            except FileNotFoundError:
                LOGGER.warning(f"Stored file already gone: {subdir}/{name}")
            except (OSError, NotFoundError) as exc:
                LOGGER.error(f"Failed to delete {subdir}/{name}: {exc}")
        return removed

    def delete_images(self, filenames: Iterable[str]) -> int:
        """Remove stored images; missing files are logged, not raised."""
        return self._remove(IMAGES_SUBDIR, filenames)

    def delete_documents(self, filenames: Iterable[str]) -> int:
        """Remove stored documents; missing files are logged, not raised."""
        return self._remove(DOCUMENTS_SUBDIR, filenames)

    def discard_on_rollback(self, session: Session, subdir: str, stored: Sequence[StoredFile]) -> None:
        """
        Tie freshly written files to ``session``'s unit of work.

        If the outermost transaction rolls back the files are removed; a
        commit keeps them. SAVEPOINT rollbacks leave them alone.
        """
        pending = session.info.setdefault(PENDING_UPLOADS_KEY, [])
        pending.append((self, subdir, [s.filename for s in stored]))


# =============================================================================
# Session Hooks
# =============================================================================


@event.listens_for(Session, "after_soft_rollback")
def _remove_uploads_on_rollback(session: Session, previous_transaction) -> None:
    if previous_transaction.parent is not None:
        return
    for storage, subdir, filenames in session.info.pop(PENDING_UPLOADS_KEY, []):
        removed = storage._remove(subdir, filenames)
        LOGGER.info(f"Rolled back upload: removed {removed} file(s) from {subdir}")


@event.listens_for(Session, "after_commit")
def _keep_uploads_on_commit(session: Session) -> None:
    if session.in_nested_transaction():
        return
    session.info.pop(PENDING_UPLOADS_KEY, None)


__all__ = [
    "DOCUMENT_MIMETYPES",
    "IMAGES_SUBDIR",
    "DOCUMENTS_SUBDIR",
    "PENDING_UPLOADS_KEY",
    "IncomingFile",
    "StoredFile",
    "UploadStorage",
]
