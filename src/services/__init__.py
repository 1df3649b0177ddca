"""Side-effect services for the loop tracker.

This module provides:
- Activity logging (audit trail per user and loop)
- Admin email notifications
- Upload storage for loop images and documents

Activity and notification failures are logged and never fail the
request that triggered them.
"""
from __future__ import annotations

from .activity import ActivityAction, ActivityLogService
from .notification import NotificationService, build_new_loop_email, build_updated_loop_email
from .storage import IncomingFile, StoredFile, UploadStorage

__all__ = [
    "ActivityAction",
    "ActivityLogService",
    "NotificationService",
    "build_new_loop_email",
    "build_updated_loop_email",
    "IncomingFile",
    "StoredFile",
    "UploadStorage",
]
