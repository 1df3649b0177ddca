"""Email notifications to admins about loop changes.

Delivery is best effort: every failure is logged and reported as False,
never raised to the caller.
"""
from __future__ import annotations

import time
from typing import Any, Dict, List, Mapping, Optional

import httpx

from core.config import get_settings
from core.logging_config import get_logger, log_external_call

LOGGER = get_logger(__name__)
SETTINGS = get_settings()


def _describe_changes(changes: Mapping[str, Any]) -> str:
    if not changes:
        return "No field changes recorded."
    lines = [f"- {field}: {value}" for field, value in sorted(changes.items())]
    return "Changed fields:\n" + "\n".join(lines)


def build_new_loop_email(loop: Mapping[str, Any], actor_name: str) -> Dict[str, str]:
    """Subject and text body for a newly created loop."""
    subject = f"New loop: {loop.get('property_address')}"
    body = (
        f"{actor_name} created a new {loop.get('type')} loop.\n\n"
        f"Property: {loop.get('property_address')}\n"
        f"Client: {loop.get('client_name') or '-'}\n"
        f"Status: {loop.get('status')}\n"
        f"End date: {loop.get('end_date') or '-'}\n"
        f"Loop ID: {loop.get('id')}\n"
    )
    return {"subject": subject, "text": body}


def build_updated_loop_email(
    loop: Mapping[str, Any],
    actor_name: str,
    changes: Mapping[str, Any],
) -> Dict[str, str]:
    """Subject and text body for an updated loop."""
    subject = f"Loop updated: {loop.get('property_address')}"
    body = (
        f"{actor_name} updated the {loop.get('type')} loop for "
        f"{loop.get('property_address')} (ID {loop.get('id')}).\n\n"
        f"{_describe_changes(changes)}\n"
    )
    return {"subject": subject, "text": body}


class NotificationService:
    """Sends admin notification emails through an HTTP email API."""

    def __init__(
        self,
        recipients: Optional[List[str]] = None,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the notification service.

        Args:
            recipients: Override for ADMIN_NOTIFICATION_EMAILS.
            client: Optional httpx client (tests pass a mock transport).
        """
        self.recipients = recipients if recipients is not None else SETTINGS.admin_recipients
        self.client = client

    def send_email(self, subject: str, text: str, dry_run: bool = False) -> bool:
        """
        Send one email to every configured admin.

        Args:
            subject: Message subject.
            text: Plain-text body.
            dry_run: If True, don't actually send.

        Returns:
            True if the message was accepted (or logged in dry-run mode).
        """
        if not self.recipients:
            LOGGER.debug("No admin recipients configured, skipping email")
            return False

        if dry_run or SETTINGS.dry_run:
            LOGGER.info(f"[DRY RUN] Email to {', '.join(self.recipients)}: {subject}")
            return True

        if not (SETTINGS.enable_email_notifications and SETTINGS.email_api_url):
            LOGGER.debug("Email notifications disabled, skipping")
            return False

        payload = {
            "from": SETTINGS.email_from,
            "to": self.recipients,
            "subject": subject,
            "text": text,
        }
        headers = {}
        if SETTINGS.email_api_key:
            headers["Authorization"] = f"Bearer {SETTINGS.email_api_key}"

        started = time.perf_counter()
        try:
            poster = self.client.post if self.client is not None else httpx.post
            response = poster(
                SETTINGS.email_api_url,
                json=payload,
                headers=headers,
                timeout=SETTINGS.email_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            log_external_call(
                LOGGER, "email", "send", False, (time.perf_counter() - started) * 1000,
                error=str(e),
            )
            LOGGER.error(f"Failed to send email '{subject}': {e}")
            return False

        log_external_call(
            LOGGER, "email", "send", True, (time.perf_counter() - started) * 1000,
            recipients=len(self.recipients),
        )
        return True

    def notify_loop_created(self, loop: Mapping[str, Any], actor_name: str) -> bool:
        message = build_new_loop_email(loop, actor_name)
        return self.send_email(message["subject"], message["text"])

    def notify_loop_updated(
        self,
        loop: Mapping[str, Any],
        actor_name: str,
        changes: Mapping[str, Any],
    ) -> bool:
        message = build_updated_loop_email(loop, actor_name, changes)
        return self.send_email(message["subject"], message["text"])


__all__ = [
    "NotificationService",
    "build_new_loop_email",
    "build_updated_loop_email",
]
