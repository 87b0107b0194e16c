"""
Notification Store

Per-user job notifications. Every read and write is scoped to the
requesting user; a row owned by someone else is reported as forbidden,
a missing row as not found.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from streetwise.database import Database
from streetwise.jobs.errors import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50
DEFAULT_PAGE_SIZE = 20
REQUIRED_FIELDS = ("type", "title", "message")
DEFAULT_DISMISS_AFTER = timedelta(minutes=5)


@dataclass
class NotificationPage:
    """One page of a user's notifications."""
    notifications: list[dict]
    unread_count: int
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.notifications) < self.total


def clamp_page(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    """Clamp pagination arguments to 1..50 and >= 0."""
    limit = DEFAULT_PAGE_SIZE if limit is None else limit
    offset = 0 if offset is None else offset
    return max(1, min(limit, MAX_PAGE_SIZE)), max(offset, 0)


class NotificationStore:
    """Operations on the job_notifications table."""

    def __init__(self, db: Database):
        self.db = db

    def list(self, user_id: str, unread_only: bool = False,
             limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> NotificationPage:
        """List notifications newest first.

        The unread count always covers the user's whole unread set, not
        just the returned page.
        """
        limit, offset = clamp_page(limit, offset)
        notifications = self.db.list_notifications(
            user_id, unread_only=unread_only, limit=limit, offset=offset
        )
        return NotificationPage(
            notifications=notifications,
            unread_count=self.db.count_notifications(user_id, unread_only=True),
            total=self.db.count_notifications(user_id, unread_only=unread_only),
            limit=limit,
            offset=offset,
        )

    def get(self, notification_id: int, user_id: str) -> dict:
        """Get a notification owned by user_id."""
        notification = self.db.get_notification(notification_id)
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification["user_id"] != user_id:
            raise ForbiddenError("Access denied")
        return notification

    def mark_read(self, notification_id: int, user_id: str, is_read: bool) -> dict:
        """Mark a notification read or unread and return the updated row."""
        if not self.db.set_notification_read(notification_id, user_id, is_read):
            self._raise_missing(notification_id, user_id)
        logger.info(
            "Notification %s marked as %s for user %s",
            notification_id, "read" if is_read else "unread", user_id
        )
        return self.db.get_notification(notification_id)

    def mark_all_read(self, user_id: str) -> int:
        """Mark all of a user's unread notifications as read.

        Returns the number of notifications that changed; a second call
        changes nothing.
        """
        count = self.db.mark_all_notifications_read(user_id)
        logger.info("Marked %d notifications as read for user %s", count, user_id)
        return count

    def delete(self, notification_id: int, user_id: str) -> None:
        """Delete a notification owned by user_id."""
        if not self.db.delete_notification(notification_id, user_id):
            self._raise_missing(notification_id, user_id)
        logger.info("Notification %s deleted for user %s", notification_id, user_id)

    def create(self, user_id: str, type: Optional[str], title: Optional[str],
               message: Optional[str], job_id: Optional[int] = None,
               auto_dismiss: bool = False, action_url: Optional[str] = None,
               action_text: Optional[str] = None, dismiss_at: Optional[str] = None) -> dict:
        """Create an unread notification for user_id.

        Auto-dismiss notifications without an explicit dismiss_at expire
        DEFAULT_DISMISS_AFTER from now.
        """
        values = {"type": type, "title": title, "message": message}
        missing = {
            name: f"{name} is required"
            for name in REQUIRED_FIELDS
            if not isinstance(values[name], str) or not values[name].strip()
        }
        if missing:
            raise ValidationError("Type, title, and message are required", missing)

        if job_id is not None:
            job = self.db.get_job(job_id)
            if job is None or job["user_id"] != user_id:
                raise ValidationError("Job not found", {"jobId": "job not found"})

        if auto_dismiss and dismiss_at is None:
            dismiss_at = (datetime.now(timezone.utc) + DEFAULT_DISMISS_AFTER).isoformat(
                timespec="microseconds"
            )

        notification_id = self.db.create_notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            job_id=job_id,
            auto_dismiss=auto_dismiss,
            action_url=action_url,
            action_text=action_text,
            dismiss_at=dismiss_at,
        )
        logger.info("Notification %s (%s) created for user %s", notification_id, type, user_id)
        return self.db.get_notification(notification_id)

    def _raise_missing(self, notification_id: int, user_id: str):
        # Called after a scoped write matched no row; find out why.
        self.get(notification_id, user_id)
        raise NotFoundError("Notification not found")
