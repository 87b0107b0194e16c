"""
Notifications Router

Per-user job notifications: list, create, mark read and delete.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, StrictBool

from streetwise.jobs import NotificationStore, ValidationError
from web.api.deps import get_current_user, get_notification_store

router = APIRouter()

MARK_ALL_READ = "mark-all-read"


class NotificationCreate(BaseModel):
    """Notification creation request."""
    model_config = ConfigDict(populate_by_name=True)

    type: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    job_id: Optional[int] = Field(default=None, alias="jobId")
    auto_dismiss: bool = Field(default=False, alias="autoDismiss")
    action_url: Optional[str] = Field(default=None, alias="actionUrl")
    action_text: Optional[str] = Field(default=None, alias="actionText")


class NotificationUpdate(BaseModel):
    """Read-state update; isRead must be a JSON boolean."""
    model_config = ConfigDict(populate_by_name=True)

    is_read: StrictBool = Field(alias="isRead")


def notification_to_response(notification: dict) -> dict:
    return {
        "id": notification["id"],
        "jobId": notification["job_id"],
        "type": notification["type"],
        "title": notification["title"],
        "message": notification["message"],
        "isRead": notification["is_read"],
        "autoDismiss": notification["auto_dismiss"],
        "actionUrl": notification["action_url"],
        "actionText": notification["action_text"],
        "createdAt": notification["created_at"],
        "readAt": notification["read_at"],
        "dismissAt": notification["dismiss_at"],
    }


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = 20,
    offset: int = 0,
    user_id: str = Depends(get_current_user),
    store: NotificationStore = Depends(get_notification_store),
):
    """List the user's notifications, newest first."""
    page = store.list(user_id, unread_only=unread_only, limit=limit, offset=offset)
    return {
        "success": True,
        "data": {
            "notifications": [notification_to_response(n) for n in page.notifications],
            "unreadCount": page.unread_count,
            "pagination": {
                "limit": page.limit,
                "offset": page.offset,
                "total": page.total,
                "hasMore": page.has_more,
            },
        },
    }


@router.post("")
async def create_or_mark_all(
    action: Optional[str] = None,
    payload: Optional[NotificationCreate] = Body(default=None),
    user_id: str = Depends(get_current_user),
    store: NotificationStore = Depends(get_notification_store),
):
    """Create a notification, or mark all as read with ?action=mark-all-read."""
    if action == MARK_ALL_READ:
        updated = store.mark_all_read(user_id)
        return {
            "success": True,
            "data": {"message": "All notifications marked as read", "updated": updated},
        }
    if action is not None:
        raise ValidationError(f"Unknown action: {action}", {"action": "unknown action"})

    payload = payload or NotificationCreate()
    notification = store.create(
        user_id,
        type=payload.type,
        title=payload.title,
        message=payload.message,
        job_id=payload.job_id,
        auto_dismiss=payload.auto_dismiss,
        action_url=payload.action_url,
        action_text=payload.action_text,
    )
    return {"success": True, "data": {"notification": notification_to_response(notification)}}


@router.patch("/{notification_id}")
async def update_notification(
    notification_id: int,
    payload: NotificationUpdate,
    user_id: str = Depends(get_current_user),
    store: NotificationStore = Depends(get_notification_store),
):
    """Mark a notification read or unread."""
    notification = store.mark_read(notification_id, user_id, payload.is_read)
    return {
        "success": True,
        "data": {
            "id": notification["id"],
            "isRead": notification["is_read"],
            "message": f"Notification marked as {'read' if payload.is_read else 'unread'}",
        },
    }


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    user_id: str = Depends(get_current_user),
    store: NotificationStore = Depends(get_notification_store),
):
    """Delete a notification."""
    store.delete(notification_id, user_id)
    return {
        "success": True,
        "data": {"id": notification_id, "message": "Notification deleted successfully"},
    }
