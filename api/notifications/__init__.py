"""Notification endpoints."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from auth import authenticate_user, ensure_self_or_admin
from notifications import (
    NotificationManager,
    NotificationNotFoundError,
    get_notification_manager
)

from ..responses import success

router = APIRouter(
    prefix="/api/notifications",
    tags=["Notifications"]
)

class MarkReadRequest(BaseModel):
    """Request model for marking notifications read."""
    notification_ids: List[UUID]

@router.get("/unread-count")
async def unread_count(
    user: dict = Depends(authenticate_user),
    notifications: NotificationManager = Depends(get_notification_manager)
):
    return success({'count': await notifications.get_unread_count(user['id'])})

@router.get("/user/{user_id}")
async def get_user_notifications(
    user_id: UUID,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: dict = Depends(authenticate_user),
    notifications: NotificationManager = Depends(get_notification_manager)
):
    """Notifications of a user, newest first."""
    ensure_self_or_admin(user, user_id)
    return success(await notifications.get_user_notifications(user_id, unread_only, limit, offset))

@router.post("/mark-read")
async def mark_read(
    request: MarkReadRequest,
    user: dict = Depends(authenticate_user),
    notifications: NotificationManager = Depends(get_notification_manager)
):
    updated = await notifications.mark_read(user['id'], request.notification_ids)
    return success({'updated': updated})

@router.post("/mark-all-read")
async def mark_all_read(
    user: dict = Depends(authenticate_user),
    notifications: NotificationManager = Depends(get_notification_manager)
):
    updated = await notifications.mark_all_read(user['id'])
    return success({'updated': updated})

@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: UUID,
    user: dict = Depends(authenticate_user),
    notifications: NotificationManager = Depends(get_notification_manager)
):
    try:
        await notifications.delete(user['id'], notification_id)
        return success(message="Notification deleted")
    except NotificationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
