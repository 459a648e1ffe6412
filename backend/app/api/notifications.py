from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.db.database import get_db
from app.db.enums import NotificationType
from app.db.models import User
from app.permissions.exceptions import NotFound
from app.services.notifications import NotificationService

router = APIRouter()


class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: Optional[str] = None
    link: Optional[str] = None
    sender_id: Optional[int] = None
    entity_id: Optional[int] = None
    entity_type: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationCountResponse(BaseModel):
    unread: int
    total: int


class MarkAllReadResponse(BaseModel):
    updated: int


@router.get("/", response_model=List[NotificationResponse])
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    unread_only: bool = False,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Notifications of the current user, newest first."""
    return await NotificationService(db).list_notifications(user.id, unread_only=unread_only, limit=limit, offset=offset)


@router.get("/count", response_model=NotificationCountResponse)
async def get_notification_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = NotificationService(db)
    return NotificationCountResponse(
        unread=await service.get_unread_count(user.id),
        total=await service.get_total_count(user.id),
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = NotificationService(db)
    if not await service.mark_as_read(notification_id, user.id):
        raise NotFound("Notification not found")
    return await service.get_notification(notification_id, user.id)


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return MarkAllReadResponse(updated=await NotificationService(db).mark_all_as_read(user.id))


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not await NotificationService(db).delete_notification(notification_id, user.id):
        raise NotFound("Notification not found")
