"""
Per-user notifications.

Every created notification is committed, then published on the change
feed under `notifications` so `/ws/notifications` streams pick it up by
`user_id`.
"""
from typing import List, Optional

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import api_logger
from app.db.enums import FeedEvent, NotificationType
from app.db.models import Notification
from app.realtime.feed import ChangeFeed

NOTIFICATIONS_TABLE = "notifications"


def notification_row(notification: Notification) -> dict:
    """Feed representation of a notification row."""
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": NotificationType(notification.type).value,
        "title": notification.title,
        "message": notification.message,
        "link": notification.link,
        "sender_id": notification.sender_id,
        "entity_id": notification.entity_id,
        "entity_type": notification.entity_type,
        "is_read": bool(notification.is_read),
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationService:
    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed

    async def create_notification(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: Optional[str] = None,
        link: Optional[str] = None,
        sender_id: Optional[int] = None,
        entity_id: Optional[int] = None,
        entity_type: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            link=link,
            sender_id=sender_id,
            entity_id=entity_id,
            entity_type=entity_type,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)

        if self.feed is not None:
            self.feed.publish(NOTIFICATIONS_TABLE, notification_row(notification), FeedEvent.insert)
        api_logger.info(
            "Notification created",
            notification_id=notification.id,
            user_id=user_id,
            type=NotificationType(notification_type).value,
        )
        return notification

    async def get_notification(self, notification_id: int, user_id: int) -> Optional[Notification]:
        """A notification owned by `user_id`; other users' notifications read as missing."""
        result = await self.db.execute(
            select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_notifications(
        self,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Notification]:
        """Newest first."""
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_unread_count(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                and_(Notification.user_id == user_id, Notification.is_read.is_(False))
            )
        )
        return result.scalar() or 0

    async def get_total_count(self, user_id: int) -> int:
        result = await self.db.execute(select(func.count(Notification.id)).where(Notification.user_id == user_id))
        return result.scalar() or 0

    async def mark_as_read(self, notification_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            update(Notification)
            .where(and_(Notification.id == notification_id, Notification.user_id == user_id))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def mark_all_as_read(self, user_id: int) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(and_(Notification.user_id == user_id, Notification.is_read.is_(False)))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def delete_notification(self, notification_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            delete(Notification)
            .where(and_(Notification.id == notification_id, Notification.user_id == user_id))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0
