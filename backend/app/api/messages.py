from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_channel_context
from app.core.logging import api_logger
from app.db.database import get_db
from app.db.enums import FeedEvent
from app.db.models import ChannelMessage, FileAttachment
from app.permissions.constants import Permission
from app.permissions.exceptions import NotFound
from app.permissions.repository import channel_snapshot
from app.realtime.feed import ChangeFeed, get_change_feed
from app.services.audit import log_audit

router = APIRouter()

MESSAGES_TABLE = "channel_messages"


class MessageCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)
    attachment_ids: List[int] = []


class AttachmentSummary(BaseModel):
    id: int
    filename: str
    file_size: Optional[int]
    mime_type: Optional[str]

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: int
    channel_id: int
    author_id: int
    content: str
    created_at: Optional[datetime]
    attachments: List[AttachmentSummary] = []

    class Config:
        from_attributes = True


def message_row(message: ChannelMessage) -> dict:
    """Feed representation of a message row."""
    return {
        "id": message.id,
        "channel_id": message.channel_id,
        "author_id": message.author_id,
        "content": message.content,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


@router.get("/{channel_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    before: Optional[int] = Query(None, description="Return messages older than this id"),
    limit: int = Query(50, ge=1, le=200),
    channel_ctx=Depends(get_channel_context),
    db: AsyncSession = Depends(get_db),
):
    """Newest messages first, paginated with `before`."""
    channel, ctx = channel_ctx
    ctx.require_channel_access(channel_snapshot(channel))

    q = select(ChannelMessage).where(ChannelMessage.channel_id == channel.id)
    if before is not None:
        q = q.where(ChannelMessage.id < before)
    q = q.order_by(ChannelMessage.id.desc()).limit(limit)
    return list((await db.execute(q)).scalars().all())


@router.post("/{channel_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    request: MessageCreateRequest,
    channel_ctx=Depends(get_channel_context),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    channel, ctx = channel_ctx
    ctx.require_channel_permission(channel_snapshot(channel), Permission.SEND_MESSAGES)
    if request.attachment_ids:
        ctx.require_channel_permission(channel_snapshot(channel), Permission.ATTACH_FILES)

    message = ChannelMessage(channel_id=channel.id, author_id=ctx.member.user_id, content=request.content)
    db.add(message)
    await db.flush()

    if request.attachment_ids:
        # Only the sender's own unattached uploads in this channel are linked
        await db.execute(
            update(FileAttachment)
            .where(
                FileAttachment.id.in_(request.attachment_ids),
                FileAttachment.channel_id == channel.id,
                FileAttachment.user_id == ctx.member.user_id,
                FileAttachment.message_id.is_(None),
            )
            .values(message_id=message.id)
            .execution_options(synchronize_session=False)
        )

    await db.commit()
    await db.refresh(message, attribute_names=["created_at", "attachments"])

    delivered = feed.publish(MESSAGES_TABLE, message_row(message), FeedEvent.insert)
    api_logger.info("Message sent", channel_id=channel.id, message_id=message.id, subscribers=delivered)
    return message


@router.delete("/{channel_id}/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    channel_ctx=Depends(get_channel_context),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Authors delete their own messages; others need MANAGE_MESSAGES."""
    channel, ctx = channel_ctx
    snap = channel_snapshot(channel)
    ctx.require_channel_access(snap)

    message = (
        await db.execute(
            select(ChannelMessage).where(ChannelMessage.id == message_id, ChannelMessage.channel_id == channel.id)
        )
    ).scalar_one_or_none()
    if message is None:
        raise NotFound("Message not found")

    if message.author_id != ctx.member.user_id:
        ctx.require_channel_permission(snap, Permission.MANAGE_MESSAGES)
        log_audit(
            db,
            "message.delete",
            "message",
            message.id,
            group_id=channel.group_id,
            user_id=ctx.member.user_id,
            meta={"author_id": message.author_id, "channel_id": channel.id},
        )

    row = message_row(message)
    await db.execute(
        update(FileAttachment)
        .where(FileAttachment.message_id == message.id)
        .values(message_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.delete(message)
    await db.commit()
    feed.publish(MESSAGES_TABLE, row, FeedEvent.delete)
