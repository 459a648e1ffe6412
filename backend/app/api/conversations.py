from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.core.logging import api_logger
from app.db.database import get_db
from app.db.enums import FeedEvent, NotificationType
from app.db.models import DirectMessage, User
from app.permissions.exceptions import INVALID_REFERENCE_CODE
from app.realtime.feed import ChangeFeed, get_change_feed
from app.services import conversations as conversation_service
from app.services.notifications import NotificationService

router = APIRouter()

DIRECT_MESSAGES_TABLE = "direct_messages"


class ConversationCreateRequest(BaseModel):
    other_user_id: int


class ConversationResponse(BaseModel):
    id: int
    user1_id: int
    user2_id: int
    last_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DirectMessageCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class DirectMessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def direct_message_row(message: DirectMessage) -> dict:
    """Feed representation of a direct message row."""
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


@router.post("/", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    request: ConversationCreateRequest,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open the conversation with another user; an existing one is returned with 200."""
    try:
        conversation, created = await conversation_service.get_or_create(db, user.id, request.other_user_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": INVALID_REFERENCE_CODE, "message": str(e)},
        )
    if not created:
        response.status_code = status.HTTP_200_OK
    return conversation


@router.get("/", response_model=List[ConversationResponse])
async def list_conversations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await conversation_service.list_conversations(db, user.id)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await conversation_service.get_for_participant(db, conversation_id, user.id)


@router.get("/{conversation_id}/messages", response_model=List[DirectMessageResponse])
async def list_direct_messages(
    conversation_id: int,
    before: Optional[int] = Query(None, description="Return messages older than this id"),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest messages first, paginated with `before`."""
    conversation = await conversation_service.get_for_participant(db, conversation_id, user.id)
    return await conversation_service.list_messages(db, conversation.id, before=before, limit=limit)


@router.post(
    "/{conversation_id}/messages",
    response_model=DirectMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_direct_message(
    conversation_id: int,
    request: DirectMessageCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    conversation = await conversation_service.get_for_participant(db, conversation_id, user.id)
    message = await conversation_service.send_message(db, conversation, user.id, request.content)

    delivered = feed.publish(DIRECT_MESSAGES_TABLE, direct_message_row(message), FeedEvent.insert)
    api_logger.info(
        "Direct message sent",
        conversation_id=conversation.id,
        message_id=message.id,
        subscribers=delivered,
    )

    recipient_id = conversation_service.other_participant(conversation, user.id)
    await NotificationService(db, feed).create_notification(
        recipient_id,
        NotificationType.message,
        f"New message from {user.full_name or user.username}",
        message=request.content[:200],
        link=f"/messages/{conversation.id}",
        sender_id=user.id,
        entity_id=conversation.id,
        entity_type="conversation",
    )
    return message
