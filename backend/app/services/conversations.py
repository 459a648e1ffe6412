"""
One-to-one conversations between users.
"""
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from app.core.logging import api_logger
from app.db.models import DirectConversation, DirectMessage, User
from app.permissions.exceptions import NotFound


def participant_pair(a: int, b: int) -> str:
    """Order-independent key of a user pair."""
    return f"{min(a, b)}:{max(a, b)}"


def other_participant(conversation: DirectConversation, user_id: int) -> int:
    return conversation.user2_id if conversation.user1_id == user_id else conversation.user1_id


async def get_or_create(session: AsyncSession, user_id: int, other_user_id: int) -> tuple[DirectConversation, bool]:
    """
    The conversation between two users, created on first contact.

    Returns `(conversation, created)`.

    Raises:
        ValueError: When both ids name the same user
        NotFound: When `other_user_id` has no active profile
    """
    if user_id == other_user_id:
        raise ValueError("Cannot start a conversation with yourself")

    other = (await session.execute(select(User).where(User.id == other_user_id))).scalar_one_or_none()
    if other is None or not other.is_active:
        raise NotFound("User not found")

    key = participant_pair(user_id, other_user_id)
    existing = (
        await session.execute(select(DirectConversation).where(DirectConversation.participant_pair == key))
    ).scalar_one_or_none()
    if existing is not None:
        return existing, False

    conversation = DirectConversation(
        user1_id=min(user_id, other_user_id),
        user2_id=max(user_id, other_user_id),
        participant_pair=key,
    )
    session.add(conversation)
    await session.commit()
    await session.refresh(conversation)
    api_logger.info("Conversation created", conversation_id=conversation.id, pair=key)
    return conversation, True


async def list_conversations(session: AsyncSession, user_id: int) -> list[DirectConversation]:
    """Conversations of a user, most recently active first."""
    q = (
        select(DirectConversation)
        .where(or_(DirectConversation.user1_id == user_id, DirectConversation.user2_id == user_id))
        .order_by(DirectConversation.updated_at.desc(), DirectConversation.id.desc())
    )
    return list((await session.execute(q)).scalars().all())


async def get_for_participant(session: AsyncSession, conversation_id: int, user_id: int) -> DirectConversation:
    """Raises NotFound unless `user_id` takes part in the conversation."""
    q = select(DirectConversation).where(
        DirectConversation.id == conversation_id,
        or_(DirectConversation.user1_id == user_id, DirectConversation.user2_id == user_id),
    )
    conversation = (await session.execute(q)).scalar_one_or_none()
    if conversation is None:
        raise NotFound("Conversation not found")
    return conversation


async def list_messages(
    session: AsyncSession,
    conversation_id: int,
    before: Optional[int] = None,
    limit: int = 50,
) -> list[DirectMessage]:
    q = select(DirectMessage).where(DirectMessage.conversation_id == conversation_id)
    if before is not None:
        q = q.where(DirectMessage.id < before)
    q = q.order_by(DirectMessage.id.desc()).limit(limit)
    return list((await session.execute(q)).scalars().all())


async def send_message(
    session: AsyncSession,
    conversation: DirectConversation,
    sender_id: int,
    content: str,
) -> DirectMessage:
    """Store a message and bump the conversation's preview and activity time."""
    message = DirectMessage(conversation_id=conversation.id, sender_id=sender_id, content=content)
    session.add(message)
    conversation.last_message = content
    conversation.updated_at = func.now()
    await session.commit()
    await session.refresh(message)
    await session.refresh(conversation)
    return message
