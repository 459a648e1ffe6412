"""
AI transforms inside a group.

POST /api/groups/{group_id}/ai accepts either a single-content task
(sentiment, simplify, summarize, analyze_file) or a conversation action
(summarize, simplify). The caller needs USE_AI_FEATURES, plus access to
the channel when one is named; nothing is sent to the AI backend before
both checks pass.
"""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.ai.client import GenerativeTextClient, get_ai_client
from app.db import crud
from app.db.database import get_db
from app.db.enums import AIAction, AITask
from app.db.models import ChannelMessage, User
from app.permissions.constants import Permission
from app.permissions.dependencies import require_group_permission
from app.permissions.exceptions import NotFound
from app.permissions.repository import GroupContext, channel_snapshot

router = APIRouter()

CONVERSATION_WINDOW = 50


class ConversationMessage(BaseModel):
    sender_name: Optional[str] = None
    content: str


class AIRequest(BaseModel):
    task: Optional[str] = None
    content: Optional[str] = Field(None, max_length=20000)
    action: Optional[str] = None
    messages: Optional[List[ConversationMessage]] = None
    channel_id: Optional[int] = None
    conversation_id: Optional[Any] = None


class AIResponse(BaseModel):
    result: str
    task: Optional[str] = None
    action: Optional[str] = None
    conversation_id: Optional[Any] = None


async def _channel_conversation(db: AsyncSession, channel_id: int) -> list[dict]:
    """Latest messages of a channel, oldest first, as {sender_name, content}."""
    q = (
        select(ChannelMessage, User.full_name, User.username)
        .join(User, User.id == ChannelMessage.author_id)
        .where(ChannelMessage.channel_id == channel_id)
        .order_by(ChannelMessage.id.desc())
        .limit(CONVERSATION_WINDOW)
    )
    rows = (await db.execute(q)).all()
    return [
        {"sender_name": full_name or username or "User", "content": message.content}
        for message, full_name, username in reversed(rows)
    ]


@router.post("/{group_id}/ai", response_model=AIResponse)
async def run_ai(
    request: AIRequest,
    ctx: GroupContext = Depends(require_group_permission(Permission.USE_AI_FEATURES)),
    db: AsyncSession = Depends(get_db),
    client: GenerativeTextClient = Depends(get_ai_client),
):
    if request.channel_id is not None:
        channel = await crud.get_channel(db, request.channel_id)
        if channel is None or channel.group_id != ctx.group.id:
            raise NotFound("Channel not found")
        ctx.require_channel_access(channel_snapshot(channel))

    if request.task:
        try:
            task = AITask(request.task)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid task")
        if not request.content:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing content")
        result = await client.run_task(task, request.content)
        return AIResponse(result=result, task=task.value)

    if request.action:
        try:
            action = AIAction(request.action)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")
        if request.messages:
            messages = [m.model_dump() for m in request.messages]
        elif request.channel_id is not None:
            messages = await _channel_conversation(db, request.channel_id)
        else:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing messages")
        if not messages:
            return AIResponse(result="No messages to summarize.", action=action.value,
                              conversation_id=request.conversation_id)
        result = await client.run_action(action, messages, request.conversation_id)
        return AIResponse(result=result, action=action.value, conversation_id=request.conversation_id)

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required parameters")
