"""
WebSocket streams of feed changes.

    /ws/channels/{channel_id}?token=<bearer token>
    /ws/conversations/{conversation_id}?token=<bearer token>
    /ws/notifications?token=<bearer token>

Access is checked when the socket opens and again before every forwarded
event, so a member who is kicked, loses a role, or drops off a channel's
allow-list stops receiving as soon as the next event arrives. Denials
close the socket with 4403 (forbidden) or 4404 (unknown target or not a
member).
"""
import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.conversations import DIRECT_MESSAGES_TABLE
from app.api.messages import MESSAGES_TABLE
from app.core.logging import realtime_logger
from app.core.security import decode_token, user_id_from_payload
from app.db import crud
from app.db.database import get_session_factory
from app.db.models import User
from app.permissions import guards
from app.permissions.exceptions import NotFound
from app.permissions.guards import AuthOutcome
from app.permissions.repository import channel_snapshot, load_group_context
from app.realtime.feed import ChangeFeed, Subscription, get_change_feed
from app.services import conversations as conversation_service
from app.services.notifications import NOTIFICATIONS_TABLE

router = APIRouter(tags=["WebSocket"])

CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404

# Returns 0 while access holds, otherwise the close code
AccessCheck = Callable[[], Awaitable[int]]


def token_user_id(token: str) -> Optional[int]:
    if not token:
        return None
    try:
        return user_id_from_payload(decode_token(token))
    except HTTPException:
        return None


async def _active_user(session, user_id: int) -> bool:
    user = (await session.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    return user is not None and bool(user.is_active)


async def check_channel_access(session_factory: async_sessionmaker, user_id: int, channel_id: int) -> int:
    """Current channel access of `user_id`, read on a fresh session."""
    async with session_factory() as session:
        if not await _active_user(session, user_id):
            return CLOSE_FORBIDDEN
        channel = await crud.get_channel(session, channel_id)
        if channel is None:
            return CLOSE_NOT_FOUND
        ctx = await load_group_context(session, channel.group_id, user_id)
        if ctx is None:
            return CLOSE_NOT_FOUND
        result = guards.require_channel_access(ctx.member, ctx.roles, channel_snapshot(channel), ctx.group)

    if result.ok:
        return 0
    return CLOSE_NOT_FOUND if result.outcome is AuthOutcome.NOT_FOUND else CLOSE_FORBIDDEN


async def check_conversation_access(session_factory: async_sessionmaker, user_id: int, conversation_id: int) -> int:
    async with session_factory() as session:
        if not await _active_user(session, user_id):
            return CLOSE_FORBIDDEN
        try:
            await conversation_service.get_for_participant(session, conversation_id, user_id)
        except NotFound:
            return CLOSE_NOT_FOUND
    return 0


async def check_user_active(session_factory: async_sessionmaker, user_id: int) -> int:
    async with session_factory() as session:
        return 0 if await _active_user(session, user_id) else CLOSE_FORBIDDEN


async def _pump(websocket: WebSocket, subscription: Subscription, check_access: AccessCheck) -> int:
    """Forward events until access is lost; returns the close code."""
    async for change in subscription:
        code = await check_access()
        if code:
            return code
        await websocket.send_json(change.to_dict())
    return 0


async def _drain(websocket: WebSocket) -> None:
    # The stream is one-way; reading only detects the disconnect
    while True:
        await websocket.receive_text()


async def serve_stream(
    websocket: WebSocket,
    feed: ChangeFeed,
    table: str,
    column: str,
    value: Any,
    check_access: AccessCheck,
    **log_context,
) -> None:
    """Accept the socket and forward `table` changes where `column == value`."""
    await websocket.accept()
    realtime_logger.info("WS connected", table=table, **log_context)

    async with feed.subscribe(table, column, value) as subscription:
        pump = asyncio.create_task(_pump(websocket, subscription, check_access))
        drain = asyncio.create_task(_drain(websocket))
        tasks = [pump, drain]
        close_code = 0
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    realtime_logger.error("WS stream failed", error=exc, table=table, **log_context)
            if pump in done and pump.exception() is None:
                close_code = pump.result()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    if close_code:
        realtime_logger.info("WS access revoked", table=table, code=close_code, **log_context)
        await websocket.close(code=close_code)
    realtime_logger.info("WS disconnected", table=table, **log_context)


async def _refuse(websocket: WebSocket, code: int, **log_context) -> None:
    realtime_logger.info("WS connection refused", code=code, **log_context)
    await websocket.close(code=code)


@router.websocket("/channels/{channel_id}")
async def channel_stream(
    websocket: WebSocket,
    channel_id: int,
    token: str = Query(default=""),
    feed: ChangeFeed = Depends(get_change_feed),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    user_id = token_user_id(token)
    if user_id is None:
        await _refuse(websocket, CLOSE_FORBIDDEN, channel_id=channel_id)
        return
    check_access = partial(check_channel_access, session_factory, user_id, channel_id)
    code = await check_access()
    if code:
        await _refuse(websocket, code, channel_id=channel_id, user_id=user_id)
        return
    await serve_stream(websocket, feed, MESSAGES_TABLE, "channel_id", channel_id, check_access,
                       channel_id=channel_id, user_id=user_id)


@router.websocket("/conversations/{conversation_id}")
async def conversation_stream(
    websocket: WebSocket,
    conversation_id: int,
    token: str = Query(default=""),
    feed: ChangeFeed = Depends(get_change_feed),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    user_id = token_user_id(token)
    if user_id is None:
        await _refuse(websocket, CLOSE_FORBIDDEN, conversation_id=conversation_id)
        return
    check_access = partial(check_conversation_access, session_factory, user_id, conversation_id)
    code = await check_access()
    if code:
        await _refuse(websocket, code, conversation_id=conversation_id, user_id=user_id)
        return
    await serve_stream(websocket, feed, DIRECT_MESSAGES_TABLE, "conversation_id", conversation_id, check_access,
                       conversation_id=conversation_id, user_id=user_id)


@router.websocket("/notifications")
async def notification_stream(
    websocket: WebSocket,
    token: str = Query(default=""),
    feed: ChangeFeed = Depends(get_change_feed),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    user_id = token_user_id(token)
    if user_id is None:
        await _refuse(websocket, CLOSE_FORBIDDEN)
        return
    check_access = partial(check_user_active, session_factory, user_id)
    code = await check_access()
    if code:
        await _refuse(websocket, code, user_id=user_id)
        return
    await serve_stream(websocket, feed, NOTIFICATIONS_TABLE, "user_id", user_id, check_access, user_id=user_id)
