from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.db.database import get_db
from app.db import crud
from app.db.models import Channel, User
from app.core.security import get_current_user as jwt_get_current_user
from app.core.logging import api_logger
from app.permissions.exceptions import NotFound
from app.permissions.repository import GroupContext, load_group_context


async def get_current_user(
    current_user_data: dict = Depends(jwt_get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the token subject into the stored user profile.

    Tokens whose subject has no profile (or an inactive one) are treated as
    unauthenticated.
    """
    user_id = current_user_data.get("user_id")
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        api_logger.info("Rejected token for unknown or inactive user", user_id=user_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials")
    return user


async def get_group_context(
    group_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> GroupContext:
    """Authorization context for the current user in `group_id`.

    Non-members get a 404 so group existence is not leaked.
    """
    ctx = await load_group_context(db, group_id, user.id)
    if ctx is None:
        raise NotFound("Group not found")
    return ctx


async def get_channel_context(
    channel_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> tuple[Channel, GroupContext]:
    """The channel row plus the caller's context in the channel's group.

    Only group membership is checked here; callers still run the channel
    access guard.
    """
    channel = await crud.get_channel(db, channel_id)
    if channel is None:
        raise NotFound("Channel not found")
    ctx = await load_group_context(db, channel.group_id, user.id)
    if ctx is None:
        raise NotFound("Channel not found")
    return channel, ctx
