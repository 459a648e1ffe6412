from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.db.models import Channel, Group, GroupMember, Role


async def get_group(db: AsyncSession, group_id: int) -> Optional[Group]:
    result = await db.execute(select(Group).where(Group.id == group_id))
    return result.scalar_one_or_none()


async def get_group_member(db: AsyncSession, group_id: int, user_id: int) -> Optional[GroupMember]:
    query = select(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_group_roles(db: AsyncSession, group_id: int) -> list[Role]:
    query = select(Role).where(Role.group_id == group_id).order_by(Role.position.desc(), Role.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_group_channels(db: AsyncSession, group_id: int) -> list[Channel]:
    query = select(Channel).where(Channel.group_id == group_id).order_by(Channel.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_channel(db: AsyncSession, channel_id: int) -> Optional[Channel]:
    result = await db.execute(select(Channel).where(Channel.id == channel_id))
    return result.scalar_one_or_none()
