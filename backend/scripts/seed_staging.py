"""Idempotent staging seed script.
Usage (staging only):

APP_ENV=staging python backend/scripts/seed_staging.py

Creates a handful of users, one group with the default role ladder, a
restricted #dev channel for the Technical role, and a few messages.
"""
import asyncio
from typing import List

from sqlalchemy import func, select

from app.core.config import settings, logger
from app.db import crud
from app.db.database import async_session, create_tables
from app.db.models import ChannelMessage, Group, Role, User
from app.services import channels as channel_service
from app.services import groups as group_service
from app.services import members as member_service

GROUP_NAME = "Syncora Staging"

STAGING_USERS = [
    # username, full name, seeded role
    ("ahmad", "Ahmad", None),
    ("musa", "Musa", "Moderator"),
    ("alieu", "Alieu", "Technical"),
    ("modou", "Modou", "Non-Technical"),
    ("junior", "Junior", None),
]

REALISTIC_MESSAGES = {
    "general": [
        "Welcome everyone 👋",
        "Has anyone seen the latest project updates?",
        "Yes, I reviewed them yesterday. Looking great!",
        "Don't forget we have a meeting at 3pm.",
        "Quick update: the deployment went smoothly.",
    ],
    "dev": [
        "Pushed the fix for the upload limit.",
        "Can someone review the channel permissions change?",
        "On it, will report back after lunch.",
    ],
}


async def get_or_create_user(session, username: str, full_name: str) -> User:
    q = await session.execute(select(User).where(User.username == username))
    user = q.scalar_one_or_none()
    if user:
        return user
    user = User(username=username, email=f"{username}@staging.local", full_name=full_name, is_active=True)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def get_or_create_group(session, owner: User) -> Group:
    q = await session.execute(select(Group).where(Group.name == GROUP_NAME, Group.owner_id == owner.id))
    group = q.scalar_one_or_none()
    if group:
        return group
    return await group_service.create_group(session, owner.id, GROUP_NAME, description="Staging playground")


async def create_messages(session, channel_id: int, name: str, authors: List[User]):
    existing = await session.scalar(
        select(func.count(ChannelMessage.id)).where(ChannelMessage.channel_id == channel_id)
    )
    lines = REALISTIC_MESSAGES.get(name, REALISTIC_MESSAGES["general"])
    if existing >= len(lines):
        logger.info('Channel %s already has %s messages', name, existing)
        return
    for i, content in enumerate(lines[existing:], start=existing):
        session.add(ChannelMessage(channel_id=channel_id, author_id=authors[i % len(authors)].id, content=content))
    await session.commit()
    logger.info('Added %s messages to channel %s', len(lines) - existing, name)


async def run():
    if settings.APP_ENV == 'production':
        raise RuntimeError('Refusing to seed production database')

    await create_tables()
    async with async_session() as session:
        users = [await get_or_create_user(session, username, full_name) for username, full_name, _ in STAGING_USERS]
        owner = users[0]
        group = await get_or_create_group(session, owner)

        roles = {
            r.name: r.id
            for r in (await session.execute(select(Role).where(Role.group_id == group.id))).scalars().all()
        }
        everyone = roles["Everyone"]

        for user, (_, _, role_name) in zip(users[1:], STAGING_USERS[1:]):
            if await crud.get_group_member(session, group.id, user.id) is not None:
                continue
            role_ids = [roles[role_name], everyone] if role_name else None
            await member_service.add_member(session, group.id, user.id, role_ids, added_by=owner.id)

        channels = {c.name: c for c in await crud.get_group_channels(session, group.id)}
        if "dev" not in channels:
            channels["dev"] = await channel_service.create_channel(
                session, group.id, "dev", allowed_role_ids=[roles["Technical"]], user_id=owner.id
            )

        await create_messages(session, channels["general"].id, "general", users)
        await create_messages(session, channels["dev"].id, "dev", [owner, users[2]])

        logger.info('Seeding complete: group %s (id=%s) with %s members.', group.name, group.id, len(users))


if __name__ == '__main__':
    asyncio.run(run())
