"""
Group lifecycle: creation with the seeded role ladder, edits, and deletion
of everything a group owns.
"""
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import api_logger
from app.db.enums import ChannelType
from app.db.models import (
    Channel,
    ChannelMessage,
    FileAttachment,
    Group,
    GroupMember,
    Role,
)
from app.permissions.role_map import DEFAULT_ROLES, EVERYONE_ROLE_NAME, OWNER_ROLE_NAME
from app.services.audit import log_audit

DEFAULT_CHANNEL_NAME = "general"


async def list_user_groups(session: AsyncSession, user_id: int) -> list[Group]:
    """Groups the user is a member of, oldest first."""
    q = (
        select(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == user_id)
        .order_by(Group.id)
    )
    res = await session.execute(q)
    return list(res.scalars().all())


async def create_group(
    session: AsyncSession,
    owner_id: int,
    name: str,
    description: Optional[str] = None,
    icon_url: Optional[str] = None,
) -> Group:
    """
    Create a group and seed it.

    Seeds the default role ladder, makes the creator a member holding the
    Admin and Everyone roles, and opens a `general` text channel restricted
    to Everyone.

    Args:
        session: Database session
        owner_id: Creating user, becomes the group owner
        name: Group name
        description: Optional description
        icon_url: Optional icon

    Returns:
        The created Group
    """
    group = Group(name=name, description=description, icon_url=icon_url, owner_id=owner_id)
    session.add(group)
    await session.flush()

    roles_by_name: dict[str, Role] = {}
    for seed in DEFAULT_ROLES:
        role = Role(
            group_id=group.id,
            name=seed["name"],
            color=seed["color"],
            position=seed["position"],
            permissions=seed["permissions"].to_dict(),
            is_default=seed["is_default"],
        )
        session.add(role)
        roles_by_name[seed["name"]] = role
    await session.flush()

    everyone = roles_by_name[EVERYONE_ROLE_NAME]
    owner_role_ids = [roles_by_name[OWNER_ROLE_NAME].id, everyone.id]
    session.add(GroupMember(group_id=group.id, user_id=owner_id, role_ids=owner_role_ids))
    session.add(
        Channel(
            group_id=group.id,
            name=DEFAULT_CHANNEL_NAME,
            type=ChannelType.text,
            allowed_role_ids=[everyone.id],
        )
    )
    log_audit(
        session,
        "group.create",
        "group",
        group.id,
        group_id=group.id,
        user_id=owner_id,
        meta={"name": name},
    )
    await session.commit()
    await session.refresh(group)

    api_logger.info("Group created", group_id=group.id, owner_id=owner_id, roles=len(roles_by_name))
    return group


async def update_group(
    session: AsyncSession,
    group: Group,
    changes: dict,
    user_id: Optional[int] = None,
) -> Group:
    """Apply name/description/icon changes. Keys that are absent stay as they are."""
    applied = {}
    for field in ("name", "description", "icon_url"):
        if field in changes:
            if field == "name" and not changes[field]:
                continue
            setattr(group, field, changes[field])
            applied[field] = changes[field]

    if applied:
        log_audit(session, "group.update", "group", group.id, group_id=group.id, user_id=user_id, meta=applied)
        await session.commit()
        await session.refresh(group)
    return group


async def delete_group(session: AsyncSession, group: Group, user_id: Optional[int] = None) -> None:
    """
    Delete a group together with its attachments, messages, channels,
    members and roles.

    Rows are removed explicitly, children first, so the result does not
    depend on the database enforcing ON DELETE CASCADE.
    """
    group_id = group.id
    channel_ids = select(Channel.id).where(Channel.group_id == group_id)

    for stmt in (
        delete(FileAttachment).where(FileAttachment.channel_id.in_(channel_ids)),
        delete(ChannelMessage).where(ChannelMessage.channel_id.in_(channel_ids)),
        delete(Channel).where(Channel.group_id == group_id),
        delete(GroupMember).where(GroupMember.group_id == group_id),
        delete(Role).where(Role.group_id == group_id),
        delete(Group).where(Group.id == group_id),
    ):
        await session.execute(stmt.execution_options(synchronize_session=False))
    session.expunge(group)

    log_audit(session, "group.delete", "group", group_id, group_id=group_id, user_id=user_id)
    await session.commit()
    api_logger.info("Group deleted", group_id=group_id, user_id=user_id)
