"""
Channel changes inside a group.
"""
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import api_logger
from app.db.enums import ChannelType
from app.db.models import Channel, ChannelMessage, FileAttachment
from app.services.audit import log_audit
from app.services.members import validate_role_ids


async def _allow_list(session: AsyncSession, group_id: int, role_ids) -> Optional[list[int]]:
    # None and [] both mean "open to the group"; stored as None
    if not role_ids:
        return None
    return await validate_role_ids(session, group_id, role_ids)


async def create_channel(
    session: AsyncSession,
    group_id: int,
    name: str,
    type: ChannelType = ChannelType.text,
    description: Optional[str] = None,
    allowed_role_ids: Optional[list[int]] = None,
    user_id: Optional[int] = None,
) -> Channel:
    """
    Create a channel.

    Raises:
        InvalidRoleReference: An allow-list id is not a role of the group
    """
    allowed = await _allow_list(session, group_id, allowed_role_ids)
    channel = Channel(
        group_id=group_id,
        name=name,
        type=ChannelType(type),
        description=description,
        allowed_role_ids=allowed,
    )
    session.add(channel)
    await session.flush()
    log_audit(
        session,
        "channel.create",
        "channel",
        channel.id,
        group_id=group_id,
        user_id=user_id,
        meta={"name": name, "type": channel.type.value, "allowed_role_ids": allowed},
    )
    await session.commit()
    await session.refresh(channel)
    return channel


async def update_channel(
    session: AsyncSession,
    channel: Channel,
    changes: dict,
    user_id: Optional[int] = None,
) -> Channel:
    applied = {}
    for field in ("name", "description"):
        if field in changes:
            if field == "name" and not changes[field]:
                continue
            setattr(channel, field, changes[field])
            applied[field] = changes[field]
    if "type" in changes and changes["type"] is not None:
        channel.type = ChannelType(changes["type"])
        applied["type"] = channel.type.value
    if "allowed_role_ids" in changes:
        channel.allowed_role_ids = await _allow_list(session, channel.group_id, changes["allowed_role_ids"])
        applied["allowed_role_ids"] = channel.allowed_role_ids

    if applied:
        log_audit(
            session,
            "channel.update",
            "channel",
            channel.id,
            group_id=channel.group_id,
            user_id=user_id,
            meta=applied,
        )
        await session.commit()
        await session.refresh(channel)
    return channel


async def delete_channel(session: AsyncSession, channel: Channel, user_id: Optional[int] = None) -> None:
    """Delete a channel with its messages and attachments."""
    channel_id, group_id = channel.id, channel.group_id
    for stmt in (
        delete(FileAttachment).where(FileAttachment.channel_id == channel_id),
        delete(ChannelMessage).where(ChannelMessage.channel_id == channel_id),
        delete(Channel).where(Channel.id == channel_id),
    ):
        await session.execute(stmt.execution_options(synchronize_session=False))
    session.expunge(channel)

    log_audit(session, "channel.delete", "channel", channel_id, group_id=group_id, user_id=user_id)
    await session.commit()
    api_logger.info("Channel deleted", channel_id=channel_id, group_id=group_id, user_id=user_id)
