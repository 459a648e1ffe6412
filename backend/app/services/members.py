"""
Group membership changes.
"""
from collections.abc import Iterable
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import api_logger
from app.db import crud
from app.db.models import Group, GroupMember, Role, User
from app.permissions.exceptions import ConstraintViolation, InvalidRoleReference, NotFound
from app.services.audit import log_audit


async def list_members(session: AsyncSession, group_id: int) -> list[tuple[GroupMember, User]]:
    """Members of a group with their user profiles, in join order."""
    q = (
        select(GroupMember, User)
        .join(User, User.id == GroupMember.user_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.id)
    )
    res = await session.execute(q)
    return [(member, user) for member, user in res.all()]


async def get_member_by_id(session: AsyncSession, group_id: int, member_id: int) -> Optional[GroupMember]:
    q = select(GroupMember).where(GroupMember.id == member_id, GroupMember.group_id == group_id)
    res = await session.execute(q)
    return res.scalar_one_or_none()


async def validate_role_ids(session: AsyncSession, group_id: int, role_ids: Iterable[int]) -> list[int]:
    """
    Check that every id names a role of `group_id`.

    Returns the ids de-duplicated in input order.

    Raises:
        InvalidRoleReference: For the first id that is unknown or belongs
            to another group
    """
    wanted = list(dict.fromkeys(role_ids))
    if not wanted:
        return []
    q = select(Role.id).where(Role.group_id == group_id, Role.id.in_(wanted))
    known = set((await session.execute(q)).scalars().all())
    for role_id in wanted:
        if role_id not in known:
            raise InvalidRoleReference(role_id, group_id)
    return wanted


async def default_role_ids(session: AsyncSession, group_id: int) -> list[int]:
    q = select(Role.id).where(Role.group_id == group_id, Role.is_default.is_(True)).order_by(Role.id)
    return list((await session.execute(q)).scalars().all())


async def add_member(
    session: AsyncSession,
    group_id: int,
    user_id: int,
    role_ids: Optional[Iterable[int]] = None,
    added_by: Optional[int] = None,
) -> GroupMember:
    """
    Add a user to a group.

    Without explicit roles the member receives the group's default roles.

    Raises:
        NotFound: The user does not exist
        ConstraintViolation: The user is already a member
        InvalidRoleReference: A role id does not belong to the group
    """
    user = await session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    if await crud.get_group_member(session, group_id, user_id) is not None:
        raise ConstraintViolation("User is already a member of this group.")

    if role_ids is None:
        ids = await default_role_ids(session, group_id)
    else:
        ids = await validate_role_ids(session, group_id, role_ids)

    member = GroupMember(group_id=group_id, user_id=user_id, role_ids=ids)
    session.add(member)
    await session.flush()
    log_audit(
        session,
        "member.add",
        "member",
        member.id,
        group_id=group_id,
        user_id=added_by,
        meta={"user_id": user_id, "role_ids": ids},
    )
    await session.commit()
    await session.refresh(member)
    api_logger.info("Member added", group_id=group_id, user_id=user_id, role_ids=ids)
    return member


async def set_member_roles(
    session: AsyncSession,
    member: GroupMember,
    role_ids: Iterable[int],
    changed_by: Optional[int] = None,
) -> GroupMember:
    """Replace the member's roles. Every id must belong to the member's group."""
    ids = await validate_role_ids(session, member.group_id, role_ids)
    previous = list(member.role_ids or [])
    member.role_ids = ids
    log_audit(
        session,
        "member.roles_update",
        "member",
        member.id,
        group_id=member.group_id,
        user_id=changed_by,
        meta={"before": previous, "after": ids},
    )
    await session.commit()
    await session.refresh(member)
    return member


async def remove_member(
    session: AsyncSession,
    group: Group,
    member: GroupMember,
    removed_by: Optional[int] = None,
) -> None:
    """
    Remove a member from the group.

    Raises:
        ConstraintViolation: The member is the group owner
    """
    if member.user_id == group.owner_id:
        raise ConstraintViolation("The group owner cannot be removed.")

    member_id, user_id = member.id, member.user_id
    await session.delete(member)
    log_audit(
        session,
        "member.remove",
        "member",
        member_id,
        group_id=group.id,
        user_id=removed_by,
        meta={"user_id": user_id},
    )
    await session.commit()
    api_logger.info("Member removed", group_id=group.id, user_id=user_id, removed_by=removed_by)
