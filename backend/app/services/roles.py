"""
Role management inside a group.

Authorization happens before these functions are called; they enforce the
data constraints that remain (default-role protection, dangling-reference
cleanup, channels that would lose their only allowed role).
"""
import re
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import api_logger
from app.db.models import Channel, GroupMember, Role
from app.permissions.exceptions import ConstraintViolation
from app.permissions.permission_set import PermissionSet
from app.permissions.role_map import DEFAULT_PERMISSIONS
from app.services.audit import log_audit

ROLE_NAME_MIN = 2
ROLE_NAME_MAX = 30
COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def validate_role_fields(
    name: Optional[str] = None,
    color: Optional[str] = None,
    position: Optional[int] = None,
) -> None:
    """Raise ValueError for a role name, colour or position the role form would reject."""
    if name is not None:
        stripped = name.strip()
        if not ROLE_NAME_MIN <= len(stripped) <= ROLE_NAME_MAX:
            raise ValueError(f"Role name must be {ROLE_NAME_MIN}-{ROLE_NAME_MAX} characters")
    if color is not None and not COLOR_RE.match(color):
        raise ValueError("Role color must be a hex value like #A1B2C3")
    if position is not None and position < 0:
        raise ValueError("Role position must not be negative")


async def create_role(
    session: AsyncSession,
    group_id: int,
    name: str,
    color: str = "#9E9E9E",
    position: int = 0,
    permissions: Optional[dict] = None,
    user_id: Optional[int] = None,
) -> Role:
    """
    Create a role in a group.

    `permissions` is a partial key -> bool map; missing keys take the
    defaults and unknown keys raise ValueError.
    """
    validate_role_fields(name, color, position)
    perms = PermissionSet.from_dict(permissions or {}, defaults=DEFAULT_PERMISSIONS)

    role = Role(
        group_id=group_id,
        name=name.strip(),
        color=color,
        position=position,
        permissions=perms.to_dict(),
        is_default=False,
    )
    session.add(role)
    await session.flush()
    log_audit(session, "role.create", "role", role.id, group_id=group_id, user_id=user_id, meta={"name": role.name})
    await session.commit()
    await session.refresh(role)
    return role


async def update_role(
    session: AsyncSession,
    role: Role,
    changes: dict,
    user_id: Optional[int] = None,
) -> Role:
    validate_role_fields(changes.get("name"), changes.get("color"), changes.get("position"))

    applied = {}
    if changes.get("name") is not None:
        role.name = changes["name"].strip()
        applied["name"] = role.name
    for field in ("color", "position"):
        if changes.get(field) is not None:
            setattr(role, field, changes[field])
            applied[field] = changes[field]
    if changes.get("permissions") is not None:
        # Partial updates merge onto what the role already grants
        current = PermissionSet.from_dict(role.permissions or {}, defaults=DEFAULT_PERMISSIONS)
        role.permissions = PermissionSet.from_dict(changes["permissions"], defaults=current).to_dict()
        applied["permissions"] = changes["permissions"]

    if applied:
        log_audit(session, "role.update", "role", role.id, group_id=role.group_id, user_id=user_id, meta=applied)
        await session.commit()
        await session.refresh(role)
    return role


async def delete_role(session: AsyncSession, role: Role, user_id: Optional[int] = None) -> int:
    """
    Delete a role and strip it from every member of its group.

    Channel allow-lists lose the id as well. A channel whose allow-list
    holds nothing but this role would become open to the whole group, so
    that case is refused instead.

    Returns:
        Number of members whose role list changed

    Raises:
        ConstraintViolation: The role is a default role, or the only role
            allowed into some channel
    """
    if role.is_default:
        raise ConstraintViolation("Default roles cannot be deleted.")

    group_id = role.group_id
    channels = (await session.execute(select(Channel).where(Channel.group_id == group_id))).scalars().all()
    for channel in channels:
        allowed = channel.allowed_role_ids or []
        if role.id in allowed and len(allowed) == 1:
            raise ConstraintViolation(
                f"Role is the only role allowed into #{channel.name}; update the channel first."
            )

    members = (await session.execute(select(GroupMember).where(GroupMember.group_id == group_id))).scalars().all()
    stripped = 0
    for member in members:
        ids = member.role_ids or []
        if role.id in ids:
            member.role_ids = [rid for rid in ids if rid != role.id]
            stripped += 1
    for channel in channels:
        allowed = channel.allowed_role_ids or []
        if role.id in allowed:
            channel.allowed_role_ids = [rid for rid in allowed if rid != role.id]

    role_id = role.id
    await session.delete(role)
    log_audit(
        session,
        "role.delete",
        "role",
        role_id,
        group_id=group_id,
        user_id=user_id,
        meta={"name": role.name, "members_updated": stripped},
    )
    await session.commit()
    api_logger.info("Role deleted", role_id=role_id, group_id=group_id, members_updated=stripped)
    return stripped
