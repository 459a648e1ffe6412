"""
Load rows from the database and convert them into permission snapshots.
"""
from dataclasses import dataclass, field
from typing import Hashable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.db import crud
from app.db import models
from app.db.enums import ChannelType

from . import guards
from .constants import Permission
from .permission_set import PermissionSet
from .role_map import DEFAULT_PERMISSIONS
from .service import permission_service
from .snapshots import Channel, Group, GroupMember, Role


def role_snapshot(row: models.Role) -> Role:
    return Role(
        id=row.id,
        group_id=row.group_id,
        name=row.name,
        color=row.color,
        position=row.position or 0,
        permissions=PermissionSet.from_dict(row.permissions or {}, defaults=DEFAULT_PERMISSIONS),
        is_default=bool(row.is_default),
    )


def member_snapshot(row: models.GroupMember) -> GroupMember:
    return GroupMember(
        id=row.id,
        group_id=row.group_id,
        user_id=row.user_id,
        role_ids=frozenset(row.role_ids or ()),
        joined_at=row.joined_at,
    )


def channel_snapshot(row: models.Channel) -> Channel:
    allowed = row.allowed_role_ids
    return Channel(
        id=row.id,
        group_id=row.group_id,
        name=row.name,
        type=ChannelType(row.type),
        allowed_role_ids=frozenset(allowed) if allowed is not None else None,
    )


def group_snapshot(row: models.Group) -> Group:
    return Group(id=row.id, owner_id=row.owner_id, name=row.name)


@dataclass
class GroupContext:
    """Everything a route needs to authorize one user inside one group."""

    group: Group
    member: GroupMember
    roles: list[Role]
    group_roles: dict[Hashable, Role]
    group_row: models.Group
    member_row: models.GroupMember
    _permissions: Optional[PermissionSet] = field(default=None, repr=False)

    @property
    def is_owner(self) -> bool:
        return permission_service.is_owner(self.member.user_id, self.group)

    @property
    def permissions(self) -> PermissionSet:
        if self._permissions is None:
            self._permissions = permission_service.member_permissions(self.member, self.roles, self.group)
        return self._permissions

    @property
    def display_role(self) -> Optional[Role]:
        return permission_service.display_role(self.roles)

    def require(self, permission: Permission) -> None:
        guards.require_permission(self.member, self.roles, permission, self.group).raise_for_outcome()

    def require_channel_access(self, channel: Channel) -> None:
        guards.require_channel_access(self.member, self.roles, channel, self.group).raise_for_outcome()

    def require_channel_permission(self, channel: Channel, permission: Permission) -> None:
        guards.require_channel_permission(
            self.member, self.roles, channel, permission, self.group
        ).raise_for_outcome()

    def require_channel_management(self, channel: Channel) -> None:
        guards.require_channel_management(self.member, self.roles, channel, self.group).raise_for_outcome()

    def require_owner(self) -> None:
        guards.require_owner(self.member, self.group).raise_for_outcome()


async def load_group_context(db: AsyncSession, group_id: int, user_id: int) -> Optional[GroupContext]:
    """Return the user's authorization context in a group, or None when they are not a member."""
    group_row = await crud.get_group(db, group_id)
    if group_row is None:
        return None
    member_row = await crud.get_group_member(db, group_id, user_id)
    if member_row is None:
        return None

    group_roles = {r.id: role_snapshot(r) for r in await crud.get_group_roles(db, group_id)}
    member = member_snapshot(member_row)
    return GroupContext(
        group=group_snapshot(group_row),
        member=member,
        roles=permission_service.resolve_member_roles(member, group_roles),
        group_roles=group_roles,
        group_row=group_row,
        member_row=member_row,
    )
