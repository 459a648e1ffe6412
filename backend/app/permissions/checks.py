"""
Channel visibility gate.

Pure checks over snapshots; the facade in `guards` turns them into
authorization results.
"""
from collections.abc import Iterable
from typing import Optional

from .constants import Permission
from .service import permission_service
from .snapshots import Channel, Group, GroupMember, Role


def can_view(channel: Channel, member: GroupMember) -> bool:
    """
    True when the member may see the channel.
    Open channels (no allow-list) are visible to every member of the
    channel's group; restricted ones need at least one listed role.
    """
    if member.group_id != channel.group_id:
        return False
    if channel.is_open:
        return True
    return not channel.allowed_role_ids.isdisjoint(member.role_ids)


def can_manage(
    channel: Channel,
    member: GroupMember,
    roles: Iterable[Role],
    group: Optional[Group] = None,
) -> bool:
    if member.group_id != channel.group_id:
        return False
    if permission_service.is_owner(member.user_id, group) and group.id == channel.group_id:
        return True
    return permission_service.effective_permissions(roles)[Permission.MANAGE_CHANNELS]
