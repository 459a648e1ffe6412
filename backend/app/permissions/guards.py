"""
Authorization facade.

Every route asks its questions here. The functions are pure over the
snapshots they receive and return an `AuthResult` for expected denials;
they only raise for malformed input (an unknown permission key, for
instance). Call `raise_for_outcome()` at the HTTP boundary to turn a
denial into the matching HTTP error.
"""
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.core.logging import permissions_logger

from .checks import can_manage, can_view
from .constants import Permission
from .exceptions import ConstraintViolation, NotFound, PermissionDenied
from .service import permission_service
from .snapshots import Channel, Group, GroupMember, Role


class AuthOutcome(str, Enum):
    OK = "ok"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    CONSTRAINT_VIOLATION = "constraint_violation"


@dataclass(frozen=True)
class AuthResult:
    outcome: AuthOutcome
    detail: Optional[str] = None
    permission: Optional[Permission] = None

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.OK

    def __bool__(self) -> bool:
        return self.ok

    def raise_for_outcome(self) -> None:
        if self.outcome is AuthOutcome.OK:
            return
        if self.outcome is AuthOutcome.PERMISSION_DENIED:
            raise PermissionDenied()
        if self.outcome is AuthOutcome.NOT_FOUND:
            raise NotFound()
        raise ConstraintViolation(self.detail or "This operation violates database constraints.")


OK = AuthResult(AuthOutcome.OK)


def _denied(member: GroupMember, reason: str, permission: Optional[Permission] = None) -> AuthResult:
    permissions_logger.info(
        "[PERMS_DENIED]",
        user_id=member.user_id,
        group_id=member.group_id,
        permission=permission.value if permission else None,
        reason=reason,
    )
    return AuthResult(AuthOutcome.PERMISSION_DENIED, reason, permission)


def _not_found(member: GroupMember, what: str) -> AuthResult:
    permissions_logger.info(
        "[PERMS_NOT_FOUND]",
        user_id=member.user_id,
        group_id=member.group_id,
        target=what,
    )
    return AuthResult(AuthOutcome.NOT_FOUND, f"{what} not found")


def _owns(member: GroupMember, group: Optional[Group]) -> bool:
    return (
        group is not None
        and group.id == member.group_id
        and permission_service.is_owner(member.user_id, group)
    )


def require_permission(
    member: GroupMember,
    roles: Iterable[Role],
    permission: Permission | str,
    group: Optional[Group] = None,
) -> AuthResult:
    """Check a group-level capability, honouring the owner override."""
    permission = Permission(permission)
    if _owns(member, group):
        return OK
    if permission_service.effective_permissions(roles)[permission]:
        return OK
    return _denied(member, f"missing {permission.value}", permission)


def require_channel_access(
    member: GroupMember,
    roles: Iterable[Role],
    channel: Channel,
    group: Optional[Group] = None,
) -> AuthResult:
    """
    not_found when the channel lives in another group, permission_denied
    when its allow-list excludes every role the member holds. Group owners
    see every channel of their own group.
    """
    if channel.group_id != member.group_id:
        return _not_found(member, "channel")
    if _owns(member, group) or can_view(channel, member):
        return OK
    return _denied(member, f"channel {channel.id} is restricted")


def require_channel_permission(
    member: GroupMember,
    roles: Iterable[Role],
    channel: Channel,
    permission: Permission | str,
    group: Optional[Group] = None,
) -> AuthResult:
    roles = list(roles)
    access = require_channel_access(member, roles, channel, group)
    if not access:
        return access
    return require_permission(member, roles, permission, group)


def require_channel_management(
    member: GroupMember,
    roles: Iterable[Role],
    channel: Channel,
    group: Optional[Group] = None,
) -> AuthResult:
    roles = list(roles)
    access = require_channel_access(member, roles, channel, group)
    if not access:
        return access
    if can_manage(channel, member, roles, group):
        return OK
    return _denied(member, f"cannot manage channel {channel.id}", Permission.MANAGE_CHANNELS)


def filter_visible_channels(
    channels: Iterable[Channel],
    member: GroupMember,
    roles: Iterable[Role],
    group: Optional[Group] = None,
) -> Iterator[Channel]:
    """Lazily yield the channels the member may see, in input order."""
    owner = _owns(member, group)
    for channel in channels:
        if channel.group_id != member.group_id:
            continue
        if owner or can_view(channel, member):
            yield channel


def check_role_deletion(
    member: GroupMember,
    roles: Iterable[Role],
    role: Role,
    group: Optional[Group] = None,
) -> AuthResult:
    if role.group_id != member.group_id:
        return _not_found(member, "role")
    allowed = require_permission(member, roles, Permission.MANAGE_ROLES, group)
    if not allowed:
        return allowed
    if role.is_default:
        return AuthResult(
            AuthOutcome.CONSTRAINT_VIOLATION,
            "Default roles cannot be deleted.",
        )
    return OK


def require_owner(member: GroupMember, group: Group) -> AuthResult:
    if member.group_id != group.id:
        return _not_found(member, "group")
    if permission_service.is_owner(member.user_id, group):
        return OK
    return _denied(member, "owner only")
