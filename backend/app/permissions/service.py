from collections.abc import Iterable, Mapping
from typing import Hashable, Optional

from app.core.logging import permissions_logger

from .exceptions import InvalidRoleReference
from .permission_set import PermissionSet
from .snapshots import Group, GroupMember, Role


class PermissionService:
    """Combine the roles a member holds into effective capabilities."""

    @staticmethod
    def effective_permissions(roles: Iterable[Role]) -> PermissionSet:
        """
        OR every role's permission set together.
        A member is as privileged as their most generous role; no roles
        means no permissions.
        """
        granted: set = set()
        for role in roles:
            granted |= role.permissions.granted
        return PermissionSet(granted)

    @staticmethod
    def display_role(roles: Iterable[Role]) -> Optional[Role]:
        """
        Highest-position role, used for name colour and member grouping.
        Equal positions resolve to the role with the lowest id.
        """
        roles = list(roles)
        if not roles:
            return None
        return min(roles, key=lambda r: (-r.position, r.id))

    @staticmethod
    def is_owner(user_id: Hashable, group: Optional[Group]) -> bool:
        return group is not None and user_id == group.owner_id

    @staticmethod
    def owner_permissions() -> PermissionSet:
        return PermissionSet.all()

    def member_permissions(
        self,
        member: GroupMember,
        roles: Iterable[Role],
        group: Optional[Group] = None,
    ) -> PermissionSet:
        """Effective permissions with the group owner override applied."""
        if group is not None and member.group_id == group.id and self.is_owner(member.user_id, group):
            return self.owner_permissions()
        return self.effective_permissions(roles)

    def resolve_member_roles(
        self,
        member: GroupMember,
        group_roles: Iterable[Role] | Mapping[Hashable, Role],
    ) -> list[Role]:
        """
        Look up the roles referenced by `member.role_ids`.

        Ids that do not resolve, or resolve to another group's role, are
        logged and skipped so a broken reference degrades to "role absent".
        Result is ordered by position, highest first.
        """
        if isinstance(group_roles, Mapping):
            by_id = dict(group_roles)
        else:
            by_id = {r.id: r for r in group_roles}

        resolved: list[Role] = []
        for role_id in member.role_ids:
            role = by_id.get(role_id)
            if role is None or role.group_id != member.group_id:
                fault = InvalidRoleReference(role_id, member.group_id)
                permissions_logger.warning(
                    "[PERMS] dropping dangling role reference",
                    member_id=member.id,
                    group_id=member.group_id,
                    role_id=role_id,
                    reason=str(fault),
                )
                continue
            resolved.append(role)
        resolved.sort(key=lambda r: (-r.position, r.id))
        return resolved


permission_service = PermissionService()
