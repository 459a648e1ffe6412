"""
Immutable views of groups, roles, members and channels.

Route code loads rows, converts them with `app.permissions.repository`, and
hands these snapshots to the permission functions. Nothing in this package
reads from the database itself.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Hashable, Optional

from app.db.enums import ChannelType

from .permission_set import PermissionSet


@dataclass(frozen=True)
class Group:
    id: Hashable
    owner_id: Hashable
    name: str = ""


@dataclass(frozen=True)
class Role:
    id: Hashable
    group_id: Optional[Hashable]
    name: str
    position: int
    permissions: PermissionSet = field(default_factory=PermissionSet)
    color: str = "#9E9E9E"
    is_default: bool = False


@dataclass(frozen=True)
class GroupMember:
    id: Hashable
    group_id: Hashable
    user_id: Hashable
    role_ids: frozenset = frozenset()
    joined_at: Optional[datetime] = None

    def __post_init__(self):
        # accept any iterable of ids from callers
        object.__setattr__(self, "role_ids", frozenset(self.role_ids))


@dataclass(frozen=True)
class Channel:
    id: Hashable
    group_id: Hashable
    name: str = ""
    type: ChannelType = ChannelType.text
    allowed_role_ids: Optional[frozenset] = None

    def __post_init__(self):
        if self.allowed_role_ids is not None:
            object.__setattr__(self, "allowed_role_ids", frozenset(self.allowed_role_ids))

    @property
    def is_open(self) -> bool:
        """An open channel has no role allow-list and is visible to the whole group."""
        return not self.allowed_role_ids
