from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_group_context
from app.api.groups import DisplayRole, display_role_payload
from app.db.database import get_db
from app.db.enums import NotificationType
from app.permissions.constants import Permission
from app.permissions.dependencies import require_group_permission
from app.permissions.exceptions import InvalidRoleReference, NotFound, invalid_reference_response
from app.permissions.repository import GroupContext, member_snapshot
from app.permissions.service import permission_service
from app.realtime.feed import ChangeFeed, get_change_feed
from app.services import members as member_service
from app.services.notifications import NotificationService

router = APIRouter()


class MemberAddRequest(BaseModel):
    user_id: int
    role_ids: Optional[List[int]] = None


class MemberRolesRequest(BaseModel):
    role_ids: List[int]


class MemberResponse(BaseModel):
    id: int
    group_id: int
    user_id: int
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role_ids: List[int]
    is_owner: bool = False
    display_role: Optional[DisplayRole] = None
    joined_at: Optional[datetime] = None


def member_payload(ctx: GroupContext, row, user=None) -> MemberResponse:
    snap = member_snapshot(row)
    roles = permission_service.resolve_member_roles(snap, ctx.group_roles)
    return MemberResponse(
        id=row.id,
        group_id=row.group_id,
        user_id=row.user_id,
        username=user.username if user else None,
        full_name=user.full_name if user else None,
        avatar_url=user.avatar_url if user else None,
        role_ids=[r.id for r in roles],
        is_owner=permission_service.is_owner(row.user_id, ctx.group),
        display_role=display_role_payload(permission_service.display_role(roles)),
        joined_at=row.joined_at,
    )


async def _load_member(db: AsyncSession, ctx: GroupContext, member_id: int):
    row = await member_service.get_member_by_id(db, ctx.group.id, member_id)
    if row is None:
        raise NotFound("Member not found")
    return row


@router.get("/{group_id}/members", response_model=List[MemberResponse])
async def list_members(
    ctx: GroupContext = Depends(get_group_context),
    db: AsyncSession = Depends(get_db),
):
    """Members with their display role, used to group the member list."""
    return [member_payload(ctx, row, user) for row, user in await member_service.list_members(db, ctx.group.id)]


@router.post("/{group_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    request: MemberAddRequest,
    ctx: GroupContext = Depends(require_group_permission(Permission.MANAGE_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    try:
        row = await member_service.add_member(
            db, ctx.group.id, request.user_id, request.role_ids, added_by=ctx.member.user_id
        )
    except InvalidRoleReference as e:
        raise invalid_reference_response(e)
    await NotificationService(db, feed).create_notification(
        row.user_id,
        NotificationType.group_invite,
        f"You were added to {ctx.group.name}",
        link=f"/groups/{ctx.group.id}",
        sender_id=ctx.member.user_id,
        entity_id=ctx.group.id,
        entity_type="group",
    )
    return member_payload(ctx, row)


@router.put("/{group_id}/members/{member_id}/roles", response_model=MemberResponse)
async def set_member_roles(
    member_id: int,
    request: MemberRolesRequest,
    ctx: GroupContext = Depends(require_group_permission(Permission.MANAGE_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    row = await _load_member(db, ctx, member_id)
    try:
        row = await member_service.set_member_roles(db, row, request.role_ids, changed_by=ctx.member.user_id)
    except InvalidRoleReference as e:
        raise invalid_reference_response(e)
    if row.user_id != ctx.member.user_id:
        await NotificationService(db, feed).create_notification(
            row.user_id,
            NotificationType.role_update,
            f"Your roles in {ctx.group.name} changed",
            link=f"/groups/{ctx.group.id}",
            sender_id=ctx.member.user_id,
            entity_id=row.id,
            entity_type="member",
        )
    return member_payload(ctx, row)


@router.delete("/{group_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    member_id: int,
    ctx: GroupContext = Depends(require_group_permission(Permission.KICK_MEMBERS)),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_member(db, ctx, member_id)
    await member_service.remove_member(db, ctx.group_row, row, removed_by=ctx.member.user_id)
