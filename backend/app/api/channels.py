from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_group_context
from app.db import crud
from app.db.database import get_db
from app.db.enums import ChannelType
from app.permissions import guards
from app.permissions.constants import Permission
from app.permissions.dependencies import require_group_permission
from app.permissions.exceptions import InvalidRoleReference, NotFound, invalid_reference_response
from app.permissions.repository import GroupContext, channel_snapshot
from app.services import channels as channel_service

router = APIRouter()


class ChannelCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: ChannelType = ChannelType.text
    description: Optional[str] = None
    allowed_role_ids: Optional[List[int]] = None


class ChannelUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[ChannelType] = None
    description: Optional[str] = None
    allowed_role_ids: Optional[List[int]] = None


class ChannelResponse(BaseModel):
    id: int
    group_id: int
    name: str
    type: ChannelType
    description: Optional[str]
    allowed_role_ids: Optional[List[int]]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


async def _load_channel(db: AsyncSession, ctx: GroupContext, channel_id: int):
    row = await crud.get_channel(db, channel_id)
    if row is None or row.group_id != ctx.group.id:
        raise NotFound("Channel not found")
    return row


@router.get("/{group_id}/channels", response_model=List[ChannelResponse])
async def list_channels(
    ctx: GroupContext = Depends(get_group_context),
    db: AsyncSession = Depends(get_db),
):
    """Channels of the group the caller can see."""
    rows = {row.id: row for row in await crud.get_group_channels(db, ctx.group.id)}
    visible = guards.filter_visible_channels(
        (channel_snapshot(r) for r in rows.values()), ctx.member, ctx.roles, ctx.group
    )
    return [rows[c.id] for c in visible]


@router.post("/{group_id}/channels", response_model=ChannelResponse, status_code=status.HTTP_201_CREATED)
async def create_channel(
    request: ChannelCreateRequest,
    ctx: GroupContext = Depends(require_group_permission(Permission.MANAGE_CHANNELS)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await channel_service.create_channel(
            db,
            ctx.group.id,
            name=request.name,
            type=request.type,
            description=request.description,
            allowed_role_ids=request.allowed_role_ids,
            user_id=ctx.member.user_id,
        )
    except InvalidRoleReference as e:
        raise invalid_reference_response(e)


@router.get("/{group_id}/channels/{channel_id}", response_model=ChannelResponse)
async def get_channel(
    channel_id: int,
    ctx: GroupContext = Depends(get_group_context),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_channel(db, ctx, channel_id)
    ctx.require_channel_access(channel_snapshot(row))
    return row


@router.patch("/{group_id}/channels/{channel_id}", response_model=ChannelResponse)
async def update_channel(
    channel_id: int,
    request: ChannelUpdateRequest,
    ctx: GroupContext = Depends(get_group_context),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_channel(db, ctx, channel_id)
    ctx.require_channel_management(channel_snapshot(row))
    try:
        return await channel_service.update_channel(
            db, row, request.model_dump(exclude_unset=True), user_id=ctx.member.user_id
        )
    except InvalidRoleReference as e:
        raise invalid_reference_response(e)


@router.delete("/{group_id}/channels/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_channel(
    channel_id: int,
    ctx: GroupContext = Depends(get_group_context),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_channel(db, ctx, channel_id)
    ctx.require_channel_management(channel_snapshot(row))
    await channel_service.delete_channel(db, row, user_id=ctx.member.user_id)
