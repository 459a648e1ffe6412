from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_group_context
from app.db.database import get_db
from app.db.models import Role as RoleRow
from app.permissions import guards
from app.permissions.constants import Permission
from app.permissions.dependencies import require_group_permission
from app.permissions.exceptions import NotFound
from app.permissions.repository import GroupContext, role_snapshot
from app.services import roles as role_service

router = APIRouter()


class RoleCreateRequest(BaseModel):
    name: str
    color: str = "#9E9E9E"
    position: int = Field(0, ge=0)
    permissions: Optional[dict[str, bool]] = None


class RoleUpdateRequest(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    position: Optional[int] = Field(None, ge=0)
    permissions: Optional[dict[str, bool]] = None


class RoleResponse(BaseModel):
    id: int
    group_id: int
    name: str
    color: str
    position: int
    is_default: bool
    permissions: dict[str, bool]


def role_payload(row: RoleRow) -> RoleResponse:
    snap = role_snapshot(row)
    return RoleResponse(
        id=snap.id,
        group_id=snap.group_id,
        name=snap.name,
        color=snap.color,
        position=snap.position,
        is_default=snap.is_default,
        permissions=snap.permissions.to_dict(),
    )


async def _load_role(db: AsyncSession, ctx: GroupContext, role_id: int) -> RoleRow:
    row = (await db.execute(select(RoleRow).where(RoleRow.id == role_id))).scalar_one_or_none()
    if row is None or row.group_id != ctx.group.id:
        raise NotFound("Role not found")
    return row


@router.get("/{group_id}/roles", response_model=List[RoleResponse])
async def list_roles(
    ctx: GroupContext = Depends(get_group_context),
    db: AsyncSession = Depends(get_db),
):
    """Roles of the group, highest position first."""
    rows = (
        await db.execute(
            select(RoleRow)
            .where(RoleRow.group_id == ctx.group.id)
            .order_by(RoleRow.position.desc(), RoleRow.id)
        )
    ).scalars().all()
    return [role_payload(r) for r in rows]


@router.post("/{group_id}/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    request: RoleCreateRequest,
    ctx: GroupContext = Depends(require_group_permission(Permission.MANAGE_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        row = await role_service.create_role(
            db,
            ctx.group.id,
            name=request.name,
            color=request.color,
            position=request.position,
            permissions=request.permissions,
            user_id=ctx.member.user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return role_payload(row)


@router.patch("/{group_id}/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: int,
    request: RoleUpdateRequest,
    ctx: GroupContext = Depends(require_group_permission(Permission.MANAGE_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_role(db, ctx, role_id)
    try:
        row = await role_service.update_role(
            db, row, request.model_dump(exclude_unset=True), user_id=ctx.member.user_id
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return role_payload(row)


@router.delete("/{group_id}/roles/{role_id}")
async def delete_role(
    role_id: int,
    ctx: GroupContext = Depends(get_group_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete a role. Members holding the role lose it and channels drop it
    from their allow-lists.

    Refused with 409 when the role is a default role, or when it is the
    only allowed role of a restricted channel (the channel would become
    open to everyone).
    """
    row = await _load_role(db, ctx, role_id)
    guards.check_role_deletion(ctx.member, ctx.roles, role_snapshot(row), ctx.group).raise_for_outcome()
    members_updated = await role_service.delete_role(db, row, user_id=ctx.member.user_id)
    return {"deleted": role_id, "members_updated": members_updated}
