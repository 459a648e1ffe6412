import json
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_group_context
from app.db.database import get_db
from app.db.models import User
from app.permissions.constants import Permission
from app.permissions.dependencies import require_group_owner, require_group_permission
from app.permissions.repository import GroupContext
from app.services import groups as group_service
from app.services.audit import get_group_audit_logs

router = APIRouter()


class GroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    icon_url: Optional[str] = None


class GroupUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    icon_url: Optional[str] = None


class GroupResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    icon_url: Optional[str]
    owner_id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DisplayRole(BaseModel):
    id: int
    name: str
    color: str
    position: int


class MyPermissionsResponse(BaseModel):
    group_id: int
    is_owner: bool
    permissions: dict[str, bool]
    role_ids: List[int]
    display_role: Optional[DisplayRole]


class AuditLogResponse(BaseModel):
    id: int
    user_id: Optional[int]
    action: str
    target_type: Optional[str]
    target_id: Optional[int]
    meta: Optional[dict]
    request_id: Optional[str]
    created_at: Optional[datetime]


class AuditLogListResponse(BaseModel):
    items: List[AuditLogResponse]
    total: int


def display_role_payload(role) -> Optional[DisplayRole]:
    if role is None:
        return None
    return DisplayRole(id=role.id, name=role.name, color=role.color, position=role.position)


@router.post("/", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    request: GroupCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a group owned by the caller, seeded with the default roles and #general."""
    return await group_service.create_group(
        db,
        owner_id=user.id,
        name=request.name,
        description=request.description,
        icon_url=request.icon_url,
    )


@router.get("/", response_model=List[GroupResponse])
async def list_groups(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await group_service.list_user_groups(db, user.id)


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(ctx: GroupContext = Depends(get_group_context)):
    return ctx.group_row


@router.patch("/{group_id}", response_model=GroupResponse)
async def update_group(
    request: GroupUpdateRequest,
    ctx: GroupContext = Depends(require_group_owner),
    db: AsyncSession = Depends(get_db),
):
    changes = request.model_dump(exclude_unset=True)
    return await group_service.update_group(db, ctx.group_row, changes, user_id=ctx.member.user_id)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    ctx: GroupContext = Depends(require_group_owner),
    db: AsyncSession = Depends(get_db),
):
    await group_service.delete_group(db, ctx.group_row, user_id=ctx.member.user_id)


@router.get("/{group_id}/permissions/me", response_model=MyPermissionsResponse)
async def my_permissions(ctx: GroupContext = Depends(get_group_context)):
    """Effective permissions of the caller, as the client uses them to show or hide controls."""
    return MyPermissionsResponse(
        group_id=ctx.group.id,
        is_owner=ctx.is_owner,
        permissions=ctx.permissions.to_dict(),
        role_ids=[r.id for r in ctx.roles],
        display_role=display_role_payload(ctx.display_role),
    )


@router.get("/{group_id}/audit", response_model=AuditLogListResponse)
async def list_audit_logs(
    action: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: GroupContext = Depends(require_group_permission(Permission.MANAGE_GROUP)),
    db: AsyncSession = Depends(get_db),
):
    entries, total = await get_group_audit_logs(db, ctx.group.id, action=action, limit=limit, offset=offset)
    items = [
        AuditLogResponse(
            id=e.id,
            user_id=e.user_id,
            action=e.action,
            target_type=e.target_type,
            target_id=e.target_id,
            meta=json.loads(e.meta) if e.meta else None,
            request_id=e.request_id,
            created_at=e.created_at,
        )
        for e in entries
    ]
    return AuditLogListResponse(items=items, total=total)
