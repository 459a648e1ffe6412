from fastapi import Depends

from app.api.deps import get_group_context
from app.permissions.constants import Permission
from app.permissions.repository import GroupContext


def require_group_permission(permission: Permission):
    """Route dependency: the caller's group context, after checking `permission`.

    Use on routes that carry a `group_id` path parameter.
    """
    async def dependency(ctx: GroupContext = Depends(get_group_context)) -> GroupContext:
        ctx.require(permission)
        return ctx

    return dependency


async def require_group_owner(ctx: GroupContext = Depends(get_group_context)) -> GroupContext:
    ctx.require_owner()
    return ctx
