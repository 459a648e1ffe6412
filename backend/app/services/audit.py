"""
Audit trail for group administration.

Entries are added to the caller's session and committed together with the
change they describe.
"""
import json
from typing import Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import api_logger, request_id_var
from app.db.models import AuditLog


def log_audit(
    db: AsyncSession,
    action: str,
    target_type: str,
    target_id: Optional[int] = None,
    *,
    group_id: Optional[int] = None,
    user_id: Optional[int] = None,
    meta: Optional[dict] = None,
) -> AuditLog:
    """
    Record an audit event.

    Args:
        db: Session of the request making the change
        action: Dotted action name (e.g. 'role.delete', 'member.roles_update')
        target_type: Kind of entity affected (group, role, member, channel, ...)
        target_id: Id of the affected entity
        group_id: Owning group, kept even after the group is deleted
        user_id: Acting user
        meta: Extra JSON-serializable details
    """
    entry = AuditLog(
        user_id=user_id,
        group_id=group_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta=json.dumps(meta, default=str) if meta else None,
        request_id=request_id_var.get(),
    )
    db.add(entry)
    api_logger.info(
        "audit_logged",
        action=action,
        target_type=target_type,
        target_id=target_id,
        group_id=group_id,
        user_id=user_id,
    )
    return entry


async def get_group_audit_logs(
    db: AsyncSession,
    group_id: int,
    action: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """Audit entries of one group, newest first, with the unpaginated total."""
    conditions = [AuditLog.group_id == group_id]
    if action:
        # 'role' matches 'role.create', 'role.delete', ...
        conditions.append(AuditLog.action.ilike(f"{action}%"))

    total = await db.scalar(select(func.count(AuditLog.id)).where(*conditions))
    result = await db.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(desc(AuditLog.created_at), desc(AuditLog.id))
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total or 0
