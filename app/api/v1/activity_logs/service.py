"""
Read access to the audit trail written by the ledger and event administration.
School admins see entries of their own school; super admins see every entry.
"""

import math
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.models import AuditLog

from .schemas import ActivityLogEntry, ActivityLogPage, LogPagination


async def list_logs(
    db: AsyncSession,
    current_user: CurrentUser,
    *,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    limit: int = 50,
    skip: int = 0,
) -> ActivityLogPage:
    """Newest first, filtered by action and target type."""
    conditions = []
    if not current_user.is_super_admin:
        conditions.append(AuditLog.school_id == current_user.school_id)
    if action:
        conditions.append(AuditLog.action == action)
    if entity_type:
        conditions.append(AuditLog.entity_type == entity_type)
    if entity_id:
        conditions.append(AuditLog.entity_id == entity_id)

    total = (await db.execute(select(func.count(AuditLog.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id)
        .offset(skip)
        .limit(limit)
    )
    return ActivityLogPage(
        logs=[ActivityLogEntry.model_validate(entry) for entry in result.scalars().all()],
        pagination=LogPagination(total=total, limit=limit, skip=skip, pages=math.ceil(total / limit)),
    )
