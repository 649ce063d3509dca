from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_admin
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.schemas import ApiResponse
from app.db.session import get_db

from . import service

router = APIRouter(prefix="/api/v1", tags=["activity-logs"])


@router.get("/activity-logs", response_model=ApiResponse)
async def list_activity_logs(
    action: Optional[str] = Query(None, max_length=100, description="e.g. participation_approved"),
    entity_type: Optional[str] = Query(None, alias="targetType", max_length=50),
    entity_id: Optional[UUID] = Query(None, alias="targetId"),
    limit: int = Query(50, ge=1),
    skip: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse:
    """Audit trail of the caller's school (every school for super admins)."""
    page = await service.list_logs(
        db,
        current_user,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=min(limit, settings.max_page_size),
        skip=skip,
    )
    return ApiResponse(message="Activity logs retrieved", data=page)
