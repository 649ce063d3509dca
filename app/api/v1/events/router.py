from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_admin, require_event_author
from app.auth.schemas import CurrentUser
from app.db.session import get_db

from app.api.v1.participation import coordinator

from .schemas import (
    EventCreate,
    EventDeleteResponse,
    EventDetailResponse,
    EventResponse,
    EventStatusUpdate,
    EventUpdate,
    ReconcileResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.post("", response_model=EventDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: EventCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_event_author),
) -> EventDetailResponse:
    """Create an event. Teachers create PENDING events, admins APPROVED ones (or DRAFT on request)."""
    event = await service.create_event(db, payload, current_user)
    return await service.to_detail(db, event)


@router.get("", response_model=List[EventResponse])
async def list_events(
    status_filter: Optional[str] = Query(None, alias="status", description="DRAFT, PENDING, APPROVED, REJECTED"),
    lifecycle: Optional[str] = Query(None, alias="lifecycleStatus", description="ACTIVE, COMPLETED, ARCHIVED"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[EventResponse]:
    """Events visible to the caller: global ones plus their school's."""
    return await service.list_events(db, current_user, status=status_filter, lifecycle=lifecycle)


@router.get("/{event_id}", response_model=EventDetailResponse)
async def get_event(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> EventDetailResponse:
    event = await service.get_event(db, event_id, current_user)
    return await service.to_detail(db, event)


@router.put("/{event_id}", response_model=EventDetailResponse)
async def update_event(
    event_id: UUID,
    payload: EventUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> EventDetailResponse:
    """Edit title, dates, grades, caps or lifecycle. Students already seated are never removed."""
    event = await service.update_event(db, event_id, payload, current_user)
    return await service.to_detail(db, event)


@router.put("/{event_id}/status", response_model=EventResponse)
async def update_event_status(
    event_id: UUID,
    payload: EventStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> EventResponse:
    """SUPER_ADMIN on any event; SCHOOL_ADMIN on their own school's events only."""
    return await service.update_status(db, event_id, payload.status, current_user, remarks=payload.remarks)


@router.delete("/{event_id}", response_model=EventDeleteResponse)
async def delete_event(
    event_id: UUID,
    permanent: bool = Query(False, description="Delete the event with its roster and requests"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> EventDeleteResponse:
    """Archive the event, or with permanent=true delete it together with its roster and requests."""
    if not permanent:
        await service.archive_event(db, event_id, current_user)
        return EventDeleteResponse(message="Event archived", archived=True)
    deleted = await service.delete_event(db, event_id, current_user)
    return EventDeleteResponse(message="Event and related requests permanently deleted", deleted_requests=deleted)


@router.post("/{event_id}/roster/reconcile", response_model=ReconcileResponse)
async def reconcile_roster(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ReconcileResponse:
    """Recompute the roster from APPROVED and ENROLLED requests."""
    result = await coordinator.reconcile_roster(db, event_id, current_user)
    changed = len(result["added"]) + len(result["removed"])
    return ReconcileResponse(
        message="Roster already consistent" if not changed else f"Roster repaired ({changed} change(s))",
        added=result["added"],
        removed=result["removed"],
    )
