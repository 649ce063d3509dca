"""
Read side of participation: a student's own status, the admin review queue, the
manage view and the request listing. Writes live in coordinator.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.enums import ParticipationStatus
from app.core.models import ParticipationRequest

from . import capacity, ledger
from .coordinator import ensure_event_access, load_event
from .schemas import (
    CapacitySummary,
    EventManageResponse,
    ManageCapacityInfo,
    ParticipationRequestListItem,
    ParticipationRequestResponse,
    PendingReviewResponse,
    RequestsByStatus,
    SchoolBreakdown,
)
from .students import get_student_for_user, school_names

_STATUS_ORDER = case(
    {
        ParticipationStatus.PENDING.value: 0,
        ParticipationStatus.APPROVED.value: 1,
        ParticipationStatus.ENROLLED.value: 2,
        ParticipationStatus.REJECTED.value: 3,
        ParticipationStatus.WITHDRAWN.value: 4,
    },
    value=ParticipationRequest.status,
    else_=5,
)


def to_list_item(request: ParticipationRequest, school_name: Optional[str] = None) -> ParticipationRequestListItem:
    """Flatten a request with its joined student and event."""
    data = ParticipationRequestResponse.model_validate(request).model_dump()
    student = request.student
    return ParticipationRequestListItem(
        **data,
        student_name=student.name if student else None,
        student_grade=student.grade if student else None,
        roll_number=student.roll_number if student else None,
        school_name=school_name,
        event_title=request.event.title if request.event else None,
    )


async def get_my_status(
    db: AsyncSession, event_id: UUID, current_user: CurrentUser
) -> Optional[ParticipationRequest]:
    """Latest request of the session student for this event (active first), or None."""
    student = await get_student_for_user(db, current_user.id)
    await load_event(db, event_id)
    return await ledger.find_latest_by_pair(db, student.id, event_id)


async def review_pending(db: AsyncSession, event_id: UUID, current_user: CurrentUser) -> PendingReviewResponse:
    event = await load_event(db, event_id)
    ensure_event_access(event, current_user)
    scope = None if current_user.is_super_admin else current_user.school_id

    pending = await ledger.find_by_event(db, event.id, ParticipationStatus.PENDING.value, school_id=scope)
    names = await school_names(db, [r.school_id for r in pending])
    school_capacity = None
    if scope is not None:
        school_capacity = CapacitySummary(**await capacity.capacity_summary(db, event, scope))
    return PendingReviewResponse(
        event_id=event.id,
        event_title=event.title,
        requests=[to_list_item(r, names.get(r.school_id)) for r in pending],
        capacity=CapacitySummary(**await capacity.capacity_summary(db, event)),
        school_capacity=school_capacity,
    )


async def manage_view(db: AsyncSession, event_id: UUID, current_user: CurrentUser) -> EventManageResponse:
    """
    All requests of the event grouped by status, with capacity and per-school figures.
    School admins see their own school's requests and figures; the per-school breakdown
    always covers the whole roster.
    """
    event = await load_event(db, event_id)
    ensure_event_access(event, current_user)
    scope = None if current_user.is_super_admin else current_user.school_id

    requests = await ledger.find_by_event(db, event.id, school_id=scope)
    names = await school_names(db, [r.school_id for r in requests] + [p.school_id for p in event.participants])
    grouped = RequestsByStatus()
    for request in requests:
        getattr(grouped, request.status).append(to_list_item(request, names.get(request.school_id)))

    summary = await capacity.capacity_summary(db, event, scope)
    per_school_cap = event.max_participants_per_school
    return EventManageResponse(
        event_id=event.id,
        event_title=event.title,
        event_date=event.date,
        status=event.status,
        lifecycle_status=event.lifecycle_status,
        requests=grouped,
        capacity_info=ManageCapacityInfo(
            **summary,
            approved=await ledger.count_approved(db, event.id, school_id=scope),
            rejected=len(grouped.REJECTED),
        ),
        per_school_breakdown=[
            SchoolBreakdown(
                school_id=entry.school_id,
                school_name=names.get(entry.school_id),
                count=len(entry.students),
                limit=per_school_cap,
                percentage=capacity.percentage(len(entry.students), per_school_cap),
            )
            for entry in event.participants
        ],
    )


async def list_participation_requests(
    db: AsyncSession,
    current_user: CurrentUser,
    *,
    status: Optional[str] = None,
    event_id: Optional[UUID] = None,
) -> List[ParticipationRequestListItem]:
    """Admin listing; school admins only see their own school's requests."""
    stmt = select(ParticipationRequest)
    if not current_user.is_super_admin:
        stmt = stmt.where(ParticipationRequest.school_id == current_user.school_id)
    if status:
        stmt = stmt.where(ParticipationRequest.status == status.upper())
    if event_id:
        stmt = stmt.where(ParticipationRequest.event_id == event_id)
    stmt = stmt.order_by(_STATUS_ORDER, ParticipationRequest.requested_at.desc())

    requests = (await db.execute(stmt)).unique().scalars().all()
    names = await school_names(db, [r.school_id for r in requests])
    return [to_list_item(r, names.get(r.school_id)) for r in requests]
