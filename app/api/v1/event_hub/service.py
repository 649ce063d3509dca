"""
Read-only views over events for students (hub) and school admins (capacity dashboard).
Enrollment figures come from the roster; nothing here writes.
"""

import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.enums import ACTIVE_STATUSES, SEATED_STATUSES, LifecycleStatus
from app.core.models import Event, ParticipationRequest
from app.core.schemas import PageInfo
from app.core.timeutils import to_naive_utc

from app.api.v1.participation import capacity, eligibility
from app.api.v1.participation.students import get_student_for_user, school_names

from .schemas import (
    CapacityInfo,
    EligibleEvent,
    EligibleEventPage,
    EventCapacityRow,
    HubEvent,
    HubEventPage,
    MyRequestItem,
    MyRequestsResponse,
    OwnSchoolCapacity,
    PastEventItem,
    PastEventPage,
    SchoolCapacity,
)

T = TypeVar("T")

_SCHOOL_STATUS_ORDER = {"full": 0, "near-capacity": 1, "available": 2}


def paginate(items: Sequence[T], page: int, page_size: int) -> Tuple[List[T], PageInfo]:
    total_items = len(items)
    start = (page - 1) * page_size
    return list(items[start:start + page_size]), PageInfo(
        current=page,
        page_size=page_size,
        total_items=total_items,
        total=math.ceil(total_items / page_size) if total_items else 0,
        has_more=start + page_size < total_items,
    )


async def _requests_by_event(
    db: AsyncSession, student_id: UUID, event_ids: Iterable[UUID]
) -> Dict[UUID, ParticipationRequest]:
    """Per event, the student's active request, else their most recent one."""
    ids = list(event_ids)
    if not ids:
        return {}
    result = await db.execute(
        select(ParticipationRequest)
        .where(ParticipationRequest.student_id == student_id, ParticipationRequest.event_id.in_(ids))
        .order_by(ParticipationRequest.requested_at.asc())
    )
    by_event: Dict[UUID, ParticipationRequest] = {}
    for request in result.unique().scalars().all():
        current = by_event.get(request.event_id)
        if current is None or current.status not in ACTIVE_STATUSES:
            by_event[request.event_id] = request
    return by_event


def _school_rows(event: Event, names: Dict[UUID, str], filling_threshold: float) -> List[SchoolCapacity]:
    rows = []
    cap = event.max_participants_per_school
    for entry in event.participants:
        enrolled = len(entry.students)
        if cap is None:
            row_status, pct = "available", 0
        else:
            pct = round(enrolled * 100 / cap)
            if enrolled >= cap:
                row_status = "full"
            elif enrolled >= cap * filling_threshold:
                row_status = "near-capacity"
            else:
                row_status = "available"
        rows.append(
            SchoolCapacity(
                school_id=entry.school_id,
                school_name=names.get(entry.school_id),
                enrolled=enrolled,
                max_capacity=cap,
                percentage=pct,
                status=row_status,
            )
        )
    rows.sort(key=lambda r: _SCHOOL_STATUS_ORDER[r.status])
    return rows


def _school_full(event: Event, school_id: UUID) -> bool:
    cap = event.max_participants_per_school
    return cap is not None and len(event.roster_student_ids(school_id)) >= cap


def _global_full(event: Event) -> bool:
    return event.max_participants is not None and event.enrolled_count >= event.max_participants


# ----- Student hub -----

async def available_events(
    db: AsyncSession,
    current_user: CurrentUser,
    now: datetime,
    *,
    search: Optional[str],
    sort: str,
    page: int,
    page_size: int,
    filling_threshold: float,
) -> HubEventPage:
    """Upcoming, grade-eligible APPROVED events with the student's request state."""
    student = await get_student_for_user(db, current_user.id)
    events = await eligibility.list_eligible_events(
        db, student.id, now, upcoming_only=True, search=search, sort=sort
    )
    page_events, info = paginate(events, page, page_size)
    requests = await _requests_by_event(db, student.id, [e.id for e in page_events])

    views = []
    for event in page_events:
        request = requests.get(event.id)
        active = request is not None and request.status in ACTIVE_STATUSES
        enrolled = event.enrolled_count
        can_request = (
            not active
            and not eligibility.request_blockers(event, student, now)
            and not _global_full(event)
            and not _school_full(event, student.school_id)
        )
        views.append(
            HubEvent(
                id=event.id,
                school_id=event.school_id,
                title=event.title,
                description=event.description,
                date=event.date,
                registration_deadline=event.registration_deadline,
                eligible_grades=event.eligible_grades or [],
                max_participants=event.max_participants,
                max_participants_per_school=event.max_participants_per_school,
                user_status=request.status if request else None,
                request_id=request.id if request else None,
                can_request=can_request,
                capacity_info=CapacityInfo(**eligibility.capacity_info(event, enrolled)),
                days_until_deadline=eligibility.days_until_deadline(event, now),
                enrollment_status=eligibility.enrollment_status(event, enrolled, now, filling_threshold),
            )
        )
    return HubEventPage(events=views, pagination=info)


async def my_requests(
    db: AsyncSession,
    current_user: CurrentUser,
    now: datetime,
    *,
    search: Optional[str],
    filling_threshold: float,
) -> MyRequestsResponse:
    student = await get_student_for_user(db, current_user.id)
    stmt = (
        select(ParticipationRequest)
        .join(Event, Event.id == ParticipationRequest.event_id)
        .where(ParticipationRequest.student_id == student.id)
    )
    stmt = eligibility.apply_search(stmt, search).order_by(ParticipationRequest.requested_at.desc())
    requests = (await db.execute(stmt)).unique().scalars().all()

    grouped = MyRequestsResponse(total=len(requests))
    for request in requests:
        event = request.event
        getattr(grouped, request.status).append(
            MyRequestItem(
                id=request.id,
                event_id=event.id,
                event_title=event.title,
                event_date=event.date,
                enrollment_status=eligibility.enrollment_status(event, event.enrolled_count, now, filling_threshold),
                status=request.status,
                requested_at=request.requested_at,
                approved_at=request.approved_at,
                rejected_at=request.rejected_at,
                rejection_reason=request.rejection_reason,
                enrollment_confirmed_at=request.enrollment_confirmed_at,
                withdrawn_at=request.withdrawn_at,
                notes=request.notes,
            )
        )
    return grouped


async def past_events(
    db: AsyncSession,
    current_user: CurrentUser,
    now: datetime,
    *,
    search: Optional[str],
    page: int,
    page_size: int,
) -> PastEventPage:
    """Events already held that the student was seated for."""
    student = await get_student_for_user(db, current_user.id)
    stmt = (
        select(ParticipationRequest)
        .join(Event, Event.id == ParticipationRequest.event_id)
        .where(
            ParticipationRequest.student_id == student.id,
            ParticipationRequest.status.in_(SEATED_STATUSES),
            Event.date < now,
        )
    )
    stmt = eligibility.apply_search(stmt, search).order_by(Event.date.desc())
    requests = (await db.execute(stmt)).unique().scalars().all()

    page_items, info = paginate(requests, page, page_size)
    return PastEventPage(
        events=[
            PastEventItem(
                id=r.id,
                event_id=r.event.id,
                event_title=r.event.title,
                event_description=r.event.description,
                event_date=r.event.date,
                status=r.status,
                enrolled_at=r.enrollment_confirmed_at or r.approved_at,
                participant_count=r.event.enrolled_count,
            )
            for r in page_items
        ],
        pagination=info,
    )


async def eligible_events(
    db: AsyncSession,
    current_user: CurrentUser,
    now: datetime,
    *,
    search: Optional[str],
    sort: str,
    page: int,
    page_size: int,
    filling_threshold: float,
) -> EligibleEventPage:
    """Every grade-eligible APPROVED event, past deadline included, with per-school capacity."""
    student = await get_student_for_user(db, current_user.id)
    events = await eligibility.list_eligible_events(
        db, student.id, now, upcoming_only=False, search=search, sort=sort
    )
    page_events, info = paginate(events, page, page_size)
    requests = await _requests_by_event(db, student.id, [e.id for e in page_events])
    names = await school_names(db, [p.school_id for e in page_events for p in e.participants])

    items = []
    for event in page_events:
        enrolled = event.enrolled_count
        cap = event.max_participants
        pct = capacity.percentage(enrolled, cap)
        if _global_full(event):
            status = "full"
        elif cap is not None and enrolled >= cap * filling_threshold:
            status = "near-capacity"
        else:
            status = "available"

        passed = eligibility.deadline_passed(event, now)
        reason = None
        if eligibility.has_ended(event, now):
            reason = "This event has already taken place"
        elif passed:
            reason = "Registration deadline has passed"
        elif _global_full(event):
            reason = "Event is full globally"
        elif _school_full(event, student.school_id):
            reason = "Your school has reached its participant limit"

        request = requests.get(event.id)
        items.append(
            EligibleEvent(
                id=event.id,
                title=event.title,
                description=event.description,
                date=event.date,
                eligible_grades=event.eligible_grades or [],
                max_participants=cap,
                total_enrolled=enrolled,
                enrollment_percentage=pct,
                enrollment_status=status,
                max_participants_per_school=event.max_participants_per_school,
                school_capacity=_school_rows(event, names, filling_threshold),
                registration_deadline=to_naive_utc(event.registration_deadline),
                deadline_passed=passed,
                ineligibility_reason=reason,
                user_request_status=request.status if request else None,
                user_request_id=request.id if request else None,
            )
        )
    return EligibleEventPage(events=items, pagination=info)


# ----- School admin -----

async def school_event_capacity(
    db: AsyncSession,
    current_user: CurrentUser,
    *,
    filling_threshold: float,
) -> List[EventCapacityRow]:
    """Non-archived global events and the admin's own school events, newest first, with per-school seats."""
    school_id = current_user.school_id
    result = await db.execute(
        select(Event)
        .where(
            or_(Event.school_id.is_(None), Event.school_id == school_id),
            Event.lifecycle_status != LifecycleStatus.ARCHIVED.value,
        )
        .order_by(Event.date.desc())
    )
    events = result.scalars().all()
    names = await school_names(db, [p.school_id for e in events for p in e.participants])

    rows = []
    for event in events:
        own_enrolled = len(event.roster_student_ids(school_id))
        per_school = event.max_participants_per_school
        rows.append(
            EventCapacityRow(
                id=event.id,
                title=event.title,
                description=event.description,
                date=event.date,
                status=event.status,
                eligible_grades=event.eligible_grades or [],
                max_participants=event.max_participants,
                max_participants_per_school=per_school,
                total_enrolled=event.enrolled_count,
                school_capacity=_school_rows(event, names, filling_threshold),
                own_school=OwnSchoolCapacity(
                    enrolled=own_enrolled,
                    pending=await capacity.count_pending(db, event.id, school_id),
                    available=max(per_school - own_enrolled, 0) if per_school is not None else None,
                ),
            )
        )
    return rows
