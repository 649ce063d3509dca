"""
Event administration: create, edit, list, status changes, archive and delete. Roster and
requests are never written here except for the cascade on permanent delete; participation
writes go through the coordinator.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.enums import EventStatus, LifecycleStatus, UserRole
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationFailed
from app.core.models import Event, ParticipationRequest
from app.core.timeutils import to_naive_utc, utcnow

from app.api.v1.participation import audit_service, roster
from app.api.v1.participation.coordinator import load_event
from app.api.v1.participation.eligibility import visible_to_school
from app.api.v1.participation.students import school_names

from .schemas import EventCreate, EventDetailResponse, EventResponse, EventUpdate, RosterEntry, schedule_problem

logger = logging.getLogger(__name__)

ARCHIVED = LifecycleStatus.ARCHIVED.value
# Fields whose change can alter an admission decision
_CAPACITY_FIELDS = ("max_participants", "max_participants_per_school", "eligible_grades", "registration_deadline", "date")


def _initial_status(payload: EventCreate, role: str) -> str:
    if payload.status == EventStatus.DRAFT.value:
        return EventStatus.DRAFT.value
    if role == UserRole.TEACHER.value:
        return EventStatus.PENDING.value
    return EventStatus.APPROVED.value


def can_see(event: Event, current_user: CurrentUser) -> bool:
    if current_user.is_super_admin:
        return True
    if not visible_to_school(event, current_user.school_id):
        return False
    if current_user.role == UserRole.SCHOOL_ADMIN.value:
        return True
    if current_user.role == UserRole.TEACHER.value:
        return event.status == EventStatus.APPROVED.value or event.created_by == current_user.id
    return event.status == EventStatus.APPROVED.value and event.lifecycle_status != ARCHIVED


def ensure_event_owner(event: Event, current_user: CurrentUser) -> None:
    """Super admins manage every event; school admins only events of their own school."""
    if current_user.is_super_admin:
        return
    if current_user.role != UserRole.SCHOOL_ADMIN.value or event.school_id is None or event.school_id != current_user.school_id:
        raise ForbiddenError("Only the owning school's admin or a super admin can manage this event")


async def to_detail(db: AsyncSession, event: Event) -> EventDetailResponse:
    names = await school_names(db, [p.school_id for p in event.participants])
    data = EventResponse.model_validate(event).model_dump()
    return EventDetailResponse(
        **data,
        participants=[
            RosterEntry(
                school_id=p.school_id,
                school_name=names.get(p.school_id),
                enrolled=len(p.students),
                student_ids=[s.student_id for s in p.students],
                joined_at=p.joined_at,
            )
            for p in event.participants
        ],
    )


async def create_event(db: AsyncSession, payload: EventCreate, current_user: CurrentUser) -> Event:
    now = utcnow()
    event = Event(
        school_id=None if current_user.is_super_admin else current_user.school_id,
        title=payload.title.strip(),
        description=payload.description,
        date=payload.date,
        registration_deadline=payload.registration_deadline,
        eligible_grades=payload.eligible_grades,
        max_participants=payload.max_participants,
        max_participants_per_school=payload.max_participants_per_school,
        status=_initial_status(payload, current_user.role),
        created_by=current_user.id,
        created_by_role=current_user.role,
        version=0,
        created_at=now,
        updated_at=now,
    )
    db.add(event)
    await db.flush()
    await audit_service.log_audit(
        db,
        event.school_id,
        "event",
        event.id,
        "event_created",
        to_status=event.status,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        timestamp=now,
    )
    await db.commit()
    logger.info("Event %s created by %s as %s", event.id, current_user.role, event.status)
    return await load_event(db, event.id)


async def list_events(
    db: AsyncSession,
    current_user: CurrentUser,
    *,
    status: Optional[str] = None,
    lifecycle: Optional[str] = None,
) -> List[Event]:
    stmt = select(Event)
    if not current_user.is_super_admin:
        stmt = stmt.where(or_(Event.school_id.is_(None), Event.school_id == current_user.school_id))
        if current_user.role == UserRole.TEACHER.value:
            stmt = stmt.where(or_(Event.status == EventStatus.APPROVED.value, Event.created_by == current_user.id))
        elif current_user.role == UserRole.STUDENT.value:
            stmt = stmt.where(Event.status == EventStatus.APPROVED.value, Event.lifecycle_status != ARCHIVED)
    if status:
        stmt = stmt.where(Event.status == status.upper())
    if lifecycle:
        stmt = stmt.where(Event.lifecycle_status == lifecycle.upper())
    result = await db.execute(stmt.order_by(Event.date.desc()))
    return list(result.scalars().all())


async def get_event(db: AsyncSession, event_id: UUID, current_user: CurrentUser) -> Event:
    event = await load_event(db, event_id)
    if not can_see(event, current_user):
        raise NotFoundError("Event not found")
    return event


def _stored(event: Event, name: str):
    value = getattr(event, name)
    return to_naive_utc(value) if isinstance(value, datetime) else value


async def update_event(db: AsyncSession, event_id: UUID, payload: EventUpdate, current_user: CurrentUser) -> Event:
    """
    Edit event fields. Dates and caps are validated against the merged result. Lowering a
    cap never unseats anybody: the event simply admits no one until occupancy drops below it.
    """
    event = await load_event(db, event_id)
    ensure_event_owner(event, current_user)

    changes = payload.model_dump(exclude_unset=True)
    if "lifecycle_status" in changes:
        changes["lifecycle_status"] = LifecycleStatus(changes["lifecycle_status"]).value
    merged = {
        name: changes[name] if name in changes else _stored(event, name)
        for name in ("date", "registration_deadline", "max_participants", "max_participants_per_school")
    }
    problem = schedule_problem(**merged)
    if problem:
        raise ValidationFailed(problem)

    changed = {name: value for name, value in changes.items() if _stored(event, name) != value}
    if not changed:
        return event

    now = utcnow()
    if any(name in changed for name in _CAPACITY_FIELDS):
        # Admission checks still running against the old values must retry
        await roster.claim_event(db, event)
    previous_lifecycle = event.lifecycle_status
    for name, value in changed.items():
        setattr(event, name, value)
    event.updated_at = now
    await audit_service.log_audit(
        db,
        event.school_id,
        "event",
        event.id,
        "event_updated",
        from_status=previous_lifecycle if "lifecycle_status" in changed else None,
        to_status=event.lifecycle_status if "lifecycle_status" in changed else None,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        details={"fields": sorted(changed)},
        timestamp=now,
    )
    await db.commit()
    logger.info("Event %s updated: %s", event.id, ", ".join(sorted(changed)))
    return await load_event(db, event.id)


async def update_status(
    db: AsyncSession,
    event_id: UUID,
    new_status: str,
    current_user: CurrentUser,
    remarks: Optional[str] = None,
) -> Event:
    event = await load_event(db, event_id)
    ensure_event_owner(event, current_user)
    old_status = event.status
    if old_status == new_status:
        return event

    now = utcnow()
    event.status = new_status
    event.updated_at = now
    await audit_service.log_audit(
        db,
        event.school_id,
        "event",
        event.id,
        "event_status_changed",
        from_status=old_status,
        to_status=new_status,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        remarks=remarks,
        timestamp=now,
    )
    await db.commit()
    logger.info("Event %s status %s -> %s", event.id, old_status, new_status)
    return await load_event(db, event.id)


async def archive_event(db: AsyncSession, event_id: UUID, current_user: CurrentUser) -> Event:
    """Soft delete: the event leaves student views, its roster and requests stay untouched."""
    event = await load_event(db, event_id)
    ensure_event_owner(event, current_user)
    previous = event.lifecycle_status
    if previous == ARCHIVED:
        return event

    now = utcnow()
    event.lifecycle_status = ARCHIVED
    event.updated_at = now
    await audit_service.log_audit(
        db,
        event.school_id,
        "event",
        event.id,
        "event_archived",
        from_status=previous,
        to_status=ARCHIVED,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        timestamp=now,
    )
    await db.commit()
    logger.info("Event %s archived", event.id)
    return await load_event(db, event.id)


async def delete_event(db: AsyncSession, event_id: UUID, current_user: CurrentUser) -> int:
    """Delete an event with its roster and every participation request. Returns the number of requests removed."""
    event = await load_event(db, event_id)
    ensure_event_owner(event, current_user)

    result = await db.execute(
        delete(ParticipationRequest)
        .where(ParticipationRequest.event_id == event.id)
        .execution_options(synchronize_session=False)
    )
    deleted_requests = result.rowcount or 0
    await audit_service.log_audit(
        db,
        event.school_id,
        "event",
        event.id,
        "event_deleted",
        from_status=event.status,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        details={"title": event.title, "deleted_requests": deleted_requests},
    )
    await db.delete(event)
    await db.commit()
    logger.info("Event %s deleted with %d participation requests", event_id, deleted_requests)
    return deleted_requests
