"""
Enrollment coordinator: every participation write goes through here.

Each unit of work loads the event fresh, checks capacity, applies one ledger transition,
patches the roster and bumps the event version in a single transaction. A lost version
race rolls the transaction back and the whole unit is retried from a fresh read.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import SEATED_STATUSES, BatchAction, EventStatus, LifecycleStatus, ParticipationStatus
from app.core.exceptions import (
    CapacityConflictError,
    DuplicateRequestError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ServiceError,
    ValidationFailed,
)
from app.core.models import Event, ParticipationRequest, Student
from app.core.timeutils import utcnow

from . import audit_service, capacity, eligibility, ledger, roster
from .students import get_student, get_student_for_user

logger = logging.getLogger(__name__)

PENDING = ParticipationStatus.PENDING.value
APPROVED = ParticipationStatus.APPROVED.value
REJECTED = ParticipationStatus.REJECTED.value
ENROLLED = ParticipationStatus.ENROLLED.value
WITHDRAWN = ParticipationStatus.WITHDRAWN.value


# ----- Plumbing -----

async def load_event(db: AsyncSession, event_id: UUID) -> Event:
    """Event with its roster, re-read from the database even if already in the session."""
    result = await db.execute(
        select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if not event:
        raise NotFoundError("Event not found")
    return event


def ensure_event_access(event: Event, current_user: CurrentUser) -> None:
    """Admins act on global events and on their own school's events."""
    if current_user.is_super_admin:
        return
    if not eligibility.visible_to_school(event, current_user.school_id):
        raise ForbiddenError("You are not allowed to manage this event")


async def _guarded(
    db: AsyncSession,
    unit: Callable[..., Awaitable[Any]],
    *args: Any,
    retries: Optional[int] = None,
    **kwargs: Any,
) -> Any:
    """Run `unit` and commit. Retries on CapacityConflictError; rolls back on any failure."""
    retries = settings.capacity_conflict_retries if retries is None else retries
    attempt = 0
    while True:
        try:
            result = await unit(db, *args, **kwargs)
            await db.commit()
            return result
        except CapacityConflictError:
            await db.rollback()
            if attempt >= retries:
                logger.warning("Giving up on %s after %d conflicting attempts", unit.__name__, attempt + 1)
                raise
            attempt += 1
            logger.warning("Retrying %s after a concurrent roster change (attempt %d)", unit.__name__, attempt)
        except Exception:
            await db.rollback()
            raise


async def _seat(db: AsyncSession, event: Event, request: ParticipationRequest) -> None:
    await roster.claim_event(db, event)
    roster.add_student(event, request.school_id, request.student_id)


async def _unseat(db: AsyncSession, event: Event, student_id: UUID) -> None:
    if roster.find_entry(event, student_id) is None:
        return
    await roster.claim_event(db, event)
    roster.remove_student(event, student_id)


# ----- Student-initiated -----

async def _request_unit(db: AsyncSession, event_id: UUID, current_user: CurrentUser, now: datetime) -> ParticipationRequest:
    student = await get_student_for_user(db, current_user.id)
    event = await load_event(db, event_id)
    if event.status != EventStatus.APPROVED.value or event.lifecycle_status == LifecycleStatus.ARCHIVED.value:
        raise ValidationFailed("Event is not open for participation")
    if not eligibility.visible_to_school(event, student.school_id):
        raise ForbiddenError("This event is not open to your school")

    blockers = eligibility.request_blockers(event, student, now)
    if blockers:
        raise ValidationFailed("; ".join(blockers))

    existing = await ledger.find_active_by_pair(db, student.id, event.id)
    if existing:
        raise DuplicateRequestError(f"You already have a {existing.status} request for this event")

    check = await capacity.check_admission(db, event, student.school_id)
    if not check.admissible:
        raise ValidationFailed("; ".join(check.reasons))

    return await ledger.create(
        db,
        student_id=student.id,
        event_id=event.id,
        school_id=student.school_id,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        now=now,
    )


async def request_participation(
    db: AsyncSession,
    event_id: UUID,
    current_user: CurrentUser,
    now: Optional[datetime] = None,
) -> ParticipationRequest:
    """Student asks to join an event: PENDING request after eligibility and capacity checks."""
    return await _guarded(db, _request_unit, event_id, current_user, now or utcnow())


async def _withdraw_unit(
    db: AsyncSession,
    event_id: UUID,
    current_user: CurrentUser,
    pending_only: bool,
    now: datetime,
) -> ParticipationRequest:
    student = await get_student_for_user(db, current_user.id)
    event = await load_event(db, event_id)
    request = await ledger.find_active_by_pair(db, student.id, event.id)
    if pending_only and (request is None or request.status != PENDING):
        raise NotFoundError("No pending request found to withdraw")
    if request is None:
        raise NotFoundError("No active request found for this event")

    await ledger.transition(
        db,
        request,
        WITHDRAWN,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        reason="Withdrawn by student",
        now=now,
    )
    await _unseat(db, event, student.id)
    return request


async def withdraw(
    db: AsyncSession,
    event_id: UUID,
    current_user: CurrentUser,
    *,
    pending_only: bool = False,
    now: Optional[datetime] = None,
) -> ParticipationRequest:
    """Student withdraws their active request (only a PENDING one when pending_only); frees the seat."""
    return await _guarded(db, _withdraw_unit, event_id, current_user, pending_only, now or utcnow())


# ----- Admin decisions -----

async def _decide_unit(
    db: AsyncSession,
    event_id: UUID,
    request_id: UUID,
    action: str,
    current_user: CurrentUser,
    rejection_reason: Optional[str],
    now: datetime,
) -> str:
    event = await load_event(db, event_id)
    request = await ledger.get_request(db, request_id, refresh=True)
    if not request or request.event_id != event.id:
        raise NotFoundError("Request not found")
    if not current_user.can_access_school(request.school_id):
        raise ForbiddenError("Request belongs to another school")

    if action == BatchAction.REJECT.value:
        if request.status == REJECTED:
            return "rejected"
        await ledger.transition(
            db,
            request,
            REJECTED,
            performed_by=current_user.id,
            performed_by_role=current_user.role,
            reason=rejection_reason,
            now=now,
        )
        return "rejected"

    if request.status in SEATED_STATUSES:
        return "approved"
    if request.status != PENDING:
        raise InvalidTransitionError(request.status, APPROVED)
    check = await capacity.check_admission(db, event, request.school_id, exclude_request_id=request.id)
    if not check.admissible:
        raise ValidationFailed("; ".join(check.reasons))

    await _seat(db, event, request)
    await ledger.transition(
        db,
        request,
        APPROVED,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        now=now,
    )
    return "approved"


async def decide_requests(
    db: AsyncSession,
    event_id: UUID,
    request_ids: List[UUID],
    action: str,
    current_user: CurrentUser,
    *,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, list]:
    """
    Batch approve or reject. Items are processed one transaction each, in ledger
    insertion order; a failing item lands in `failed` and never stops the batch.
    """
    now = now or utcnow()
    event = await load_event(db, event_id)
    ensure_event_access(event, current_user)
    # Rollbacks expire loaded instances; keep plain ids only
    event_id = event.id

    wanted = list(dict.fromkeys(request_ids))
    wanted_set = set(wanted)
    ordered = [r.id for r in await ledger.find_by_event(db, event_id) if r.id in wanted_set]
    ordered_set = set(ordered)
    results: Dict[str, list] = {"approved": [], "rejected": [], "failed": []}
    for missing in [rid for rid in wanted if rid not in ordered_set]:
        results["failed"].append({"request_id": missing, "reason": "Request not found"})

    for request_id in ordered:
        try:
            outcome = await _guarded(
                db, _decide_unit, event_id, request_id, action, current_user, rejection_reason, now
            )
        except ServiceError as e:
            logger.info("Request %s not %sd: %s", request_id, action, e.message)
            results["failed"].append({"request_id": request_id, "reason": e.message})
            continue
        except SQLAlchemyError:
            logger.exception("Database error while deciding request %s", request_id)
            results["failed"].append({"request_id": request_id, "reason": "Internal error"})
            continue
        results[outcome].append(request_id)
    return results


async def bulk_reject(
    db: AsyncSession,
    event_id: UUID,
    current_user: CurrentUser,
    *,
    reason: str,
    request_ids: Optional[List[UUID]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, list]:
    """Reject many requests with one shared reason; without ids, every PENDING request in scope."""
    if request_ids is None:
        scope = None if current_user.is_super_admin else current_user.school_id
        pending = await ledger.find_by_event(db, event_id, PENDING, school_id=scope)
        request_ids = [r.id for r in pending]
    return await decide_requests(
        db,
        event_id,
        request_ids,
        BatchAction.REJECT.value,
        current_user,
        rejection_reason=reason,
        now=now,
    )


async def _manual_add_unit(
    db: AsyncSession,
    event_id: UUID,
    student_id: UUID,
    current_user: CurrentUser,
    force: bool,
    notes: Optional[str],
    now: datetime,
) -> ParticipationRequest:
    event = await load_event(db, event_id)
    if event.status == EventStatus.REJECTED.value:
        raise ValidationFailed("Cannot add students to a rejected event")
    if event.lifecycle_status == LifecycleStatus.ARCHIVED.value:
        raise ValidationFailed("Cannot add students to an archived event")
    student: Optional[Student] = await get_student(db, student_id)
    if not student:
        raise NotFoundError("Student not found")
    if not current_user.can_access_school(student.school_id):
        raise ForbiddenError("Student belongs to another school")
    if not eligibility.visible_to_school(event, student.school_id):
        raise ForbiddenError("This event is not open to the student's school")

    existing = await ledger.find_active_by_pair(db, student.id, event.id)
    if existing:
        raise DuplicateRequestError(f"Already has {existing.status.lower()} request")

    reasons = eligibility.request_blockers(event, student, now)
    check = await capacity.check_admission(db, event, student.school_id)
    reasons.extend(check.reasons)
    if reasons and not force:
        raise ValidationFailed("; ".join(reasons))
    if reasons:
        logger.warning("Force-adding student %s to event %s despite: %s", student.id, event.id, reasons)

    request = await ledger.create(
        db,
        student_id=student.id,
        event_id=event.id,
        school_id=student.school_id,
        status=APPROVED,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        force_enrolled=bool(reasons),
        validation_errors=reasons,
        notes=notes,
        now=now,
    )
    await _seat(db, event, request)
    return request


async def add_students_manually(
    db: AsyncSession,
    event_id: UUID,
    student_ids: List[UUID],
    current_user: CurrentUser,
    *,
    force: bool = False,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, list]:
    """Admin adds students directly as APPROVED. `force` accepts capacity/eligibility failures."""
    now = now or utcnow()
    event = await load_event(db, event_id)
    ensure_event_access(event, current_user)
    event_id = event.id

    results: Dict[str, list] = {"added": [], "failed": []}
    for student_id in dict.fromkeys(student_ids):
        try:
            request = await _guarded(
                db, _manual_add_unit, event_id, student_id, current_user, force, notes, now
            )
        except ServiceError as e:
            results["failed"].append({"student_id": student_id, "reason": e.message})
            continue
        results["added"].append(
            {
                "student_id": student_id,
                "request_id": request.id,
                "force_enrolled": request.force_enrolled,
                "validation_errors": list(request.validation_errors or []),
            }
        )
    return results


async def _enroll_unit(db: AsyncSession, request_id: UUID, current_user: CurrentUser, now: datetime) -> ParticipationRequest:
    request = await ledger.get_request(db, request_id, refresh=True)
    if not request:
        raise NotFoundError("Participation request not found")
    if not current_user.can_access_school(request.school_id):
        raise ForbiddenError("Request belongs to another school")
    if request.status != APPROVED:
        raise ValidationFailed(f"Cannot enroll a {request.status} request. Request must be APPROVED first.")

    event = await load_event(db, request.event_id)
    check = await capacity.check_admission(db, event, request.school_id, exclude_request_id=request.id)
    if not check.admissible and not request.force_enrolled:
        raise ValidationFailed("Cannot enroll: " + " | ".join(check.reasons))

    await roster.claim_event(db, event)
    roster.add_student(event, request.school_id, request.student_id)
    await ledger.transition(
        db,
        request,
        ENROLLED,
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        details={"override": True, "reasons": check.reasons} if not check.admissible else None,
        now=now,
    )
    return request


async def enroll_request(
    db: AsyncSession,
    request_id: UUID,
    current_user: CurrentUser,
    now: Optional[datetime] = None,
) -> ParticipationRequest:
    """Final confirmation APPROVED -> ENROLLED; capacity is checked once more unless force-enrolled."""
    return await _guarded(db, _enroll_unit, request_id, current_user, now or utcnow())


async def _remove_unit(
    db: AsyncSession,
    event_id: UUID,
    student_id: UUID,
    current_user: CurrentUser,
    reason: Optional[str],
    now: datetime,
) -> Optional[ParticipationRequest]:
    event = await load_event(db, event_id)
    student = await get_student(db, student_id)
    if not student:
        raise NotFoundError("Student not found")
    if not current_user.can_access_school(student.school_id):
        raise ForbiddenError("Student belongs to another school")

    request = await ledger.find_active_by_pair(db, student.id, event.id)
    on_roster = roster.find_entry(event, student.id) is not None
    if request is None and not on_roster:
        raise NotFoundError("Student is not participating in this event")

    if request is not None:
        await ledger.transition(
            db,
            request,
            WITHDRAWN,
            performed_by=current_user.id,
            performed_by_role=current_user.role,
            reason=reason or "Removed by admin",
            now=now,
        )
    await _unseat(db, event, student.id)
    return request


async def remove_student(
    db: AsyncSession,
    event_id: UUID,
    student_id: UUID,
    current_user: CurrentUser,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[ParticipationRequest]:
    """Admin removal from any active state; the request becomes WITHDRAWN and the seat is freed."""
    event = await load_event(db, event_id)
    ensure_event_access(event, current_user)
    return await _guarded(db, _remove_unit, event.id, student_id, current_user, reason, now or utcnow())


async def _reconcile_unit(db: AsyncSession, event_id: UUID, current_user: CurrentUser, now: datetime) -> Dict[str, list]:
    event = await load_event(db, event_id)
    seated = {
        r.student_id: r
        for r in await ledger.find_by_event(db, event.id, SEATED_STATUSES)
    }
    on_roster = set(event.roster_student_ids())
    to_add = [sid for sid in seated if sid not in on_roster]
    to_remove = [sid for sid in on_roster if sid not in seated]
    if not to_add and not to_remove:
        return {"added": [], "removed": []}

    await roster.claim_event(db, event)
    # Seat before unseating; an emptied school entry must not be recreated in one flush
    for student_id in to_add:
        roster.add_student(event, seated[student_id].school_id, student_id)
    for student_id in to_remove:
        roster.remove_student(event, student_id)

    await audit_service.log_audit(
        db,
        event.school_id,
        "event",
        event.id,
        "roster_reconciled",
        performed_by=current_user.id,
        performed_by_role=current_user.role,
        details={"added": [str(s) for s in to_add], "removed": [str(s) for s in to_remove]},
        timestamp=now,
    )
    logger.info("Reconciled roster of event %s: +%d -%d", event.id, len(to_add), len(to_remove))
    return {"added": to_add, "removed": to_remove}


async def reconcile_roster(
    db: AsyncSession,
    event_id: UUID,
    current_user: CurrentUser,
    now: Optional[datetime] = None,
) -> Dict[str, list]:
    """Rebuild the roster from APPROVED/ENROLLED ledger entries. Returns the student ids added and removed."""
    event = await load_event(db, event_id)
    ensure_event_access(event, current_user)
    return await _guarded(db, _reconcile_unit, event.id, current_user, now or utcnow())
