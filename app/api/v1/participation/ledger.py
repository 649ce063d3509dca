"""
Request ledger: storage and lifecycle of participation requests.

Transition table (None = request does not exist yet):

    None     -> PENDING (student request) | APPROVED (admin manual add)
    PENDING  -> APPROVED | REJECTED | WITHDRAWN
    APPROVED -> ENROLLED | WITHDRAWN
    ENROLLED -> WITHDRAWN

REJECTED and WITHDRAWN are terminal and do not block a new request for the pair.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.enums import ACTIVE_STATUSES, ParticipationStatus
from app.core.exceptions import CapacityConflictError, DuplicateRequestError, InvalidTransitionError
from app.core.models import ParticipationRequest
from app.core.timeutils import utcnow

from . import audit_service

logger = logging.getLogger(__name__)

PENDING = ParticipationStatus.PENDING.value
APPROVED = ParticipationStatus.APPROVED.value
REJECTED = ParticipationStatus.REJECTED.value
ENROLLED = ParticipationStatus.ENROLLED.value
WITHDRAWN = ParticipationStatus.WITHDRAWN.value

ALLOWED_TRANSITIONS: Dict[Optional[str], FrozenSet[str]] = {
    None: frozenset({PENDING, APPROVED}),
    PENDING: frozenset({APPROVED, REJECTED, WITHDRAWN}),
    APPROVED: frozenset({ENROLLED, WITHDRAWN}),
    ENROLLED: frozenset({WITHDRAWN}),
    REJECTED: frozenset(),
    WITHDRAWN: frozenset(),
}

_ACTIONS = {
    PENDING: "participation_requested",
    APPROVED: "participation_approved",
    REJECTED: "participation_rejected",
    ENROLLED: "participation_enrolled",
    WITHDRAWN: "participation_withdrawn",
}


def is_allowed(from_status: Optional[str], to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def ledger_order(stmt):
    """Insertion order; used wherever processing order must be reproducible."""
    return stmt.order_by(ParticipationRequest.requested_at.asc(), ParticipationRequest.created_at.asc())


# ----- Reads -----

async def get_request(db: AsyncSession, request_id: UUID, *, refresh: bool = False) -> Optional[ParticipationRequest]:
    stmt = select(ParticipationRequest).where(ParticipationRequest.id == request_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    return (await db.execute(stmt)).unique().scalar_one_or_none()


async def find_active_by_pair(db: AsyncSession, student_id: UUID, event_id: UUID) -> Optional[ParticipationRequest]:
    result = await db.execute(
        select(ParticipationRequest)
        .where(
            ParticipationRequest.student_id == student_id,
            ParticipationRequest.event_id == event_id,
            ParticipationRequest.status.in_(ACTIVE_STATUSES),
        )
        .execution_options(populate_existing=True)
    )
    return result.unique().scalars().first()


async def find_latest_by_pair(db: AsyncSession, student_id: UUID, event_id: UUID) -> Optional[ParticipationRequest]:
    """Active request if any, else the most recent terminal one."""
    active = await find_active_by_pair(db, student_id, event_id)
    if active:
        return active
    result = await db.execute(
        select(ParticipationRequest)
        .where(
            ParticipationRequest.student_id == student_id,
            ParticipationRequest.event_id == event_id,
        )
        .order_by(ParticipationRequest.requested_at.desc(), ParticipationRequest.created_at.desc())
        .limit(1)
    )
    return result.unique().scalars().first()


async def find_by_event(
    db: AsyncSession,
    event_id: UUID,
    status: Optional[Iterable[str]] = None,
    *,
    school_id: Optional[UUID] = None,
) -> List[ParticipationRequest]:
    """Requests of an event in ledger insertion order, optionally filtered by status/school."""
    stmt = select(ParticipationRequest).where(ParticipationRequest.event_id == event_id)
    if status is not None:
        statuses = [status] if isinstance(status, str) else list(status)
        stmt = stmt.where(ParticipationRequest.status.in_(statuses))
    if school_id is not None:
        stmt = stmt.where(ParticipationRequest.school_id == school_id)
    result = await db.execute(ledger_order(stmt))
    return list(result.unique().scalars().all())


async def count_approved(
    db: AsyncSession,
    event_id: UUID,
    school_id: Optional[UUID] = None,
    exclude_id: Optional[UUID] = None,
) -> int:
    """Requests still awaiting enrollment (APPROVED, not ENROLLED). Reporting only; capacity uses occupancy."""
    stmt = select(func.count(ParticipationRequest.id)).where(
        ParticipationRequest.event_id == event_id,
        ParticipationRequest.status == APPROVED,
    )
    if school_id is not None:
        stmt = stmt.where(ParticipationRequest.school_id == school_id)
    if exclude_id is not None:
        stmt = stmt.where(ParticipationRequest.id != exclude_id)
    return int((await db.execute(stmt)).scalar() or 0)


# ----- Writes (caller commits) -----

def _stamp(
    request: ParticipationRequest,
    to_status: str,
    now: datetime,
    performed_by: Optional[UUID],
    reason: Optional[str],
) -> None:
    if to_status == APPROVED:
        request.approved_at = now
        request.approved_by = performed_by
        request.rejected_at = None
        request.rejection_reason = None
        request.student_notified_at = now
    elif to_status == REJECTED:
        request.rejected_at = now
        request.approved_by = performed_by
        request.rejection_reason = reason or "Rejected by admin"
        request.student_notified_at = now
    elif to_status == ENROLLED:
        request.enrollment_confirmed_at = now
        request.student_notified_at = now
    elif to_status == WITHDRAWN:
        request.withdrawn_at = now
        request.student_notified_at = now
    request.status = to_status


async def create(
    db: AsyncSession,
    *,
    student_id: UUID,
    event_id: UUID,
    school_id: UUID,
    status: str = PENDING,
    performed_by: Optional[UUID] = None,
    performed_by_role: Optional[str] = None,
    force_enrolled: bool = False,
    validation_errors: Optional[List[str]] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ParticipationRequest:
    """Open a new request. DuplicateRequestError when the pair already has an active one."""
    if not is_allowed(None, status):
        raise InvalidTransitionError("NONE", status)
    existing = await find_active_by_pair(db, student_id, event_id)
    if existing:
        raise DuplicateRequestError(f"You already have a {existing.status} request for this event")

    now = now or utcnow()
    request = ParticipationRequest(
        student_id=student_id,
        event_id=event_id,
        school_id=school_id,
        status=PENDING,
        requested_at=now,
        created_at=now,
        updated_at=now,
        force_enrolled=force_enrolled,
        validation_errors=list(validation_errors or []),
        notes=notes,
    )
    if status != PENDING:
        _stamp(request, status, now, performed_by, None)
    db.add(request)
    try:
        await db.flush()
    except IntegrityError:
        # Lost the race against a concurrent request for the same pair
        await db.rollback()
        raise DuplicateRequestError("An active request for this event already exists")

    await audit_service.log_audit(
        db,
        school_id,
        "participation_request",
        request.id,
        _ACTIONS[status],
        to_status=status,
        performed_by=performed_by,
        performed_by_role=performed_by_role,
        details={"force_enrolled": True, "validation_errors": request.validation_errors} if force_enrolled else None,
        timestamp=now,
    )
    logger.info("Participation request %s created for event %s as %s", request.id, event_id, status)
    return request


async def transition(
    db: AsyncSession,
    request: ParticipationRequest,
    new_status: str,
    *,
    performed_by: Optional[UUID] = None,
    performed_by_role: Optional[str] = None,
    reason: Optional[str] = None,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Apply one edge of the transition table and log it. Returns the previous status.

    The status is swapped with a conditional UPDATE keyed on the status read earlier;
    CapacityConflictError when another transaction moved the request in between.
    """
    from_status = request.status
    if not is_allowed(from_status, new_status):
        raise InvalidTransitionError(from_status, new_status)

    now = now or utcnow()
    result = await db.execute(
        update(ParticipationRequest)
        .where(ParticipationRequest.id == request.id, ParticipationRequest.status == from_status)
        .values(status=new_status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Participation request %s left %s concurrently", request.id, from_status)
        raise CapacityConflictError("The participation request changed concurrently, please retry")
    set_committed_value(request, "status", new_status)
    set_committed_value(request, "updated_at", now)
    _stamp(request, new_status, now, performed_by, reason)
    await audit_service.log_audit(
        db,
        request.school_id,
        "participation_request",
        request.id,
        _ACTIONS[new_status],
        from_status=from_status,
        to_status=new_status,
        performed_by=performed_by,
        performed_by_role=performed_by_role,
        remarks=reason,
        details=details,
        timestamp=now,
    )
    logger.info("Participation request %s: %s -> %s", request.id, from_status, new_status)
    return from_status
