"""
Capacity evaluation for events: global cap (max_participants) and per-school cap
(max_participants_per_school). NULL caps are unlimited.

Occupancy is the set of distinct students holding a seat: on the roster, or with an
APPROVED/ENROLLED request. The request under evaluation is excluded so it never counts
against itself.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Set
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import SEATED_STATUSES, ParticipationStatus
from app.core.models import Event, ParticipationRequest


@dataclass
class AdmissionCheck:
    admissible: bool
    reasons: List[str] = field(default_factory=list)
    global_count: int = 0
    school_count: int = 0


def global_capacity_reason(cap: int) -> str:
    return f"Event capacity full: this event has reached the maximum participant limit ({cap})"


def school_capacity_reason(cap: int) -> str:
    return f"School capacity full: this school has reached the maximum participant limit ({cap}) for this event"


async def occupied_student_ids(
    db: AsyncSession,
    event: Event,
    school_id: Optional[UUID] = None,
    exclude_request_id: Optional[UUID] = None,
) -> Set[UUID]:
    """Distinct seated students of the event (optionally one school's)."""
    stmt = select(ParticipationRequest.id, ParticipationRequest.student_id).where(
        ParticipationRequest.event_id == event.id,
        ParticipationRequest.status.in_(SEATED_STATUSES),
    )
    if school_id is not None:
        stmt = stmt.where(ParticipationRequest.school_id == school_id)
    rows = (await db.execute(stmt)).all()

    excluded_student = None
    occupied: Set[UUID] = set()
    for request_id, student_id in rows:
        if exclude_request_id is not None and request_id == exclude_request_id:
            excluded_student = student_id
            continue
        occupied.add(student_id)
    occupied.update(event.roster_student_ids(school_id))

    if exclude_request_id is not None and excluded_student is None:
        excluded_student = (
            await db.execute(
                select(ParticipationRequest.student_id).where(ParticipationRequest.id == exclude_request_id)
            )
        ).scalar_one_or_none()
    if excluded_student is not None:
        occupied.discard(excluded_student)
    return occupied


def evaluate(event: Event, global_count: int, school_count: int) -> AdmissionCheck:
    """Pure cap comparison given current occupancy."""
    reasons = []
    if event.max_participants is not None and global_count >= event.max_participants:
        reasons.append(global_capacity_reason(event.max_participants))
    if event.max_participants_per_school is not None and school_count >= event.max_participants_per_school:
        reasons.append(school_capacity_reason(event.max_participants_per_school))
    return AdmissionCheck(
        admissible=not reasons,
        reasons=reasons,
        global_count=global_count,
        school_count=school_count,
    )


async def check_admission(
    db: AsyncSession,
    event: Event,
    school_id: UUID,
    exclude_request_id: Optional[UUID] = None,
) -> AdmissionCheck:
    """Would one more student of `school_id` fit? Reports every failed cap."""
    global_seated = await occupied_student_ids(db, event, exclude_request_id=exclude_request_id)
    school_seated = await occupied_student_ids(db, event, school_id, exclude_request_id=exclude_request_id)
    return evaluate(event, len(global_seated), len(school_seated))


async def count_pending(db: AsyncSession, event_id: UUID, school_id: Optional[UUID] = None) -> int:
    stmt = select(func.count(ParticipationRequest.id)).where(
        ParticipationRequest.event_id == event_id,
        ParticipationRequest.status == ParticipationStatus.PENDING.value,
    )
    if school_id is not None:
        stmt = stmt.where(ParticipationRequest.school_id == school_id)
    return int((await db.execute(stmt)).scalar() or 0)


def percentage(filled: int, total: Optional[int]) -> int:
    if not total:
        return 0
    return min(100, round(filled * 100 / total))


async def capacity_summary(db: AsyncSession, event: Event, school_id: Optional[UUID] = None) -> dict:
    """Totals for admin review screens: cap, seated, pending, free slots, fill percentage."""
    total = event.max_participants if school_id is None else event.max_participants_per_school
    filled = len(await occupied_student_ids(db, event, school_id))
    return {
        "total": total,
        "filled": filled,
        "pending": await count_pending(db, event.id, school_id),
        "available": max(total - filled, 0) if total is not None else None,
        "percentage": percentage(filled, total),
    }
