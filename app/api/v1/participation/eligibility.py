"""
Which events a student may see and request. Pure checks take `now` explicitly; nothing
here writes to the database.
"""

import math
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import EnrollmentStatus, EventStatus, LifecycleStatus
from app.core.exceptions import NotFoundError, ValidationFailed
from app.core.models import Event, Student
from app.core.timeutils import to_naive_utc

SORT_COLUMNS = {
    "date": Event.date.asc(),
    "title": Event.title.asc(),
    "created_at": Event.created_at.desc(),
}


def grade_is_eligible(event: Event, grade: Optional[str]) -> bool:
    grades = event.eligible_grades or []
    if not grades:
        return True
    return grade is not None and grade in grades


def has_ended(event: Event, now: datetime) -> bool:
    return to_naive_utc(event.date) < now


def deadline_passed(event: Event, now: datetime) -> bool:
    deadline = to_naive_utc(event.registration_deadline)
    return deadline is not None and deadline < now


def days_until_deadline(event: Event, now: datetime) -> Optional[int]:
    deadline = to_naive_utc(event.registration_deadline)
    if deadline is None:
        return None
    return math.ceil((deadline - now).total_seconds() / 86400)


def enrollment_status(event: Event, enrolled: int, now: datetime, filling_threshold: float) -> str:
    """ENDED, CLOSED, FULL, FILLING or OPEN, first match wins."""
    if has_ended(event, now):
        return EnrollmentStatus.ENDED.value
    if deadline_passed(event, now):
        return EnrollmentStatus.CLOSED.value
    cap = event.max_participants
    if cap is not None and enrolled >= cap:
        return EnrollmentStatus.FULL.value
    if cap is not None and enrolled > cap * filling_threshold:
        return EnrollmentStatus.FILLING.value
    return EnrollmentStatus.OPEN.value


def capacity_info(event: Event, enrolled: int) -> dict:
    total = event.max_participants
    if total is None:
        return {"unlimited": True, "total": None, "filled": enrolled, "available": None, "percentage": 0}
    return {
        "unlimited": False,
        "total": total,
        "filled": enrolled,
        "available": max(0, total - enrolled),
        "percentage": round(enrolled * 100 / total) if total else 0,
    }


def grade_reason(event: Event, grade: str) -> str:
    return (
        f'Student grade "{grade}" is not eligible for this event. '
        f"Eligible grades: {', '.join(event.eligible_grades or [])}"
    )


def request_blockers(event: Event, student: Student, now: datetime) -> List[str]:
    """Reasons a student cannot request (or be added to) this event; empty when eligible."""
    reasons = []
    if has_ended(event, now):
        reasons.append("This event has already taken place")
    elif deadline_passed(event, now):
        deadline = to_naive_utc(event.registration_deadline)
        reasons.append(f"Registration deadline has passed ({deadline.strftime('%Y-%m-%d')})")
    if event.eligible_grades:
        if not student.grade:
            reasons.append("Student grade not configured")
        elif not grade_is_eligible(event, student.grade):
            reasons.append(grade_reason(event, student.grade))
    return reasons


def visible_to_school(event: Event, school_id: Optional[UUID]) -> bool:
    return event.school_id is None or event.school_id == school_id


def apply_search(stmt, search: Optional[str]):
    term = (search or "").strip()
    if not term:
        return stmt
    pattern = f"%{term}%"
    return stmt.where(or_(Event.title.ilike(pattern), Event.description.ilike(pattern)))


async def list_eligible_events(
    db: AsyncSession,
    student_id: UUID,
    now: datetime,
    *,
    upcoming_only: bool = True,
    search: Optional[str] = None,
    sort: str = "date",
) -> List[Event]:
    """
    Non-archived APPROVED events visible to the student's school whose grade list admits the student.
    NotFoundError when the student does not exist, ValidationFailed when their grade is unset.
    """
    student = await db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student profile not found")
    if not student.grade:
        raise ValidationFailed("Student grade not configured")

    stmt = select(Event).where(
        Event.status == EventStatus.APPROVED.value,
        Event.lifecycle_status != LifecycleStatus.ARCHIVED.value,
        or_(Event.school_id.is_(None), Event.school_id == student.school_id),
    )
    if upcoming_only:
        stmt = stmt.where(Event.date > now)
    stmt = apply_search(stmt, search).order_by(SORT_COLUMNS.get(sort, SORT_COLUMNS["date"]), Event.id)

    events = (await db.execute(stmt)).scalars().all()
    # JSON list membership is dialect specific; filter grades here
    return [e for e in events if grade_is_eligible(e, student.grade)]
