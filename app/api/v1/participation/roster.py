"""
Roster writes. Only the coordinator calls into this module, and always together
with a ledger transition inside the same transaction.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.exceptions import CapacityConflictError
from app.core.models import Event, EventParticipant, EventParticipantStudent
from app.core.timeutils import utcnow

logger = logging.getLogger(__name__)


async def claim_event(db: AsyncSession, event: Event) -> None:
    """
    Bump the event version if nobody else did since it was loaded.
    Raises CapacityConflictError when another writer got there first.
    """
    seen = event.version
    result = await db.execute(
        update(Event)
        .where(Event.id == event.id, Event.version == seen)
        .values(version=Event.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Event %s changed concurrently (version %s)", event.id, seen)
        raise CapacityConflictError("The event roster changed concurrently, please retry")
    set_committed_value(event, "version", seen + 1)


def find_entry(event: Event, student_id: UUID) -> Optional[EventParticipant]:
    for entry in event.participants:
        if any(s.student_id == student_id for s in entry.students):
            return entry
    return None


def add_student(event: Event, school_id: UUID, student_id: UUID) -> bool:
    """Seat a student under their school's entry. False if already seated anywhere."""
    if find_entry(event, student_id) is not None:
        return False
    now = utcnow()
    entry = event.participant_for(school_id)
    if entry is None:
        entry = EventParticipant(school_id=school_id, joined_at=now)
        event.participants.append(entry)
    entry.students.append(
        EventParticipantStudent(event_id=event.id, student_id=student_id, added_at=now)
    )
    logger.info("Roster of event %s: seated student %s (school %s)", event.id, student_id, school_id)
    return True


def remove_student(event: Event, student_id: UUID) -> bool:
    """Unseat a student; drops the school entry once it has no students left."""
    entry = find_entry(event, student_id)
    if entry is None:
        return False
    for seat in list(entry.students):
        if seat.student_id == student_id:
            entry.students.remove(seat)
    if not entry.students:
        event.participants.remove(entry)
    logger.info("Roster of event %s: removed student %s", event.id, student_id)
    return True
