"""Capacity evaluation and roster maintenance."""

import pytest
from sqlalchemy import update

from app.api.v1.participation import capacity, ledger, roster
from app.api.v1.participation.coordinator import load_event
from app.core.exceptions import CapacityConflictError
from app.core.models import Event


def test_evaluate_reports_each_full_cap() -> None:
    event = Event(max_participants=3, max_participants_per_school=1)

    check = capacity.evaluate(event, global_count=3, school_count=1)
    assert not check.admissible
    assert check.reasons == [
        "Event capacity full: this event has reached the maximum participant limit (3)",
        "School capacity full: this school has reached the maximum participant limit (1) for this event",
    ]

    assert capacity.evaluate(event, global_count=2, school_count=0).admissible


def test_evaluate_unlimited_caps() -> None:
    event = Event(max_participants=None, max_participants_per_school=None)
    check = capacity.evaluate(event, global_count=500, school_count=500)
    assert check.admissible
    assert check.reasons == []


@pytest.mark.asyncio
async def test_seated_student_counted_once(db_session, seed) -> None:
    school = await seed.school()
    student = await seed.student(school)
    seeded = await seed.event(max_participants_per_school=2)

    event = await load_event(db_session, seeded.id)
    request = await ledger.create(
        db_session, student_id=student.id, event_id=event.id, school_id=school.id, status="APPROVED"
    )
    await roster.claim_event(db_session, event)
    roster.add_student(event, school.id, student.id)
    await db_session.commit()

    check = await capacity.check_admission(db_session, event, school.id)
    assert check.admissible
    assert check.school_count == 1
    assert check.global_count == 1

    excluded = await capacity.check_admission(db_session, event, school.id, exclude_request_id=request.id)
    assert excluded.school_count == 0


@pytest.mark.asyncio
async def test_capacity_summary(db_session, seed) -> None:
    school = await seed.school()
    seated = await seed.student(school, name="Seated")
    waiting = await seed.student(school, name="Waiting")
    seeded = await seed.event(max_participants=4)

    event = await load_event(db_session, seeded.id)
    await ledger.create(db_session, student_id=seated.id, event_id=event.id, school_id=school.id, status="APPROVED")
    await ledger.create(db_session, student_id=waiting.id, event_id=event.id, school_id=school.id)
    await db_session.commit()

    summary = await capacity.capacity_summary(db_session, event)
    assert summary == {"total": 4, "filled": 1, "pending": 1, "available": 3, "percentage": 25}


@pytest.mark.asyncio
async def test_roster_add_is_idempotent(db_session, seed) -> None:
    school = await seed.school()
    student = await seed.student(school)
    seeded = await seed.event()

    event = await load_event(db_session, seeded.id)
    assert roster.add_student(event, school.id, student.id) is True
    assert roster.add_student(event, school.id, student.id) is False
    await db_session.commit()

    event = await load_event(db_session, seeded.id)
    assert len(event.participants) == 1
    assert event.roster_student_ids() == [student.id]


@pytest.mark.asyncio
async def test_roster_remove_prunes_empty_school_entry(db_session, seed) -> None:
    school = await seed.school()
    other = await seed.school("Shelbyville High")
    a = await seed.student(school, name="A")
    b = await seed.student(other, name="B")
    seeded = await seed.event()

    event = await load_event(db_session, seeded.id)
    roster.add_student(event, school.id, a.id)
    roster.add_student(event, other.id, b.id)
    await db_session.commit()

    event = await load_event(db_session, seeded.id)
    assert roster.remove_student(event, a.id) is True
    assert roster.remove_student(event, a.id) is False
    await db_session.commit()

    event = await load_event(db_session, seeded.id)
    assert [p.school_id for p in event.participants] == [other.id]
    assert event.enrolled_count == 1


@pytest.mark.asyncio
async def test_claim_event_detects_concurrent_writer(db_session, session_factory, seed) -> None:
    seeded = await seed.event()
    event = await load_event(db_session, seeded.id)
    assert event.version == 0

    async with session_factory() as other:
        await other.execute(update(Event).where(Event.id == seeded.id).values(version=Event.version + 1))
        await other.commit()

    with pytest.raises(CapacityConflictError):
        await roster.claim_event(db_session, event)
    await db_session.rollback()

    event = await load_event(db_session, seeded.id)
    await roster.claim_event(db_session, event)
    assert event.version == 2
    await db_session.commit()
