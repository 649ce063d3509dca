"""Event administration endpoints."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.models import AuditLog, EventParticipantStudent, ParticipationRequest
from app.core.timeutils import utcnow

from conftest import auth_headers, school_admin, student_user, super_admin


def event_body(**overrides) -> dict:
    now = utcnow()
    body = {
        "title": "Robotics Cup",
        "description": "Build and race",
        "date": (now + timedelta(days=30)).isoformat() + "Z",
        "registrationDeadline": (now + timedelta(days=20)).isoformat() + "Z",
        "eligibleGrades": ["Grade 9", "Grade 9", " Grade 10 "],
        "maxParticipants": 20,
        "maxParticipantsPerSchool": 4,
    }
    body.update(overrides)
    return body


def teacher(school) -> CurrentUser:
    return CurrentUser(id=uuid.uuid4(), role=UserRole.TEACHER.value, school_id=school.id)


@pytest.mark.asyncio
async def test_initial_status_depends_on_author(client, seed) -> None:
    school = await seed.school()

    response = await client.post("/api/v1/events", json=event_body(), headers=auth_headers(super_admin()))
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "APPROVED"
    assert body["school_id"] is None
    assert body["eligible_grades"] == ["Grade 9", "Grade 10"]
    assert body["enrolled_count"] == 0

    response = await client.post("/api/v1/events", json=event_body(), headers=auth_headers(teacher(school)))
    assert response.json()["status"] == "PENDING"
    assert response.json()["school_id"] == str(school.id)

    response = await client.post(
        "/api/v1/events", json=event_body(status="DRAFT"), headers=auth_headers(school_admin(school))
    )
    assert response.json()["status"] == "DRAFT"


@pytest.mark.asyncio
async def test_students_cannot_create_events(client, seed) -> None:
    school = await seed.school()
    student = await seed.student(school)
    response = await client.post("/api/v1/events", json=event_body(), headers=auth_headers(student_user(student)))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_validation(client) -> None:
    headers = auth_headers(super_admin())
    now = utcnow()

    late_deadline = event_body(registrationDeadline=(now + timedelta(days=40)).isoformat() + "Z")
    response = await client.post("/api/v1/events", json=late_deadline, headers=headers)
    assert response.status_code == 422
    assert "Registration deadline must not be after the event date" in response.json()["message"]

    response = await client.post(
        "/api/v1/events", json=event_body(maxParticipantsPerSchool=50), headers=headers
    )
    assert response.status_code == 422
    assert "Per-school limit cannot exceed the event limit" in response.json()["message"]

    response = await client.post("/api/v1/events", json=event_body(maxParticipants=0), headers=headers)
    assert response.status_code == 422

    response = await client.post("/api/v1/events", json=event_body(status="APPROVED"), headers=headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_visibility_by_role(client, seed) -> None:
    school = await seed.school()
    other = await seed.school("Shelbyville High")
    student = await seed.student(school)
    global_event = await seed.event(title="Global")
    own = await seed.event(title="Own", school=school)
    foreign = await seed.event(title="Foreign", school=other)
    pending = await seed.event(title="Pending", school=school, status="PENDING")

    response = await client.get("/api/v1/events", headers=auth_headers(student_user(student)))
    assert {e["title"] for e in response.json()} == {"Global", "Own"}

    response = await client.get("/api/v1/events", headers=auth_headers(school_admin(school)))
    assert {e["title"] for e in response.json()} == {"Global", "Own", "Pending"}

    response = await client.get("/api/v1/events", params={"status": "pending"}, headers=auth_headers(super_admin()))
    assert [e["id"] for e in response.json()] == [str(pending.id)]

    response = await client.get(f"/api/v1/events/{foreign.id}", headers=auth_headers(school_admin(school)))
    assert response.status_code == 404

    response = await client.get(f"/api/v1/events/{pending.id}", headers=auth_headers(student_user(student)))
    assert response.status_code == 404

    for event in (global_event, own):
        response = await client.get(f"/api/v1/events/{event.id}", headers=auth_headers(student_user(student)))
        assert response.status_code == 200


@pytest.mark.asyncio
async def test_status_change_requires_ownership(client, seed) -> None:
    school = await seed.school()
    other = await seed.school("Shelbyville High")
    event = await seed.event(school=school, status="PENDING")

    response = await client.put(
        f"/api/v1/events/{event.id}/status", json={"status": "APPROVED"}, headers=auth_headers(school_admin(other))
    )
    assert response.status_code == 403

    response = await client.put(
        f"/api/v1/events/{event.id}/status",
        json={"status": "APPROVED", "remarks": "Looks good"},
        headers=auth_headers(school_admin(school)),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "APPROVED"

    response = await client.put(
        f"/api/v1/events/{event.id}/status", json={"status": "DRAFT"}, headers=auth_headers(super_admin())
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_permanent_delete_cascades_requests_and_roster(client, session_factory, seed) -> None:
    school = await seed.school()
    seated = await seed.student(school, name="Seated")
    waiting = await seed.student(school, name="Waiting")
    event = await seed.event(school=school)
    headers = auth_headers(school_admin(school))

    await client.post(
        f"/api/v1/events/{event.id}/manage/student/add", json={"studentIds": [str(seated.id)]}, headers=headers
    )
    await client.post(f"/api/v1/events/{event.id}/participate", headers=auth_headers(student_user(waiting)))

    response = await client.delete(f"/api/v1/events/{event.id}", params={"permanent": "true"}, headers=headers)
    assert response.status_code == 200
    assert response.json() == {
        "message": "Event and related requests permanently deleted",
        "deleted_requests": 2,
        "archived": False,
    }

    response = await client.get(f"/api/v1/events/{event.id}", headers=headers)
    assert response.status_code == 404

    async with session_factory() as session:
        requests = await session.execute(
            select(func.count(ParticipationRequest.id)).where(ParticipationRequest.event_id == event.id)
        )
        seats = await session.execute(
            select(func.count(EventParticipantStudent.id)).where(EventParticipantStudent.event_id == event.id)
        )
        assert requests.scalar() == 0
        assert seats.scalar() == 0


@pytest.mark.asyncio
async def test_global_event_delete_is_super_admin_only(client, seed) -> None:
    school = await seed.school()
    event = await seed.event()

    response = await client.delete(f"/api/v1/events/{event.id}", headers=auth_headers(school_admin(school)))
    assert response.status_code == 403
    assert response.json()["message"] == "Only the owning school's admin or a super admin can manage this event"
    assert response.json()["error"] == "AUTH"

    response = await client.delete(
        f"/api/v1/events/{event.id}", params={"permanent": "true"}, headers=auth_headers(super_admin())
    )
    assert response.json()["deleted_requests"] == 0


@pytest.mark.asyncio
async def test_reconcile_endpoint_reports_consistent_roster(client, seed) -> None:
    school = await seed.school()
    student = await seed.student(school)
    event = await seed.event()
    headers = auth_headers(super_admin())

    await client.post(
        f"/api/v1/events/{event.id}/manage/student/add", json={"studentIds": [str(student.id)]}, headers=headers
    )
    response = await client.post(f"/api/v1/events/{event.id}/roster/reconcile", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Roster already consistent", "added": [], "removed": []}


@pytest.mark.asyncio
async def test_delete_archives_by_default(client, session_factory, seed) -> None:
    school = await seed.school()
    seated = await seed.student(school, name="Seated")
    latecomer = await seed.student(school, name="Latecomer")
    event = await seed.event(school=school)
    headers = auth_headers(school_admin(school))

    await client.post(
        f"/api/v1/events/{event.id}/manage/student/add", json={"studentIds": [str(seated.id)]}, headers=headers
    )

    response = await client.delete(f"/api/v1/events/{event.id}", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Event archived", "deleted_requests": 0, "archived": True}

    # Admins still see the event with its roster intact
    response = await client.get(f"/api/v1/events/{event.id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["lifecycle_status"] == "ARCHIVED"
    assert response.json()["enrolled_count"] == 1

    student_headers = auth_headers(student_user(latecomer))
    response = await client.get(f"/api/v1/events/{event.id}", headers=student_headers)
    assert response.status_code == 404
    response = await client.get("/api/v1/events", headers=student_headers)
    assert response.json() == []
    response = await client.post(f"/api/v1/events/{event.id}/participate", headers=student_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Event is not open for participation"

    response = await client.get("/api/v1/events", params={"lifecycleStatus": "archived"}, headers=headers)
    assert [e["id"] for e in response.json()] == [str(event.id)]

    async with session_factory() as session:
        result = await session.execute(select(AuditLog.action).where(AuditLog.entity_id == event.id))
        assert "event_archived" in result.scalars().all()


@pytest.mark.asyncio
async def test_edit_event_lowering_cap_keeps_seated_students(client, seed) -> None:
    school = await seed.school()
    students = [await seed.student(school, name=f"S{i}") for i in range(3)]
    event = await seed.event(school=school, max_participants=5)
    headers = auth_headers(school_admin(school))

    await client.post(
        f"/api/v1/events/{event.id}/manage/student/add",
        json={"studentIds": [str(students[0].id), str(students[1].id)]},
        headers=headers,
    )

    response = await client.put(
        f"/api/v1/events/{event.id}",
        json={"title": "  Science Fair 2.0 ", "maxParticipants": 1, "eligibleGrades": ["Grade 9", "Grade 9"]},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Science Fair 2.0"
    assert body["max_participants"] == 1
    assert body["eligible_grades"] == ["Grade 9"]
    assert body["enrolled_count"] == 2
    assert body["description"] == "Annual science fair"

    response = await client.post(
        f"/api/v1/events/{event.id}/manage/student/add", json={"studentIds": [str(students[2].id)]}, headers=headers
    )
    assert response.json()["failed"][0]["reason"] == (
        "Event capacity full: this event has reached the maximum participant limit (1)"
    )

    # Clearing the cap reopens the event
    response = await client.put(f"/api/v1/events/{event.id}", json={"maxParticipants": None}, headers=headers)
    assert response.json()["max_participants"] is None


@pytest.mark.asyncio
async def test_edit_event_validates_merged_fields(client, seed) -> None:
    school = await seed.school()
    other = await seed.school("Shelbyville High")
    event = await seed.event(school=school, days_ahead=10, deadline_days_ahead=5, max_participants=10)
    url = f"/api/v1/events/{event.id}"
    headers = auth_headers(school_admin(school))

    late = (utcnow() + timedelta(days=20)).isoformat() + "Z"
    response = await client.put(url, json={"registrationDeadline": late}, headers=headers)
    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Registration deadline must not be after the event date",
        "error": "VALIDATION",
    }

    response = await client.put(url, json={"maxParticipantsPerSchool": 11}, headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Per-school limit cannot exceed the event limit"

    response = await client.put(url, json={"title": None}, headers=headers)
    assert response.status_code == 422

    response = await client.put(url, json={"lifecycleStatus": "DONE"}, headers=headers)
    assert response.status_code == 422

    response = await client.put(url, json={"title": "Hijacked"}, headers=auth_headers(school_admin(other)))
    assert response.status_code == 403

    # Moving the date past the deadline together is accepted
    response = await client.put(
        url,
        json={"date": (utcnow() + timedelta(days=30)).isoformat() + "Z", "registrationDeadline": late},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["lifecycle_status"] == "ACTIVE"
