"""Reading the audit trail over HTTP."""

import pytest

from app.api.v1.participation import coordinator

from conftest import auth_headers, school_admin, student_user, super_admin


async def scenario(db_session, seed):
    school = await seed.school()
    other = await seed.school("Shelbyville High")
    ours = await seed.student(school, name="Ours")
    theirs = await seed.student(other, name="Theirs")
    event = await seed.event()

    request = await coordinator.request_participation(db_session, event.id, student_user(ours))
    await coordinator.decide_requests(db_session, event.id, [request.id], "approve", super_admin())
    await coordinator.request_participation(db_session, event.id, student_user(theirs))
    return school, request


@pytest.mark.asyncio
async def test_school_admin_sees_own_school_entries(client, db_session, seed) -> None:
    school, request = await scenario(db_session, seed)
    headers = auth_headers(school_admin(school))

    response = await client.get("/api/v1/activity-logs", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Activity logs retrieved"
    logs = body["data"]["logs"]
    assert [entry["action"] for entry in logs] == ["participation_approved", "participation_requested"]
    assert {entry["entity_id"] for entry in logs} == {str(request.id)}
    assert logs[0]["from_status"] == "PENDING"
    assert logs[0]["to_status"] == "APPROVED"
    assert body["data"]["pagination"] == {"total": 2, "limit": 50, "skip": 0, "pages": 1}

    response = await client.get(
        "/api/v1/activity-logs", params={"action": "participation_approved"}, headers=headers
    )
    assert response.json()["data"]["pagination"]["total"] == 1

    response = await client.get("/api/v1/activity-logs", params={"targetType": "event"}, headers=headers)
    assert response.json()["data"]["logs"] == []


@pytest.mark.asyncio
async def test_super_admin_pages_through_every_school(client, db_session, seed) -> None:
    await scenario(db_session, seed)
    headers = auth_headers(super_admin())

    response = await client.get(
        "/api/v1/activity-logs",
        params={"targetType": "participation_request", "limit": 1, "skip": 1},
        headers=headers,
    )
    data = response.json()["data"]
    assert len(data["logs"]) == 1
    assert data["pagination"] == {"total": 3, "limit": 1, "skip": 1, "pages": 3}


@pytest.mark.asyncio
async def test_students_cannot_read_activity_logs(client, seed) -> None:
    school = await seed.school()
    student = await seed.student(school)

    response = await client.get("/api/v1/activity-logs", headers=auth_headers(student_user(student)))
    assert response.status_code == 403

    response = await client.get("/api/v1/activity-logs", params={"limit": 0}, headers=auth_headers(super_admin()))
    assert response.status_code == 422
