"""Tests for appointment store and state transition endpoints."""

from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from clinic_api.models import appointments
from clinic_api.schemas.appointments import AppointmentState
from clinic_api.schemas.events import EventKind
from clinic_api.services.appointment_service import effective_state


def future(days: int = 3) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).isoformat()


@pytest.mark.asyncio
async def test_create_appointment(
    client: AsyncClient,
    doctor: dict,
    patient: dict,
    dispatcher,
) -> None:
    """Test a doctor creating an appointment for a patient."""
    response = await client.post(
        "/api/v1/appointments",
        json={
            "patient_id": str(patient["patient_id"]),
            "scheduled_at": future(),
            "reason": "Knee pain",
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["state"] == "pending"
    assert data["doctor_id"] == str(doctor["doctor_id"])
    assert data["reason"] == "Knee pain"
    assert data["rescheduled_at"] is None
    assert dispatcher.kinds() == [EventKind.CREATED]


@pytest.mark.asyncio
async def test_create_appointment_unknown_patient(client: AsyncClient, doctor: dict) -> None:
    """Test creating an appointment for a patient that does not exist."""
    response = await client.post(
        "/api/v1/appointments",
        json={
            "patient_id": "00000000-0000-0000-0000-000000000001",
            "scheduled_at": future(),
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "NotFoundException"


@pytest.mark.asyncio
async def test_patient_cannot_create_appointment(client: AsyncClient, patient: dict) -> None:
    """Test that patients cannot create appointments."""
    response = await client.post(
        "/api/v1/appointments",
        json={"patient_id": str(patient["patient_id"]), "scheduled_at": future()},
        headers=patient["headers"],
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_payload_returns_400(client: AsyncClient, doctor: dict) -> None:
    """Test that request validation errors use the failure envelope."""
    response = await client.post(
        "/api/v1/appointments",
        json={"scheduled_at": "not a date"},
        headers=doctor["headers"],
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "ValidationError"
    assert body["details"]


@pytest.mark.asyncio
async def test_get_appointment_access(
    client: AsyncClient,
    patient: dict,
    other_patient: dict,
    make_appointment,
) -> None:
    """Test that only the owning patient can read an appointment."""
    appointment = await make_appointment()

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=patient["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == str(appointment["id"])
    assert data["vital_signs"] is None
    assert data["pending_reschedule_request"] is None

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=other_patient["headers"],
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_appointments_scoped_to_patient(
    client: AsyncClient,
    patient: dict,
    other_patient: dict,
    make_appointment,
) -> None:
    """Test that patients only list their own appointments."""
    await make_appointment()
    await make_appointment(patient_id=other_patient["patient_id"])

    response = await client.get("/api/v1/appointments", headers=patient["headers"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["items"][0]["patient_id"] == str(patient["patient_id"])


@pytest.mark.asyncio
async def test_list_appointments_search(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test free text search over reason and notes."""
    await make_appointment(reason="Knee pain after running")
    await make_appointment(reason="Follow up", notes="Check knee brace")
    await make_appointment(reason="Headache")

    response = await client.get(
        "/api/v1/appointments",
        params={"search": "KNEE"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2

    response = await client.get(
        "/api/v1/appointments",
        params={"search": "chest"},
        headers=doctor["headers"],
    )
    assert response.json()["data"]["total"] == 0


@pytest.mark.asyncio
async def test_set_state_no_show_with_observations(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
    dispatcher,
) -> None:
    """Test that no-show observations become the non-attendance reason."""
    appointment = await make_appointment()

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "no_show", "observations": "Did not answer the phone"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"] == "no_show"
    assert data["attendance"] is False
    assert data["non_attendance_reason"] == "Did not answer the phone"

    event = dispatcher.events[-1]
    assert event.kind is EventKind.STATE_CHANGED
    assert event.previous_state == "pending"
    assert event.new_state == "no_show"


@pytest.mark.asyncio
async def test_set_state_cancelled_observations_go_to_notes(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that observations are stored as notes for other states."""
    appointment = await make_appointment()

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "cancelled", "observations": "Patient travelling"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"] == "cancelled"
    assert data["notes"] == "Patient travelling"


@pytest.mark.asyncio
async def test_cancelling_no_show_clears_attendance(
    client: AsyncClient,
    db_session,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that cancelling a missed appointment drops its attendance record."""
    appointment = await make_appointment()
    url = f"/api/v1/appointments/{appointment['id']}/state"

    await client.put(
        url,
        json={"state": "no_show", "observations": "Sick"},
        headers=doctor["headers"],
    )
    response = await client.put(url, json={"state": "cancelled"}, headers=doctor["headers"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"] == "cancelled"
    assert data["attendance"] is None
    assert data["non_attendance_reason"] is None

    stored = (
        await db_session.execute(
            select(appointments.c.attendance, appointments.c.non_attendance_reason).where(
                appointments.c.id == appointment["id"]
            )
        )
    ).one()
    assert stored.attendance is None
    assert stored.non_attendance_reason is None


@pytest.mark.asyncio
async def test_reopening_no_show_clears_attendance(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that moving a missed appointment back to pending resets attendance."""
    appointment = await make_appointment()
    url = f"/api/v1/appointments/{appointment['id']}/state"

    await client.put(url, json={"state": "no_show"}, headers=doctor["headers"])
    response = await client.put(url, json={"state": "pending"}, headers=doctor["headers"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"] == "pending"
    assert data["attendance"] is None


@pytest.mark.asyncio
async def test_terminal_states_are_final(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that attended appointments cannot change state."""
    appointment = await make_appointment()

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "attended"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    assert response.json()["data"]["attendance"] is True

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "cancelled"},
        headers=doctor["headers"],
    )
    assert response.status_code == 409
    assert response.json()["error"] == "ConflictException"


@pytest.mark.asyncio
async def test_set_state_rescheduled_rejected(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that the rescheduled state can only be reached by rescheduling."""
    appointment = await make_appointment()

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "rescheduled"},
        headers=doctor["headers"],
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_set_state_same_state_emits_nothing(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
    dispatcher,
) -> None:
    """Test that a no-op transition does not notify anyone."""
    appointment = await make_appointment()

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "pending"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    assert dispatcher.events == []


@pytest.mark.asyncio
async def test_other_doctor_cannot_change_state(
    client: AsyncClient,
    other_doctor: dict,
    make_appointment,
) -> None:
    """Test that only the assigned doctor manages an appointment."""
    appointment = await make_appointment()

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "attended"},
        headers=other_doctor["headers"],
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_can_change_state(
    client: AsyncClient,
    admin: dict,
    make_appointment,
) -> None:
    """Test that admins manage any appointment."""
    appointment = await make_appointment()

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "cancelled"},
        headers=admin["headers"],
    )
    assert response.status_code == 200
    assert response.json()["data"]["state"] == "cancelled"


@pytest.mark.asyncio
async def test_reschedule_direct(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
    dispatcher,
) -> None:
    """Test a doctor moving an appointment to a new date."""
    appointment = await make_appointment()
    new_date = datetime.now(UTC).replace(microsecond=0) + timedelta(days=10)

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/reschedule",
        json={"newDate": new_date.isoformat(), "motive": "Doctor on leave"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"] == "rescheduled"
    assert datetime.fromisoformat(data["rescheduled_at"]) == new_date
    assert datetime.fromisoformat(data["scheduled_at"]) == appointment["scheduled_at"]
    assert data["requested_by"] == "doctor"
    assert data["reschedule_motive"] == "Doctor on leave"
    assert dispatcher.kinds() == [EventKind.RESCHEDULED]


@pytest.mark.asyncio
async def test_rescheduling_no_show_clears_attendance(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that giving a missed appointment a new date resets attendance."""
    appointment = await make_appointment()

    await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "no_show", "observations": "Sick"},
        headers=doctor["headers"],
    )
    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/reschedule",
        json={"newDate": future(days=7)},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"] == "rescheduled"
    assert data["attendance"] is None
    assert data["non_attendance_reason"] is None


@pytest.mark.asyncio
async def test_reschedule_direct_past_date(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that appointments cannot be moved into the past."""
    appointment = await make_appointment()

    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/reschedule",
        json={"new_date": (datetime.now(UTC) - timedelta(days=1)).isoformat()},
        headers=doctor["headers"],
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_leaving_rescheduled_folds_date(
    client: AsyncClient,
    db_session,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that attending a rescheduled appointment keeps the new date."""
    appointment = await make_appointment()
    new_date = datetime.now(UTC).replace(microsecond=0) + timedelta(days=5)

    await client.put(
        f"/api/v1/appointments/{appointment['id']}/reschedule",
        json={"new_date": new_date.isoformat()},
        headers=doctor["headers"],
    )
    response = await client.put(
        f"/api/v1/appointments/{appointment['id']}/state",
        json={"state": "attended"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"] == "attended"
    assert data["rescheduled_at"] is None
    assert datetime.fromisoformat(data["scheduled_at"]) == new_date

    row = (
        await db_session.execute(
            select(appointments.c.attendance).where(appointments.c.id == appointment["id"])
        )
    ).one()
    assert row.attendance is True


def test_effective_state_prefers_state_column() -> None:
    """Test that the state column wins over the attendance mirror."""
    assert effective_state({"state": "cancelled", "attendance": True}) is (
        AppointmentState.CANCELLED
    )


def test_effective_state_legacy_rows() -> None:
    """Test the attendance fallback for rows without a state."""
    assert effective_state({"state": None, "attendance": True}) is AppointmentState.ATTENDED
    assert effective_state({"state": None, "attendance": False}) is AppointmentState.NO_SHOW
    assert effective_state({"state": None, "attendance": None}) is AppointmentState.PENDING
