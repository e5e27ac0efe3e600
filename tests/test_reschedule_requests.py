"""Tests for the patient reschedule request workflow."""

from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient

from clinic_api.core.exceptions import ConflictException, ForbiddenException
from clinic_api.schemas.appointments import AppointmentState, RequestedBy
from clinic_api.schemas.events import EventKind
from clinic_api.schemas.reschedule_requests import (
    RescheduleAction,
    RescheduleDecision,
    RescheduleRequestStatus,
)
from clinic_api.services.appointment_service import AppointmentService
from clinic_api.services.reschedule_request_service import RescheduleRequestService


def clock(moment: datetime):
    return lambda: moment


@pytest.mark.asyncio
async def test_request_and_approve_reschedule(
    db_session,
    dispatcher,
    patient: dict,
    doctor: dict,
    make_appointment,
) -> None:
    """Test the full request then approval flow with fixed clocks."""
    scheduled = datetime(2025, 12, 1, 10, 0, tzinfo=UTC)
    requested_at = datetime(2025, 11, 20, 9, 0, tzinfo=UTC)
    new_date = datetime(2025, 12, 5, 10, 0, tzinfo=UTC)
    appointment = await make_appointment(scheduled_at=scheduled)

    service = RescheduleRequestService(db_session, dispatcher, now=clock(requested_at))
    request = await service.request_reschedule(appointment["id"], patient["caller"], "trip")
    assert request.status is RescheduleRequestStatus.PENDING
    assert request.motive == "trip"
    assert request.requested_date is None

    service = RescheduleRequestService(
        db_session, dispatcher, now=clock(datetime(2025, 11, 21, 8, 0, tzinfo=UTC))
    )
    resolved = await service.respond(
        appointment["id"],
        request.id,
        RescheduleDecision(action=RescheduleAction.APPROVE, new_date=new_date),
        doctor["caller"],
    )
    assert resolved.status is RescheduleRequestStatus.APPROVED
    assert resolved.responded_at is not None

    stored = await AppointmentService(db_session).fetch_row(appointment["id"])
    assert stored["state"] == AppointmentState.RESCHEDULED.value
    assert stored["rescheduled_at"] == new_date
    assert stored["scheduled_at"] == scheduled
    assert stored["requested_by"] == RequestedBy.PATIENT.value
    assert stored["reschedule_motive"] == "trip"
    assert stored["reschedule_requested_at"] == requested_at

    assert dispatcher.kinds() == [
        EventKind.RESCHEDULE_REQUESTED,
        EventKind.RESCHEDULE_RESOLVED,
    ]
    assert dispatcher.events[-1].decision == "approved"
    assert dispatcher.events[-1].scheduled_at == new_date


@pytest.mark.asyncio
async def test_request_respects_lead_time(
    db_session,
    patient: dict,
    make_appointment,
) -> None:
    """Test that requests too close to the appointment are refused."""
    scheduled = datetime(2025, 12, 1, 10, 0, tzinfo=UTC)
    appointment = await make_appointment(scheduled_at=scheduled)

    service = RescheduleRequestService(db_session, now=clock(scheduled - timedelta(minutes=30)))
    with pytest.raises(ConflictException):
        await service.request_reschedule(appointment["id"], patient["caller"], "late bus")


@pytest.mark.asyncio
async def test_lead_time_uses_rescheduled_date(
    db_session,
    patient: dict,
    make_appointment,
) -> None:
    """Test that the lead time counts from the rescheduled date when set."""
    scheduled = datetime(2025, 12, 1, 10, 0, tzinfo=UTC)
    appointment = await make_appointment(
        scheduled_at=scheduled,
        rescheduled_at=scheduled + timedelta(days=7),
        state="rescheduled",
    )

    service = RescheduleRequestService(db_session, now=clock(scheduled + timedelta(days=1)))
    request = await service.request_reschedule(appointment["id"], patient["caller"], "work")
    assert request.status is RescheduleRequestStatus.PENDING


@pytest.mark.asyncio
async def test_request_other_patients_appointment(
    db_session,
    other_patient: dict,
    make_appointment,
) -> None:
    """Test that patients only reschedule their own appointments."""
    appointment = await make_appointment()

    service = RescheduleRequestService(db_session)
    with pytest.raises(ForbiddenException):
        await service.request_reschedule(appointment["id"], other_patient["caller"], "trip")


@pytest.mark.asyncio
async def test_duplicate_pending_request(
    client: AsyncClient,
    patient: dict,
    make_appointment,
) -> None:
    """Test that only one pending request is allowed per appointment."""
    appointment = await make_appointment()
    url = f"/api/v1/appointments/{appointment['id']}/reschedule-requests"

    response = await client.post(url, json={"motive": "Trip"}, headers=patient["headers"])
    assert response.status_code == 201
    assert response.json()["data"]["status"] == "pending"

    response = await client.post(url, json={"motive": "Again"}, headers=patient["headers"])
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_blank_motive_rejected(
    client: AsyncClient,
    patient: dict,
    make_appointment,
) -> None:
    """Test that a motive is required."""
    appointment = await make_appointment()

    response = await client.post(
        f"/api/v1/appointments/{appointment['id']}/reschedule-requests",
        json={"motive": "   "},
        headers=patient["headers"],
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_request_on_cancelled_appointment(
    client: AsyncClient,
    patient: dict,
    make_appointment,
) -> None:
    """Test that terminal appointments cannot be rescheduled."""
    appointment = await make_appointment(state="cancelled")

    response = await client.post(
        f"/api/v1/appointments/{appointment['id']}/reschedule-requests",
        json={"motive": "Trip"},
        headers=patient["headers"],
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_cancel_then_request_again(
    client: AsyncClient,
    patient: dict,
    make_appointment,
) -> None:
    """Test that a cancelled request frees the slot for a new one."""
    appointment = await make_appointment()
    url = f"/api/v1/appointments/{appointment['id']}/reschedule-requests"

    created = await client.post(url, json={"motive": "Trip"}, headers=patient["headers"])
    request_id = created.json()["data"]["id"]

    response = await client.delete(f"{url}/{request_id}", headers=patient["headers"])
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"

    response = await client.delete(f"{url}/{request_id}", headers=patient["headers"])
    assert response.status_code == 409

    response = await client.post(url, json={"motive": "New trip"}, headers=patient["headers"])
    assert response.status_code == 201

    response = await client.get(url, headers=patient["headers"])
    assert response.status_code == 200
    assert [item["status"] for item in response.json()["data"]] == ["pending", "cancelled"]


@pytest.mark.asyncio
async def test_reject_keeps_appointment(
    client: AsyncClient,
    patient: dict,
    doctor: dict,
    make_appointment,
    dispatcher,
) -> None:
    """Test that rejecting a request leaves the appointment as it was."""
    appointment = await make_appointment()
    url = f"/api/v1/appointments/{appointment['id']}/reschedule-requests"
    created = await client.post(url, json={"motive": "Trip"}, headers=patient["headers"])
    request_id = created.json()["data"]["id"]

    response = await client.put(
        f"{url}/{request_id}",
        json={"action": "reject", "doctorResponse": "No free slots"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "rejected"
    assert data["doctor_response"] == "No free slots"

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=patient["headers"],
    )
    detail = response.json()["data"]
    assert detail["state"] == "pending"
    assert detail["rescheduled_at"] is None
    assert detail["pending_reschedule_request"] is None

    assert dispatcher.events[-1].kind is EventKind.RESCHEDULE_RESOLVED
    assert dispatcher.events[-1].decision == "rejected"


@pytest.mark.asyncio
async def test_approve_requires_new_date(
    client: AsyncClient,
    patient: dict,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that approval without a date is refused."""
    appointment = await make_appointment()
    url = f"/api/v1/appointments/{appointment['id']}/reschedule-requests"
    created = await client.post(url, json={"motive": "Trip"}, headers=patient["headers"])
    request_id = created.json()["data"]["id"]

    response = await client.put(
        f"{url}/{request_id}",
        json={"action": "approve"},
        headers=doctor["headers"],
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_approve_past_date(
    client: AsyncClient,
    patient: dict,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that approval to a past date is refused and the request stays pending."""
    appointment = await make_appointment()
    url = f"/api/v1/appointments/{appointment['id']}/reschedule-requests"
    created = await client.post(url, json={"motive": "Trip"}, headers=patient["headers"])
    request_id = created.json()["data"]["id"]

    response = await client.put(
        f"{url}/{request_id}",
        json={
            "action": "approve",
            "newDate": (datetime.now(UTC) - timedelta(hours=2)).isoformat(),
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 409

    response = await client.get(url, headers=doctor["headers"])
    assert response.json()["data"][0]["status"] == "pending"


@pytest.mark.asyncio
async def test_patient_cannot_respond(
    client: AsyncClient,
    patient: dict,
    make_appointment,
) -> None:
    """Test that patients cannot decide on requests."""
    appointment = await make_appointment()
    url = f"/api/v1/appointments/{appointment['id']}/reschedule-requests"
    created = await client.post(url, json={"motive": "Trip"}, headers=patient["headers"])
    request_id = created.json()["data"]["id"]

    response = await client.put(
        f"{url}/{request_id}",
        json={"action": "reject"},
        headers=patient["headers"],
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_requests_for_doctor(
    client: AsyncClient,
    patient: dict,
    doctor: dict,
    other_doctor: dict,
    make_appointment,
) -> None:
    """Test that doctors list requests on their own appointments."""
    appointment = await make_appointment()
    await client.post(
        f"/api/v1/appointments/{appointment['id']}/reschedule-requests",
        json={"motive": "Trip"},
        headers=patient["headers"],
    )

    response = await client.get(
        "/api/v1/reschedule-requests",
        params={"status": "pending"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    assert len(response.json()["data"]) == 1

    response = await client.get("/api/v1/reschedule-requests", headers=other_doctor["headers"])
    assert response.json()["data"] == []
