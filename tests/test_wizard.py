"""Tests for the consultation completion wizard."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from clinic_api.models import diagnoses, vital_signs
from clinic_api.schemas.events import EventKind
from clinic_api.services.clinical_record_service import ClinicalRecordService, compute_bmi


def wizard_url(appointment: dict) -> str:
    return f"/api/v1/appointments/{appointment['id']}/wizard"


def test_compute_bmi() -> None:
    """Test BMI rounding and missing measurements."""
    assert compute_bmi(70, 1.75) == 22.86
    assert compute_bmi(70, None) is None
    assert compute_bmi(None, 1.75) is None
    assert compute_bmi(70, 0) is None


@pytest.mark.asyncio
async def test_vitals_step_is_an_upsert(
    client: AsyncClient,
    db_session,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that repeating the vitals step updates the same record."""
    appointment = await make_appointment()

    response = await client.post(
        wizard_url(appointment),
        json={"step": "vitals", "vitals": {"weight_kg": 70, "height_m": 1.75}},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["step_completed"] == "vitals"
    assert data["state"] == "pending"

    response = await client.post(
        wizard_url(appointment),
        json={"step": "vitals", "vitals": {"weight_kg": 72, "height_m": 1.75}},
        headers=doctor["headers"],
    )
    assert response.status_code == 200

    count = await db_session.scalar(
        select(func.count())
        .select_from(vital_signs)
        .where(vital_signs.c.appointment_id == appointment["id"])
    )
    assert count == 1

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=doctor["headers"],
    )
    stored = response.json()["data"]["vital_signs"]
    assert stored["weight_kg"] == 72
    assert stored["bmi"] == 23.51


@pytest.mark.asyncio
async def test_diagnosis_step_is_an_upsert(
    client: AsyncClient,
    db_session,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that repeating the diagnosis step keeps a single diagnosis."""
    appointment = await make_appointment()

    for description, code in (("Hypertension", "I10"), ("Type 2 diabetes", "E11")):
        response = await client.post(
            wizard_url(appointment),
            json={"step": "diagnosis", "diagnosis": {"description": description, "code": code}},
            headers=doctor["headers"],
        )
        assert response.status_code == 200

    count = await db_session.scalar(
        select(func.count())
        .select_from(diagnoses)
        .where(diagnoses.c.appointment_id == appointment["id"])
    )
    assert count == 1

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=doctor["headers"],
    )
    stored = response.json()["data"]["diagnosis"]
    assert stored["description"] == "Type 2 diabetes"
    assert stored["code"] == "E11"


@pytest.mark.asyncio
async def test_vitals_step_requires_measurement(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that a vitals step without measurements is refused."""
    appointment = await make_appointment()

    response = await client.post(
        wizard_url(appointment),
        json={"step": "vitals", "vitals": {"observations": "Patient calm"}},
        headers=doctor["headers"],
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_medication_plan_items_are_replaced(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that a repeated plan step replaces the item list."""
    appointment = await make_appointment()

    await client.post(
        wizard_url(appointment),
        json={
            "step": "medicationPlan",
            "medicationPlan": {
                "observations": "Start low",
                "items": [
                    {"drug_id": "A01", "drug_name": "Metformin", "dosage": "500 mg"},
                    {"drug_id": "B02", "drug_name": "Enalapril", "dosage": "10 mg"},
                ],
            },
        },
        headers=doctor["headers"],
    )
    response = await client.post(
        wizard_url(appointment),
        json={
            "step": "medicationPlan",
            "medicationPlan": {
                "items": [
                    {"drug_name": "No reference"},
                    {"drug_id": "C03", "drug_name": "Atorvastatin", "dosage": "20 mg"},
                ],
            },
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 200

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=doctor["headers"],
    )
    plan = response.json()["data"]["medication_plan"]
    assert [item["drug_id"] for item in plan["items"]] == ["C03"]
    assert plan["items"][0]["position"] == 0


@pytest.mark.asyncio
async def test_attendance_step_absent_then_present(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
    dispatcher,
) -> None:
    """Test that absence marks no-show and later presence reopens the appointment."""
    appointment = await make_appointment()

    response = await client.post(
        wizard_url(appointment),
        json={"step": "attendance", "attendance": False, "nonAttendanceReason": "Sick"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    assert response.json()["data"]["state"] == "no_show"

    response = await client.post(
        wizard_url(appointment),
        json={"step": "attendance", "attendance": True},
        headers=doctor["headers"],
    )
    assert response.json()["data"]["state"] == "pending"
    assert [event.new_state for event in dispatcher.events] == ["no_show", "pending"]

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=doctor["headers"],
    )
    detail = response.json()["data"]
    assert detail["attendance"] is True
    assert detail["non_attendance_reason"] is None


@pytest.mark.asyncio
async def test_finalize_marks_attended(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
    dispatcher,
) -> None:
    """Test that finalize applies payloads and closes the appointment."""
    appointment = await make_appointment()

    response = await client.post(
        wizard_url(appointment),
        json={
            "step": "finalize",
            "attendance": True,
            "notes": "  Stable  ",
            "diagnosis": {"description": "Type 2 diabetes", "code": "E11"},
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    assert response.json()["data"]["state"] == "attended"
    assert dispatcher.kinds() == [EventKind.STATE_CHANGED]

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=doctor["headers"],
    )
    detail = response.json()["data"]
    assert detail["notes"] == "Stable"
    assert detail["diagnosis"]["code"] == "E11"

    response = await client.post(
        wizard_url(appointment),
        json={"step": "finalize", "attendance": True},
        headers=doctor["headers"],
    )
    assert response.status_code == 409

    response = await client.post(
        wizard_url(appointment),
        json={"step": "notes", "notes": "Called back, all good"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    assert response.json()["data"]["state"] == "attended"


@pytest.mark.asyncio
async def test_finalize_without_marking_attended(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that finalize can record presence without closing the appointment."""
    appointment = await make_appointment()

    response = await client.post(
        wizard_url(appointment),
        json={"step": "finalize", "attendance": True, "markAsAttended": False},
        headers=doctor["headers"],
    )
    assert response.status_code == 200
    assert response.json()["data"]["state"] == "pending"


@pytest.mark.asyncio
async def test_clinical_steps_refused_when_cancelled(
    client: AsyncClient,
    doctor: dict,
    make_appointment,
) -> None:
    """Test that cancelled appointments take notes but no clinical records."""
    appointment = await make_appointment(state="cancelled")

    response = await client.post(
        wizard_url(appointment),
        json={"step": "diagnosis", "diagnosis": {"description": "Flu"}},
        headers=doctor["headers"],
    )
    assert response.status_code == 409

    response = await client.post(
        wizard_url(appointment),
        json={"step": "notes", "notes": "Cancelled by phone"},
        headers=doctor["headers"],
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_finalize_rolls_back_on_database_error(
    client: AsyncClient,
    db_session,
    doctor: dict,
    make_appointment,
    monkeypatch,
    dispatcher,
) -> None:
    """Test that a failed write leaves no partial records behind."""
    appointment = await make_appointment()
    monkeypatch.setattr(
        ClinicalRecordService,
        "upsert_diagnosis",
        AsyncMock(side_effect=SQLAlchemyError("disk full")),
    )

    response = await client.post(
        wizard_url(appointment),
        json={
            "step": "finalize",
            "attendance": True,
            "vitals": {"weight_kg": 70, "height_m": 1.75},
            "diagnosis": {"description": "Flu"},
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 500
    assert response.json()["error"] == "PersistenceException"

    count = await db_session.scalar(
        select(func.count())
        .select_from(vital_signs)
        .where(vital_signs.c.appointment_id == appointment["id"])
    )
    assert count == 0

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=doctor["headers"],
    )
    assert response.json()["data"]["state"] == "pending"
    assert dispatcher.events == []
