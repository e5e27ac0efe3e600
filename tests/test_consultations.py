"""Tests for one-shot full and first consultations."""

from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from clinic_api.models import (
    appointments,
    comorbidities,
    doctor_patients,
    patient_comorbidities,
    vaccination_records,
)
from clinic_api.schemas.events import EventKind


async def count_rows(db_session, table, *conditions) -> int:
    return await db_session.scalar(select(func.count()).select_from(table).where(*conditions))


@pytest.fixture
def first_consultation(patient: dict) -> dict:
    """Payload of a first consultation with baseline history."""
    return {
        "patient_id": str(patient["patient_id"]),
        "reason": "First visit",
        "vitals": {"weight_kg": 80, "height_m": 1.8, "systolic_bp": 130},
        "diagnosis": {"description": "Hypertension stage 1", "code": "I10"},
        "comorbidities": ["Hypertension", "  "],
        "baseline": {"is_baseline_diagnosis": True, "diagnosis_year": 1850},
        "treatment": {"receives_pharmacological": True},
        "years_affected": {"Hypertension": 4},
        "vaccinations": [
            {"vaccine_name": "Influenza", "applied_on": "2024-10-01", "dose": "1"},
            {"vaccine_name": "Tetanus"},
        ],
    }


@pytest.mark.asyncio
async def test_full_consultation_creates_attended_appointment(
    client: AsyncClient,
    db_session,
    doctor: dict,
    patient: dict,
    dispatcher,
) -> None:
    """Test a consultation without an appointment."""
    response = await client.post(
        "/api/v1/consultations/full",
        json={
            "patient_id": str(patient["patient_id"]),
            "vitals": {"weight_kg": 70, "height_m": 1.75},
            "medication_plan": {"items": [{"drug_id": "A01", "drug_name": "Ibuprofen"}]},
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["created_appointment"] is True
    assert data["state"] == "attended"
    assert data["vital_signs"]["bmi"] == 22.86
    assert data["medication_plan"]["items"][0]["drug_id"] == "A01"
    assert data["doctor_assigned"] is True

    row = (
        await db_session.execute(
            select(appointments).where(appointments.c.id == UUID(data["appointment_id"]))
        )
    ).one()
    assert row.state == "attended"
    assert row.attendance is True
    assert row.doctor_id == doctor["doctor_id"]

    assert (
        await count_rows(
            db_session,
            doctor_patients,
            doctor_patients.c.doctor_id == doctor["doctor_id"],
            doctor_patients.c.patient_id == patient["patient_id"],
        )
        == 1
    )
    assert dispatcher.kinds() == [EventKind.CREATED]


@pytest.mark.asyncio
async def test_full_consultation_on_existing_appointment(
    client: AsyncClient,
    doctor: dict,
    patient: dict,
    make_appointment,
    dispatcher,
) -> None:
    """Test a consultation that closes a pending appointment."""
    appointment = await make_appointment()

    response = await client.post(
        "/api/v1/consultations/full",
        json={
            "patient_id": str(patient["patient_id"]),
            "appointment_id": str(appointment["id"]),
            "diagnosis": {"description": "Common cold"},
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["created_appointment"] is False
    assert data["appointment_id"] == str(appointment["id"])
    assert data["diagnosis"]["description"] == "Common cold"
    assert data["doctor_assigned"] is False

    event = dispatcher.events[-1]
    assert event.kind is EventKind.STATE_CHANGED
    assert event.previous_state == "pending"
    assert event.new_state == "attended"


@pytest.mark.asyncio
async def test_full_consultation_appointment_of_other_patient(
    client: AsyncClient,
    doctor: dict,
    other_patient: dict,
    make_appointment,
) -> None:
    """Test that the appointment must belong to the named patient."""
    appointment = await make_appointment()

    response = await client.post(
        "/api/v1/consultations/full",
        json={
            "patient_id": str(other_patient["patient_id"]),
            "appointment_id": str(appointment["id"]),
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_full_consultation_on_cancelled_appointment(
    client: AsyncClient,
    doctor: dict,
    patient: dict,
    make_appointment,
) -> None:
    """Test that cancelled appointments cannot hold a consultation."""
    appointment = await make_appointment(state="cancelled")

    response = await client.post(
        "/api/v1/consultations/full",
        json={
            "patient_id": str(patient["patient_id"]),
            "appointment_id": str(appointment["id"]),
        },
        headers=doctor["headers"],
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_first_consultation_records_history(
    client: AsyncClient,
    db_session,
    doctor: dict,
    patient: dict,
    first_consultation: dict,
) -> None:
    """Test comorbidities, vaccinations and the discarded diagnosis year."""
    response = await client.post(
        "/api/v1/consultations/first",
        json=first_consultation,
        headers=doctor["headers"],
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["comorbidities"] == ["Hypertension"]
    assert data["vaccinations_recorded"] == 1
    assert data["doctor_assigned"] is True

    association = (
        await db_session.execute(
            select(patient_comorbidities).where(
                patient_comorbidities.c.patient_id == patient["patient_id"]
            )
        )
    ).one()
    assert association.diagnosis_year is None
    assert association.years_affected == 4
    assert association.is_baseline_diagnosis is True
    assert association.receives_pharmacological is True

    row = (
        await db_session.execute(
            select(appointments.c.is_first_consultation).where(
                appointments.c.id == UUID(data["appointment_id"])
            )
        )
    ).one()
    assert row.is_first_consultation is True


@pytest.mark.asyncio
async def test_first_consultation_is_idempotent_for_history(
    client: AsyncClient,
    db_session,
    doctor: dict,
    patient: dict,
    first_consultation: dict,
) -> None:
    """Test that repeating a first consultation reuses catalog and associations."""
    for _ in range(2):
        response = await client.post(
            "/api/v1/consultations/first",
            json=first_consultation,
            headers=doctor["headers"],
        )
        assert response.status_code == 201

    assert await count_rows(db_session, comorbidities, comorbidities.c.name == "Hypertension") == 1
    assert (
        await count_rows(
            db_session,
            patient_comorbidities,
            patient_comorbidities.c.patient_id == patient["patient_id"],
        )
        == 1
    )
    assert (
        await count_rows(
            db_session,
            doctor_patients,
            doctor_patients.c.patient_id == patient["patient_id"],
        )
        == 1
    )
    assert (
        await count_rows(
            db_session,
            vaccination_records,
            vaccination_records.c.patient_id == patient["patient_id"],
        )
        == 2
    )


@pytest.mark.asyncio
async def test_first_consultation_keeps_valid_year(
    client: AsyncClient,
    db_session,
    doctor: dict,
    patient: dict,
    first_consultation: dict,
) -> None:
    """Test that a plausible diagnosis year is stored."""
    first_consultation["baseline"]["diagnosis_year"] = 2015

    response = await client.post(
        "/api/v1/consultations/first",
        json=first_consultation,
        headers=doctor["headers"],
    )
    assert response.status_code == 201

    year = await db_session.scalar(
        select(patient_comorbidities.c.diagnosis_year).where(
            patient_comorbidities.c.patient_id == patient["patient_id"]
        )
    )
    assert year == 2015


@pytest.mark.asyncio
async def test_patient_cannot_record_consultation(
    client: AsyncClient,
    patient: dict,
) -> None:
    """Test that consultations are for clinicians and admins."""
    response = await client.post(
        "/api/v1/consultations/full",
        json={"patient_id": str(patient["patient_id"])},
        headers=patient["headers"],
    )
    assert response.status_code == 403
