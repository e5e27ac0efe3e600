"""One-shot full and first consultations."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.core.audit import AuditSink
from clinic_api.core.codec import FieldCodec
from clinic_api.core.exceptions import ConflictException, NotFoundException
from clinic_api.core.timeutils import Clock, row_to_dict, to_utc, utc_now
from clinic_api.database import atomic, dialect_insert
from clinic_api.models.appointments import appointments
from clinic_api.models.doctors import doctor_patients
from clinic_api.models.medical_history import (
    comorbidities,
    patient_comorbidities,
    vaccination_records,
)
from clinic_api.schemas.appointments import AppointmentState
from clinic_api.schemas.consultations import (
    ConsultationRequest,
    ConsultationResult,
    FirstConsultationRequest,
)
from clinic_api.schemas.events import EventKind
from clinic_api.schemas.users import Caller
from clinic_api.services.appointment_service import effective_state, ensure_can_manage
from clinic_api.services.clinical_record_service import ClinicalRecordService
from clinic_api.services.directory_service import DirectoryService
from clinic_api.services.notification_dispatcher import NotificationDispatcher
from clinic_api.services.state_transition_service import StateTransitionService

logger = structlog.get_logger(__name__)

MIN_DIAGNOSIS_YEAR = 1900


class ConsultationService:
    """Record a whole consultation in a single transaction."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        audit: AuditSink | None = None,
        codec: FieldCodec | None = None,
        now: Clock = utc_now,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.transitions = StateTransitionService(db, dispatcher, audit, codec, now)
        self.store = self.transitions.store
        self.records = ClinicalRecordService(db, now)
        self.now = now

    async def create_full_consultation(
        self,
        request: ConsultationRequest,
        caller: Caller,
    ) -> ConsultationResult:
        """
        Record vitals, diagnosis and medication plan for one visit.

        The visit is an existing appointment of the same patient or a new
        appointment. Either way it ends up ``attended``. New appointments also
        assign the doctor to the patient.

        Raises:
            NotFoundException: If patient, doctor or appointment not found
            ForbiddenException: If caller cannot manage the appointment
            ConflictException: If the appointment is cancelled
        """
        return await self._record(request, caller, first=False)

    async def create_first_consultation(
        self,
        request: FirstConsultationRequest,
        caller: Caller,
    ) -> ConsultationResult:
        """
        Record a first consultation with the patient's baseline history.

        Adds comorbidities (catalog entries are created on first use) and
        vaccinations, and always ensures the doctor-patient assignment.
        Diagnosis years outside [1900, current year] are dropped with a
        warning. A failed assignment is logged and does not fail the visit.
        """
        return await self._record(request, caller, first=True)

    async def _record(
        self,
        request: ConsultationRequest,
        caller: Caller,
        first: bool,
    ) -> ConsultationResult:
        operation = "first_consultation" if first else "full_consultation"
        doctor_id = request.doctor_id or caller.doctor_id
        directory = DirectoryService(self.db)

        if not await directory.get_patient(request.patient_id):
            raise NotFoundException("Patient not found")
        if doctor_id and not await directory.get_doctor(doctor_id):
            raise NotFoundException("Doctor not found")

        existing = None
        if request.appointment_id:
            existing = await self._patient_appointment(request.appointment_id, request.patient_id)
            ensure_can_manage(caller, existing)
            if effective_state(existing) is AppointmentState.CANCELLED:
                raise ConflictException("Cannot record a consultation on a cancelled appointment")

        previous = effective_state(existing) if existing else None
        now = self.now()

        async with atomic(self.db, operation):
            if existing:
                row = existing
                if previous is not AppointmentState.ATTENDED:
                    values = self.transitions.state_values(row, AppointmentState.ATTENDED)
                    if first:
                        values["is_first_consultation"] = True
                    row = await self.transitions.apply(row["id"], values)
            else:
                row = await self._new_appointment(request, doctor_id, first)

            written: dict[str, Any] = {}

            if request.vitals is not None:
                written["vital_signs"] = await self.records.upsert_vital_signs(
                    row, request.vitals, caller.user_id
                )
            if request.diagnosis is not None:
                written["diagnosis"] = await self.records.upsert_diagnosis(
                    row["id"], request.diagnosis, caller.user_id
                )
            if request.medication_plan is not None:
                written["medication_plan"] = await self.records.upsert_medication_plan(
                    row, request.medication_plan
                )

            if isinstance(request, FirstConsultationRequest):
                written["comorbidities"] = await self._record_comorbidities(request)
                written["vaccinations_recorded"] = await self._record_vaccinations(
                    request, row["id"]
                )

            if first or existing is None:
                written["doctor_assigned"] = await self._ensure_assignment(
                    doctor_id, request.patient_id
                )

        logger.info(
            "consultation_recorded",
            operation=operation,
            appointment_id=str(row["id"]),
            created_appointment=existing is None,
            at=now.isoformat(),
        )

        if existing is None:
            self.store.publish(EventKind.CREATED, row)
        elif previous is not AppointmentState.ATTENDED:
            self.transitions.audit.record_state_change(
                row["id"],
                previous.value,
                AppointmentState.ATTENDED.value,
                caller.user_id,
                caller.role.value,
            )
            self.store.publish(
                EventKind.STATE_CHANGED,
                row,
                previous_state=previous.value,
                new_state=AppointmentState.ATTENDED.value,
            )

        return ConsultationResult(
            appointment_id=row["id"],
            state=AppointmentState.ATTENDED.value,
            created_appointment=existing is None,
            **written,
        )

    async def _patient_appointment(self, appointment_id: UUID, patient_id: UUID) -> dict[str, Any]:
        """
        Raises:
            NotFoundException: If the appointment does not belong to the patient
        """
        result = await self.db.execute(
            select(appointments).where(
                appointments.c.id == appointment_id,
                appointments.c.patient_id == patient_id,
            )
        )
        row = result.fetchone()
        if not row:
            raise NotFoundException("Appointment not found for this patient")
        return row_to_dict(row)

    async def _new_appointment(
        self,
        request: ConsultationRequest,
        doctor_id: UUID | None,
        first: bool,
    ) -> dict[str, Any]:
        now = self.now()
        codec = self.store.codec
        result = await self.db.execute(
            insert(appointments)
            .values(
                patient_id=request.patient_id,
                doctor_id=doctor_id,
                scheduled_at=to_utc(request.scheduled_at) or now,
                reason=codec.encode(request.reason),
                notes=codec.encode(request.notes),
                is_first_consultation=first,
                state=AppointmentState.ATTENDED.value,
                attendance=True,
                created_at=now,
                updated_at=now,
            )
            .returning(appointments)
        )
        return row_to_dict(result.fetchone())

    def _valid_year(self, year: int | None) -> int | None:
        if year is None:
            return None
        current_year = self.now().year
        if not MIN_DIAGNOSIS_YEAR <= year <= current_year:
            logger.warning(
                "comorbidity_year_discarded",
                year=year,
                allowed_range=f"{MIN_DIAGNOSIS_YEAR}-{current_year}",
            )
            return None
        return year

    async def _find_or_create_comorbidity(self, name: str) -> UUID:
        """Get the catalog entry for a comorbidity, adding it if unknown."""
        await self.db.execute(
            dialect_insert(self.db, comorbidities)
            .values(name=name, created_at=self.now())
            .on_conflict_do_nothing(index_elements=[comorbidities.c.name])
        )
        result = await self.db.execute(
            select(comorbidities.c.id).where(comorbidities.c.name == name)
        )
        return result.scalar_one()

    async def _record_comorbidities(self, request: FirstConsultationRequest) -> list[str]:
        """
        Attach comorbidities to the patient.

        Flags are shared by every name in the request. Existing associations
        are updated; year and years affected only overwrite when supplied.
        """
        year = self._valid_year(request.baseline.diagnosis_year)
        recorded = []

        for raw_name in request.comorbidities:
            name = raw_name.strip()
            if not name:
                continue

            comorbidity_id = await self._find_or_create_comorbidity(name)
            years_affected = request.years_affected.get(raw_name, request.years_affected.get(name))
            now = self.now()
            values: dict[str, Any] = {
                "is_baseline_diagnosis": request.baseline.is_baseline_diagnosis,
                "is_added_later": request.baseline.is_added_later,
                "receives_non_pharmacological": request.treatment.receives_non_pharmacological,
                "receives_pharmacological": request.treatment.receives_pharmacological,
                "updated_at": now,
            }
            if year is not None:
                values["diagnosis_year"] = year
            if years_affected is not None:
                values["years_affected"] = years_affected

            result = await self.db.execute(
                select(patient_comorbidities.c.id).where(
                    patient_comorbidities.c.patient_id == request.patient_id,
                    patient_comorbidities.c.comorbidity_id == comorbidity_id,
                )
            )
            association_id = result.scalar()

            if association_id is not None:
                await self.db.execute(
                    update(patient_comorbidities)
                    .where(patient_comorbidities.c.id == association_id)
                    .values(**values)
                )
            else:
                await self.db.execute(
                    insert(patient_comorbidities).values(
                        patient_id=request.patient_id,
                        comorbidity_id=comorbidity_id,
                        created_at=now,
                        **values,
                    )
                )
            recorded.append(name)

        return recorded

    async def _record_vaccinations(
        self,
        request: FirstConsultationRequest,
        appointment_id: UUID,
    ) -> int:
        rows = []
        for vaccination in request.vaccinations:
            if not vaccination.vaccine_name or not vaccination.applied_on:
                logger.warning(
                    "vaccination_skipped",
                    patient_id=str(request.patient_id),
                    reason="missing vaccine name or application date",
                )
                continue
            rows.append(
                {
                    "patient_id": request.patient_id,
                    "appointment_id": appointment_id,
                    "vaccine_name": vaccination.vaccine_name,
                    "applied_on": vaccination.applied_on,
                    "dose": vaccination.dose,
                    "notes": vaccination.notes,
                    "created_at": self.now(),
                }
            )
        if rows:
            await self.db.execute(insert(vaccination_records), rows)
        return len(rows)

    async def _ensure_assignment(self, doctor_id: UUID | None, patient_id: UUID) -> bool:
        """
        Assign the doctor to the patient if not assigned yet.

        Runs in a savepoint so a failure only loses the assignment.

        Returns:
            True if the doctor follows the patient afterwards
        """
        if doctor_id is None:
            return False

        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    select(doctor_patients.c.id).where(
                        doctor_patients.c.doctor_id == doctor_id,
                        doctor_patients.c.patient_id == patient_id,
                    )
                )
                if result.first() is None:
                    await self.db.execute(
                        insert(doctor_patients).values(
                            doctor_id=doctor_id,
                            patient_id=patient_id,
                            assigned_at=self.now(),
                        )
                    )
                    logger.info(
                        "doctor_assigned_to_patient",
                        doctor_id=str(doctor_id),
                        patient_id=str(patient_id),
                    )
            return True
        except SQLAlchemyError as e:
            logger.error(
                "doctor_assignment_failed",
                doctor_id=str(doctor_id),
                patient_id=str(patient_id),
                error=str(e),
            )
            return False
