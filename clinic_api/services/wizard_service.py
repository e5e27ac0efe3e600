"""Completion wizard: stepwise, resumable attachment of clinical records."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.core.audit import AuditSink
from clinic_api.core.codec import FieldCodec
from clinic_api.core.exceptions import ConflictException, ValidationException
from clinic_api.core.timeutils import Clock, utc_now
from clinic_api.database import atomic
from clinic_api.schemas.appointments import AppointmentState
from clinic_api.schemas.consultations import (
    WizardStep,
    WizardStepRequest,
    WizardStepResult,
)
from clinic_api.schemas.events import EventKind
from clinic_api.schemas.users import Caller
from clinic_api.services.appointment_service import effective_state, ensure_can_manage
from clinic_api.services.clinical_record_service import ClinicalRecordService
from clinic_api.services.notification_dispatcher import NotificationDispatcher
from clinic_api.services.state_transition_service import (
    StateTransitionService,
    ensure_not_terminal,
)

logger = structlog.get_logger(__name__)

STEP_MESSAGES = {
    WizardStep.ATTENDANCE: "Attendance recorded",
    WizardStep.VITALS: "Vital signs saved",
    WizardStep.NOTES: "Notes saved",
    WizardStep.DIAGNOSIS: "Diagnosis saved",
    WizardStep.MEDICATION_PLAN: "Medication plan saved",
    WizardStep.FINALIZE: "Consultation finalized",
}

# Steps that attach clinical records; refused once the appointment is cancelled
_CLINICAL_STEPS = frozenset({WizardStep.VITALS, WizardStep.DIAGNOSIS, WizardStep.MEDICATION_PLAN})


def clean_notes(notes: str | None) -> str | None:
    """Trim notes, treating blank text as no notes."""
    if notes is None:
        return None
    return notes.strip() or None


class CompletionWizardService:
    """
    Apply one wizard step per call.

    Each step is its own transaction and may be repeated: clinical records
    are upserted, so an abandoned wizard resumes where it stopped.
    """

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

    async def complete_step(
        self,
        appointment_id: UUID,
        request: WizardStepRequest,
        caller: Caller,
    ) -> WizardStepResult:
        """
        Apply a wizard step to an appointment.

        Args:
            appointment_id: Appointment ID
            request: Step name and its payload
            caller: Clinician or admin

        Returns:
            Appointment state after the step

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If caller cannot manage the appointment
            ValidationException: If the step payload is missing or invalid
            ConflictException: If the appointment state forbids the step
        """
        row = await self.store.fetch_row(appointment_id)
        ensure_can_manage(caller, row)

        step = request.step
        current = effective_state(row)
        self._check_step_allowed(step, row)
        self._check_payload(request)

        values: dict[str, Any] = {}
        new_state = current

        async with atomic(self.db, f"wizard_{step.value}"):
            match step:
                case WizardStep.ATTENDANCE:
                    new_state = self._attendance_values(row, request, values)
                case WizardStep.VITALS:
                    await self.records.upsert_vital_signs(row, request.vitals, caller.user_id)
                case WizardStep.NOTES:
                    values["notes"] = self.store.codec.encode(clean_notes(request.notes))
                case WizardStep.DIAGNOSIS:
                    await self.records.upsert_diagnosis(
                        row["id"], request.diagnosis, caller.user_id
                    )
                case WizardStep.MEDICATION_PLAN:
                    await self.records.upsert_medication_plan(row, request.medication_plan)
                case WizardStep.FINALIZE:
                    await self._apply_records(row, request, caller)
                    if request.notes is not None:
                        values["notes"] = self.store.codec.encode(clean_notes(request.notes))
                    new_state = self._finalize_values(row, request, values)

            if values:
                values.setdefault("updated_at", self.now())
                row = await self.transitions.apply(appointment_id, values)

        logger.info(
            "wizard_step_completed",
            appointment_id=str(appointment_id),
            step=step.value,
            state=new_state.value,
        )

        if new_state is not current:
            self.transitions.audit.record_state_change(
                appointment_id, current.value, new_state.value, caller.user_id, caller.role.value
            )
            self.store.publish(
                EventKind.STATE_CHANGED,
                row,
                previous_state=current.value,
                new_state=new_state.value,
            )

        return WizardStepResult(
            appointment_id=appointment_id,
            state=new_state.value,
            step_completed=step,
            message=STEP_MESSAGES[step],
        )

    def _check_step_allowed(self, step: WizardStep, row: dict[str, Any]) -> None:
        """Notes are always accepted. Clinical steps stop at cancellation."""
        if step in (WizardStep.ATTENDANCE, WizardStep.FINALIZE):
            ensure_not_terminal(row)
        elif step in _CLINICAL_STEPS and effective_state(row) is AppointmentState.CANCELLED:
            raise ConflictException("Cannot add clinical records to a cancelled appointment")

    def _check_payload(self, request: WizardStepRequest) -> None:
        step = request.step
        if step is WizardStep.ATTENDANCE and request.attendance is None:
            raise ValidationException("Attendance is required for the attendance step")
        if step is WizardStep.VITALS and not (request.vitals and request.vitals.has_measurements()):
            raise ValidationException("At least one vital sign measurement is required")
        if step is WizardStep.DIAGNOSIS and request.diagnosis is None:
            raise ValidationException("A diagnosis description is required")
        if step is WizardStep.MEDICATION_PLAN and request.medication_plan is None:
            raise ValidationException("A medication plan is required")

    async def _apply_records(
        self,
        row: dict[str, Any],
        request: WizardStepRequest,
        caller: Caller,
    ) -> None:
        """Upsert whichever clinical payloads the request carries."""
        if request.vitals is not None:
            await self.records.upsert_vital_signs(row, request.vitals, caller.user_id)
        if request.diagnosis is not None:
            await self.records.upsert_diagnosis(row["id"], request.diagnosis, caller.user_id)
        if request.medication_plan is not None:
            await self.records.upsert_medication_plan(row, request.medication_plan)

    def _attendance_values(
        self,
        row: dict[str, Any],
        request: WizardStepRequest,
        values: dict[str, Any],
    ) -> AppointmentState:
        """Record attendance. Absence marks the appointment ``no_show``."""
        current = effective_state(row)

        if request.attendance is False:
            values.update(self.transitions.state_values(row, AppointmentState.NO_SHOW))
            values["non_attendance_reason"] = request.non_attendance_reason
            return AppointmentState.NO_SHOW

        if current is AppointmentState.NO_SHOW:
            values.update(self.transitions.state_values(row, AppointmentState.PENDING))
            current = AppointmentState.PENDING
        values.update(attendance=True, non_attendance_reason=None)
        return current

    def _finalize_values(
        self,
        row: dict[str, Any],
        request: WizardStepRequest,
        values: dict[str, Any],
    ) -> AppointmentState:
        """Decide the final state from the supplied or stored attendance."""
        attendance = request.attendance if request.attendance is not None else row["attendance"]

        if attendance is True and request.mark_as_attended:
            values.update(self.transitions.state_values(row, AppointmentState.ATTENDED))
            return AppointmentState.ATTENDED
        if attendance is False:
            values.update(self.transitions.state_values(row, AppointmentState.NO_SHOW))
            if request.non_attendance_reason is not None:
                values["non_attendance_reason"] = request.non_attendance_reason
            return AppointmentState.NO_SHOW
        if attendance is True:
            values["attendance"] = True
        return effective_state(row)
