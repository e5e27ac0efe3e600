"""State transition engine for appointments."""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.core.audit import AuditSink, get_audit_sink
from clinic_api.core.codec import FieldCodec
from clinic_api.core.exceptions import ConflictException, ValidationException
from clinic_api.core.timeutils import Clock, row_to_dict, to_utc, utc_now
from clinic_api.database import atomic
from clinic_api.models.appointments import appointments
from clinic_api.schemas.appointments import (
    TERMINAL_STATES,
    AppointmentResponse,
    AppointmentState,
    RequestedBy,
)
from clinic_api.schemas.events import EventKind
from clinic_api.schemas.users import Caller
from clinic_api.services.appointment_service import (
    AppointmentService,
    effective_state,
    ensure_can_manage,
)
from clinic_api.services.notification_dispatcher import NotificationDispatcher

logger = structlog.get_logger(__name__)


def ensure_not_terminal(row: dict[str, Any]) -> AppointmentState:
    """
    Reject changes to attended or cancelled appointments.

    Returns:
        Current state of the appointment

    Raises:
        ConflictException: If the appointment is in a terminal state
    """
    current = effective_state(row)
    if current in TERMINAL_STATES:
        raise ConflictException(f"Appointment is in a terminal state ({current.value})")
    return current


class StateTransitionService:
    """Validate and apply appointment state changes."""

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
        self.store = AppointmentService(db, dispatcher, codec, now)
        self.audit = audit or get_audit_sink()
        self.now = now

    def state_values(
        self,
        row: dict[str, Any],
        target: AppointmentState,
    ) -> dict[str, Any]:
        """
        Column values that move an appointment to ``target``.

        Attendance mirrors ``attended`` and ``no_show`` and is cleared for
        every other state. Leaving ``rescheduled``
        folds the rescheduled date into ``scheduled_at`` so ``rescheduled_at``
        is only set while the appointment is rescheduled.
        """
        values: dict[str, Any] = {"state": target.value, "updated_at": self.now()}

        if target is AppointmentState.ATTENDED:
            values.update(attendance=True, non_attendance_reason=None)
        elif target is AppointmentState.NO_SHOW:
            values["attendance"] = False
        else:
            values.update(attendance=None, non_attendance_reason=None)

        if effective_state(row) is AppointmentState.RESCHEDULED:
            values.update(
                scheduled_at=row["rescheduled_at"] or row["scheduled_at"],
                rescheduled_at=None,
            )
        return values

    def reschedule_values(
        self,
        new_date: datetime,
        motive: str | None,
        requested_by: RequestedBy,
        requested_at: datetime,
    ) -> dict[str, Any]:
        """Column values that reschedule an appointment to ``new_date``."""
        return {
            "state": AppointmentState.RESCHEDULED.value,
            "rescheduled_at": new_date,
            "reschedule_motive": motive,
            "requested_by": requested_by.value,
            "reschedule_requested_at": requested_at,
            "attendance": None,
            "non_attendance_reason": None,
            "updated_at": self.now(),
        }

    def ensure_future(self, new_date: datetime) -> None:
        """
        Raises:
            ConflictException: If the date is in the past
        """
        if new_date < self.now():
            raise ConflictException("Cannot reschedule to a date in the past")

    async def apply(self, appointment_id: UUID, values: dict[str, Any]) -> dict[str, Any]:
        """Write column values to an appointment inside the caller's transaction."""
        result = await self.db.execute(
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**values)
            .returning(appointments)
        )
        return row_to_dict(result.fetchone())

    async def set_state(
        self,
        appointment_id: UUID,
        target: AppointmentState | str,
        caller: Caller,
        observations: str | None = None,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new state.

        Args:
            appointment_id: Appointment ID
            target: Target state
            caller: Clinician or admin making the change
            observations: Optional note. Stored as the non-attendance reason
                for ``no_show`` and as the appointment notes otherwise.

        Returns:
            Updated appointment

        Raises:
            ValidationException: If target is unknown or is ``rescheduled``
            NotFoundException: If appointment not found
            ForbiddenException: If caller cannot manage the appointment
            ConflictException: If the appointment is in a terminal state
        """
        try:
            target = AppointmentState(target)
        except ValueError:
            raise ValidationException(f"Unknown appointment state: {target}")

        if target is AppointmentState.RESCHEDULED:
            raise ValidationException("Use the reschedule operation to move an appointment")

        row = await self.store.fetch_row(appointment_id)
        ensure_can_manage(caller, row)
        previous = ensure_not_terminal(row)

        values = self.state_values(row, target)
        if observations:
            if target is AppointmentState.NO_SHOW:
                values["non_attendance_reason"] = observations
            else:
                values["notes"] = self.store.codec.encode(observations)

        async with atomic(self.db, "set_state"):
            updated = await self.apply(appointment_id, values)

        logger.info(
            "appointment_state_changed",
            appointment_id=str(appointment_id),
            previous_state=previous.value,
            new_state=target.value,
        )

        if previous is not target:
            self.audit.record_state_change(
                appointment_id, previous.value, target.value, caller.user_id, caller.role.value
            )
            self.store.publish(
                EventKind.STATE_CHANGED,
                updated,
                previous_state=previous.value,
                new_state=target.value,
            )

        return self.store.to_response(updated)

    async def reschedule_direct(
        self,
        appointment_id: UUID,
        new_date: datetime,
        caller: Caller,
        motive: str | None = None,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new date on a clinician's or admin's initiative.

        ``scheduled_at`` keeps the original date; the new one is stored in
        ``rescheduled_at``.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If caller cannot manage the appointment
            ConflictException: If terminal or if the new date is in the past
        """
        new_date = to_utc(new_date)
        row = await self.store.fetch_row(appointment_id)
        ensure_can_manage(caller, row)
        ensure_not_terminal(row)
        self.ensure_future(new_date)

        requested_by = RequestedBy.ADMIN if caller.is_admin else RequestedBy.DOCTOR
        values = self.reschedule_values(new_date, motive, requested_by, self.now())

        async with atomic(self.db, "reschedule_direct"):
            updated = await self.apply(appointment_id, values)

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            new_date=new_date.isoformat(),
            requested_by=requested_by.value,
        )
        self.audit.record_reschedule(
            appointment_id, new_date, motive, requested_by.value, caller.user_id
        )
        self.store.publish(EventKind.RESCHEDULED, updated, motive=motive)

        return self.store.to_response(updated)
