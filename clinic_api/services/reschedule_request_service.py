"""Patient reschedule requests and the clinician decision on them."""

from datetime import timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.config import settings
from clinic_api.core.audit import AuditSink
from clinic_api.core.codec import FieldCodec
from clinic_api.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from clinic_api.core.timeutils import Clock, row_to_dict, to_utc, utc_now
from clinic_api.database import atomic
from clinic_api.models.appointments import appointments, reschedule_requests
from clinic_api.models.doctors import doctor_patients
from clinic_api.schemas.appointments import RequestedBy
from clinic_api.schemas.events import EventKind
from clinic_api.schemas.reschedule_requests import (
    RescheduleAction,
    RescheduleDecision,
    RescheduleRequestFilters,
    RescheduleRequestResponse,
    RescheduleRequestStatus,
)
from clinic_api.schemas.users import Caller
from clinic_api.services.appointment_service import ensure_can_manage, ensure_can_view
from clinic_api.services.notification_dispatcher import NotificationDispatcher
from clinic_api.services.state_transition_service import (
    StateTransitionService,
    ensure_not_terminal,
)

logger = structlog.get_logger(__name__)


class RescheduleRequestService:
    """Service for the patient request / clinician decision workflow."""

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
        self.now = now

    async def request_reschedule(
        self,
        appointment_id: UUID,
        caller: Caller,
        motive: str,
    ) -> RescheduleRequestResponse:
        """
        Ask to move an appointment. The clinician picks the new date on approval.

        Args:
            appointment_id: Appointment ID
            caller: Patient owning the appointment
            motive: Why the patient needs another date

        Returns:
            Created pending request

        Raises:
            ValidationException: If motive is blank
            NotFoundException: If appointment not found
            ForbiddenException: If caller does not own the appointment
            ConflictException: If terminal, too close to the appointment, or
                a pending request already exists
        """
        motive = (motive or "").strip()
        if not motive:
            raise ValidationException("A motive is required to request a reschedule")

        row = await self.store.fetch_row(appointment_id)
        if caller.patient_id is None or row["patient_id"] != caller.patient_id:
            raise ForbiddenException("You can only reschedule your own appointments")

        ensure_not_terminal(row)

        now = self.now()
        effective_date = row["rescheduled_at"] or row["scheduled_at"]
        lead = timedelta(minutes=settings.reschedule_min_lead_minutes)
        if now > effective_date - lead:
            raise ConflictException(
                "Reschedule requests must respect the minimum lead time before the appointment"
            )

        if await self._pending_request(appointment_id):
            raise ConflictException("A reschedule request is already pending for this appointment")

        async with atomic(self.db, "request_reschedule"):
            try:
                result = await self.db.execute(
                    insert(reschedule_requests)
                    .values(
                        appointment_id=appointment_id,
                        patient_id=row["patient_id"],
                        motive=motive,
                        requested_date=None,
                        status=RescheduleRequestStatus.PENDING.value,
                        created_at=now,
                        updated_at=now,
                    )
                    .returning(reschedule_requests)
                )
            except IntegrityError:
                raise ConflictException(
                    "A reschedule request is already pending for this appointment"
                )
            request = row_to_dict(result.fetchone())

            updated = await self.transitions.apply(
                appointment_id,
                {
                    "requested_by": RequestedBy.PATIENT.value,
                    "reschedule_requested_at": now,
                    "updated_at": now,
                },
            )

        logger.info(
            "reschedule_request_created",
            appointment_id=str(appointment_id),
            request_id=str(request["id"]),
        )
        self.store.publish(
            EventKind.RESCHEDULE_REQUESTED,
            updated,
            motive=motive,
            request_id=request["id"],
        )
        return RescheduleRequestResponse.model_validate(request)

    async def respond(
        self,
        appointment_id: UUID,
        request_id: UUID,
        decision: RescheduleDecision,
        caller: Caller,
    ) -> RescheduleRequestResponse:
        """
        Approve or reject a pending request.

        Approval reschedules the appointment to ``new_date`` on the patient's
        behalf, carrying over the request motive and creation time.

        Raises:
            NotFoundException: If no pending request matches
            ForbiddenException: If caller cannot manage the appointment
            ValidationException: If approving without a new date
            ConflictException: If the appointment is terminal or the date is past
        """
        request = await self._pending_request(appointment_id, request_id)
        if request is None:
            raise NotFoundException("Pending reschedule request not found")

        row = await self.store.fetch_row(appointment_id)
        ensure_can_manage(caller, row)

        approve = decision.action is RescheduleAction.APPROVE
        new_date = to_utc(decision.new_date)
        if approve:
            if new_date is None:
                raise ValidationException("A new date is required to approve a reschedule")
            ensure_not_terminal(row)
            self.transitions.ensure_future(new_date)

        status = RescheduleRequestStatus.APPROVED if approve else RescheduleRequestStatus.REJECTED
        now = self.now()

        async with atomic(self.db, "respond_reschedule_request"):
            if approve:
                row = await self.transitions.apply(
                    appointment_id,
                    self.transitions.reschedule_values(
                        new_date,
                        request["motive"],
                        RequestedBy.PATIENT,
                        request["created_at"],
                    ),
                )

            result = await self.db.execute(
                update(reschedule_requests)
                .where(
                    reschedule_requests.c.id == request_id,
                    reschedule_requests.c.status == RescheduleRequestStatus.PENDING.value,
                )
                .values(
                    status=status.value,
                    doctor_response=decision.doctor_response,
                    responded_at=now,
                    updated_at=now,
                )
                .returning(reschedule_requests)
            )
            resolved = result.fetchone()
            if resolved is None:
                raise ConflictException("Reschedule request was already resolved")

        logger.info(
            "reschedule_request_resolved",
            appointment_id=str(appointment_id),
            request_id=str(request_id),
            decision=status.value,
        )
        if approve:
            self.transitions.audit.record_reschedule(
                appointment_id,
                new_date,
                request["motive"],
                RequestedBy.PATIENT.value,
                caller.user_id,
            )
        self.store.publish(
            EventKind.RESCHEDULE_RESOLVED,
            row,
            request_id=request_id,
            decision=status.value,
            doctor_response=decision.doctor_response,
            motive=request["motive"],
        )
        return RescheduleRequestResponse.model_validate(row_to_dict(resolved))

    async def cancel(
        self,
        appointment_id: UUID,
        request_id: UUID,
        caller: Caller,
    ) -> RescheduleRequestResponse:
        """
        Withdraw a pending request. Only the patient who made it may do so.

        Raises:
            NotFoundException: If request not found
            ForbiddenException: If caller did not make the request
            ConflictException: If the request is no longer pending
        """
        result = await self.db.execute(
            select(reschedule_requests).where(
                reschedule_requests.c.id == request_id,
                reschedule_requests.c.appointment_id == appointment_id,
            )
        )
        request = result.fetchone()
        if request is None:
            raise NotFoundException("Reschedule request not found")
        if caller.patient_id is None or request.patient_id != caller.patient_id:
            raise ForbiddenException("You can only cancel your own reschedule requests")
        if request.status != RescheduleRequestStatus.PENDING.value:
            raise ConflictException("Only pending reschedule requests can be cancelled")

        now = self.now()
        async with atomic(self.db, "cancel_reschedule_request"):
            result = await self.db.execute(
                update(reschedule_requests)
                .where(reschedule_requests.c.id == request_id)
                .values(
                    status=RescheduleRequestStatus.CANCELLED.value,
                    updated_at=now,
                )
                .returning(reschedule_requests)
            )
            cancelled = row_to_dict(result.fetchone())

        logger.info(
            "reschedule_request_cancelled",
            appointment_id=str(appointment_id),
            request_id=str(request_id),
        )
        return RescheduleRequestResponse.model_validate(cancelled)

    async def list_for_appointment(
        self,
        appointment_id: UUID,
        caller: Caller,
    ) -> list[RescheduleRequestResponse]:
        """List every request made for an appointment, newest first."""
        row = await self.store.fetch_row(appointment_id)
        ensure_can_view(caller, row)

        result = await self.db.execute(
            select(reschedule_requests)
            .where(reschedule_requests.c.appointment_id == appointment_id)
            .order_by(reschedule_requests.c.created_at.desc())
        )
        return [
            RescheduleRequestResponse.model_validate(row_to_dict(r)) for r in result.fetchall()
        ]

    async def list_requests(
        self,
        filters: RescheduleRequestFilters,
        caller: Caller,
    ) -> list[RescheduleRequestResponse]:
        """
        List requests visible to the caller.

        Patients see their own requests. Doctors see requests on their
        appointments and on patients assigned to them.
        """
        stmt = select(reschedule_requests).join(
            appointments, appointments.c.id == reschedule_requests.c.appointment_id
        )

        if caller.is_patient:
            stmt = stmt.where(reschedule_requests.c.patient_id == caller.patient_id)
        elif caller.is_doctor:
            assigned = select(doctor_patients.c.patient_id).where(
                doctor_patients.c.doctor_id == caller.doctor_id
            )
            stmt = stmt.where(
                or_(
                    appointments.c.doctor_id == caller.doctor_id,
                    reschedule_requests.c.patient_id.in_(assigned),
                )
            )
        elif filters.doctor_id:
            stmt = stmt.where(appointments.c.doctor_id == filters.doctor_id)

        if filters.status:
            stmt = stmt.where(reschedule_requests.c.status == filters.status.value)
        if filters.patient_id:
            stmt = stmt.where(reschedule_requests.c.patient_id == filters.patient_id)

        result = await self.db.execute(stmt.order_by(reschedule_requests.c.created_at.desc()))
        return [
            RescheduleRequestResponse.model_validate(row_to_dict(r)) for r in result.fetchall()
        ]

    async def _pending_request(
        self,
        appointment_id: UUID,
        request_id: UUID | None = None,
    ) -> dict[str, Any] | None:
        stmt = select(reschedule_requests).where(
            reschedule_requests.c.appointment_id == appointment_id,
            reschedule_requests.c.status == RescheduleRequestStatus.PENDING.value,
        )
        if request_id is not None:
            stmt = stmt.where(reschedule_requests.c.id == request_id)
        row = (await self.db.execute(stmt)).fetchone()
        return row_to_dict(row) if row else None
