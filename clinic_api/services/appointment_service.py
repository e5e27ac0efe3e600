"""Appointment store: creation, reads and access rules."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.core.codec import FieldCodec, get_field_codec
from clinic_api.core.exceptions import (
    ForbiddenException,
    NotFoundException,
)
from clinic_api.core.timeutils import Clock, row_to_dict, to_utc, utc_now
from clinic_api.database import atomic
from clinic_api.models.appointments import appointments, reschedule_requests
from clinic_api.schemas.appointments import (
    AppointmentCreate,
    AppointmentDetailResponse,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentState,
)
from clinic_api.schemas.events import AppointmentEvent, EventKind
from clinic_api.schemas.users import Caller
from clinic_api.services.clinical_record_service import ClinicalRecordService
from clinic_api.services.directory_service import DirectoryService
from clinic_api.services.notification_dispatcher import NotificationDispatcher

logger = structlog.get_logger(__name__)


def effective_state(row: dict[str, Any]) -> AppointmentState:
    """
    State of an appointment row.

    ``state`` is authoritative. Legacy rows without one fall back to the
    attendance flag.
    """
    if row.get("state"):
        return AppointmentState(row["state"])
    if row.get("attendance") is True:
        return AppointmentState.ATTENDED
    if row.get("attendance") is False:
        return AppointmentState.NO_SHOW
    return AppointmentState.PENDING


def ensure_can_view(caller: Caller, row: dict[str, Any]) -> None:
    """Allow the owning patient, the assigned doctor and admins."""
    if caller.is_admin:
        return
    if caller.is_patient and caller.patient_id == row["patient_id"]:
        return
    if caller.is_doctor and row["doctor_id"] in (None, caller.doctor_id):
        return
    raise ForbiddenException("Access denied to this appointment")


def ensure_can_manage(caller: Caller, row: dict[str, Any]) -> None:
    """Allow the assigned doctor and admins to change an appointment."""
    if caller.is_admin:
        return
    if caller.is_doctor and row["doctor_id"] in (None, caller.doctor_id):
        return
    raise ForbiddenException("Only the assigned doctor or an admin can change this appointment")


class AppointmentService:
    """Service for creating and reading appointments."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        codec: FieldCodec | None = None,
        now: Clock = utc_now,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.dispatcher = dispatcher
        self.codec = codec or get_field_codec()
        self.now = now

    async def fetch_row(self, appointment_id: UUID) -> dict[str, Any]:
        """
        Load an appointment row.

        Raises:
            NotFoundException: If appointment not found
        """
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        row = (await self.db.execute(stmt)).fetchone()
        if not row:
            raise NotFoundException("Appointment not found")
        return row_to_dict(row)

    def to_response(self, row: dict[str, Any]) -> AppointmentResponse:
        """Build the API view of a row with decoded text fields."""
        data = dict(row)
        data["state"] = effective_state(row)
        data["reason"] = self.codec.decode(row.get("reason"))
        data["notes"] = self.codec.decode(row.get("notes"))
        return AppointmentResponse.model_validate(data)

    async def create_appointment(
        self,
        data: AppointmentCreate,
        caller: Caller,
    ) -> AppointmentResponse:
        """
        Create a new pending appointment.

        Args:
            data: Appointment creation data
            caller: Authenticated clinician or admin

        Returns:
            Created appointment

        Raises:
            NotFoundException: If patient or doctor not found
        """
        doctor_id = data.doctor_id or caller.doctor_id
        directory = DirectoryService(self.db)

        if not await directory.get_patient(data.patient_id):
            raise NotFoundException("Patient not found")
        if doctor_id and not await directory.get_doctor(doctor_id):
            raise NotFoundException("Doctor not found")

        now = self.now()
        async with atomic(self.db, "create_appointment"):
            result = await self.db.execute(
                insert(appointments)
                .values(
                    patient_id=data.patient_id,
                    doctor_id=doctor_id,
                    scheduled_at=to_utc(data.scheduled_at),
                    reason=self.codec.encode(data.reason),
                    notes=self.codec.encode(data.notes),
                    is_first_consultation=data.is_first_consultation,
                    state=AppointmentState.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
                .returning(appointments)
            )
            row = row_to_dict(result.fetchone())

        logger.info(
            "appointment_created",
            appointment_id=str(row["id"]),
            patient_id=str(row["patient_id"]),
            doctor_id=str(doctor_id) if doctor_id else None,
        )
        self.publish(EventKind.CREATED, row)
        return self.to_response(row)

    async def get_appointment(
        self,
        appointment_id: UUID,
        caller: Caller,
    ) -> AppointmentDetailResponse:
        """
        Get appointment with its clinical records and pending reschedule request.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If caller doesn't have access
        """
        row = await self.fetch_row(appointment_id)
        ensure_can_view(caller, row)

        records = ClinicalRecordService(self.db, self.now)
        pending = await self.db.execute(
            select(reschedule_requests).where(
                reschedule_requests.c.appointment_id == appointment_id,
                reschedule_requests.c.status == "pending",
            )
        )
        pending_row = pending.fetchone()

        detail = self.to_response(row).model_dump()
        detail.update(
            vital_signs=await records.get_vital_signs(appointment_id),
            diagnosis=await records.get_diagnosis(appointment_id),
            medication_plan=await records.get_medication_plan(appointment_id),
            pending_reschedule_request=row_to_dict(pending_row) if pending_row else None,
        )
        return AppointmentDetailResponse.model_validate(detail)

    async def list_appointments(
        self,
        filters: AppointmentFilters,
        caller: Caller,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the caller.

        Doctors only see their own appointments and patients only their own.
        Free text search runs on decoded fields, so it is applied after the
        query and pagination follows it.
        """
        conditions = []

        if caller.is_doctor:
            conditions.append(appointments.c.doctor_id == caller.doctor_id)
        elif caller.is_patient:
            conditions.append(appointments.c.patient_id == caller.patient_id)
        elif filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.state:
            conditions.append(appointments.c.state == filters.state.value)

        if filters.from_date:
            conditions.append(appointments.c.scheduled_at >= to_utc(filters.from_date))

        if filters.to_date:
            conditions.append(appointments.c.scheduled_at <= to_utc(filters.to_date))

        where = and_(*conditions) if conditions else true()
        offset = (filters.page - 1) * filters.page_size
        stmt = select(appointments).where(where).order_by(appointments.c.scheduled_at.desc())

        if filters.search:
            needle = filters.search.strip().lower()
            result = await self.db.execute(stmt)
            matched = [
                item
                for item in (self.to_response(row_to_dict(row)) for row in result.fetchall())
                if needle in (item.reason or "").lower() or needle in (item.notes or "").lower()
            ]
            return AppointmentListResponse(
                total=len(matched),
                page=filters.page,
                page_size=filters.page_size,
                items=matched[offset : offset + filters.page_size],
            )

        count_stmt = select(func.count()).select_from(appointments).where(where)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        result = await self.db.execute(stmt.limit(filters.page_size).offset(offset))
        items = [self.to_response(row_to_dict(row)) for row in result.fetchall()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    def publish(self, kind: EventKind, row: dict[str, Any], **fields: Any) -> None:
        """Hand a committed change to the notification dispatcher."""
        if self.dispatcher is None:
            return
        self.dispatcher.publish(
            AppointmentEvent(
                kind=kind,
                patient_id=row["patient_id"],
                doctor_id=row["doctor_id"],
                appointment_id=row["id"],
                occurred_at=self.now(),
                scheduled_at=row.get("rescheduled_at") or row.get("scheduled_at"),
                **fields,
            )
        )
