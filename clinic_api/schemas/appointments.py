"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from clinic_api.schemas.common import PageInfo
from clinic_api.schemas.consultations import (
    DiagnosisResponse,
    MedicationPlanResponse,
    VitalSignsResponse,
)
from clinic_api.schemas.reschedule_requests import RescheduleRequestResponse


class AppointmentState(str, Enum):
    """Appointment state enumeration."""

    PENDING = "pending"
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({AppointmentState.ATTENDED, AppointmentState.CANCELLED})


class RequestedBy(str, Enum):
    """Who asked for a reschedule."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class AppointmentCreate(BaseModel):
    """Schema for creating a new appointment."""

    patient_id: UUID
    doctor_id: UUID | None = None
    scheduled_at: datetime
    reason: str | None = Field(None, max_length=1000)
    notes: str | None = Field(None, max_length=4000)
    is_first_consultation: bool = False


class StateChangeRequest(BaseModel):
    """Schema for changing appointment state."""

    state: AppointmentState
    observations: str | None = Field(None, max_length=1000)


class DirectRescheduleRequest(BaseModel):
    """Schema for a clinician moving an appointment."""

    new_date: datetime = Field(..., validation_alias=AliasChoices("new_date", "newDate"))
    motive: str | None = Field(None, max_length=1000)


class AppointmentResponse(BaseModel):
    """Schema for appointment response. Reason and notes are decoded."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID | None = None
    scheduled_at: datetime
    rescheduled_at: datetime | None = None
    reason: str | None = None
    notes: str | None = None
    is_first_consultation: bool
    state: AppointmentState
    attendance: bool | None = None
    non_attendance_reason: str | None = None
    requested_by: RequestedBy | None = None
    reschedule_requested_at: datetime | None = None
    reschedule_motive: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AppointmentDetailResponse(AppointmentResponse):
    """Appointment with its clinical sub-records."""

    vital_signs: VitalSignsResponse | None = None
    diagnosis: DiagnosisResponse | None = None
    medication_plan: MedicationPlanResponse | None = None
    pending_reschedule_request: RescheduleRequestResponse | None = None


class AppointmentListResponse(PageInfo):
    """Schema for paginated appointment list response."""

    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    state: AppointmentState | None = None
    patient_id: UUID | None = None
    doctor_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    # Free text matched against decoded reason and notes
    search: str | None = Field(None, max_length=200)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
