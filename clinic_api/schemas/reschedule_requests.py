"""Reschedule request schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, field_validator


class RescheduleRequestStatus(str, Enum):
    """Reschedule request status enumeration."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RescheduleAction(str, Enum):
    """Clinician decision on a request."""

    APPROVE = "approve"
    REJECT = "reject"


class RescheduleRequestCreate(BaseModel):
    """Schema for a patient asking to move an appointment."""

    motive: str = Field(..., max_length=1000)

    @field_validator("motive")
    @classmethod
    def validate_motive(cls, v: str) -> str:
        """Reject blank motives."""
        if not v.strip():
            raise ValueError("A motive is required to request a reschedule")
        return v.strip()


class RescheduleDecision(BaseModel):
    """Schema for a clinician answering a request."""

    action: RescheduleAction
    doctor_response: str | None = Field(
        None,
        max_length=1000,
        validation_alias=AliasChoices("doctor_response", "doctorResponse"),
    )
    new_date: datetime | None = Field(
        None,
        validation_alias=AliasChoices("new_date", "newDate"),
    )


class RescheduleRequestResponse(BaseModel):
    """Schema for reschedule request response."""

    id: UUID
    appointment_id: UUID
    patient_id: UUID
    motive: str
    requested_date: datetime | None = None
    status: RescheduleRequestStatus
    doctor_response: str | None = None
    responded_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RescheduleRequestFilters(BaseModel):
    """Schema for reschedule request filtering."""

    status: RescheduleRequestStatus | None = None
    patient_id: UUID | None = None
    doctor_id: UUID | None = None
