"""Chat message schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class ChatMessageCreate(BaseModel):
    """Schema for sending a chat message.

    Patients name the doctor, doctors name the patient.
    """

    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    body: str = Field(..., min_length=1, max_length=4000)


class ChatMessageResponse(BaseModel):
    """Schema for chat message response."""

    id: UUID
    doctor_id: UUID
    patient_id: UUID
    sender_role: str
    body: str
    read_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ChatReadResponse(BaseModel):
    """Schema for marking a thread as read."""

    patient_id: UUID
    marked_read: int
