"""Push token and doctor notification schemas."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from clinic_api.schemas.common import PageInfo


class PushTokenRegister(BaseModel):
    """Schema for registering FCM token."""

    fcm_token: str = Field(..., description="Firebase Cloud Messaging token")
    platform: str = Field(
        ...,
        description="Platform type",
        pattern="^(android|ios|web)$",
    )


class PushTokenResponse(BaseModel):
    """Schema for push token response."""

    id: UUID
    user_id: UUID
    fcm_token: str
    platform: str
    is_active: bool
    last_used_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationStatus(str, Enum):
    """Doctor notification status enumeration."""

    SENT = "sent"
    READ = "read"
    ARCHIVED = "archived"


class DoctorNotificationResponse(BaseModel):
    """Schema for a doctor inbox entry."""

    id: UUID
    doctor_id: UUID
    patient_id: UUID | None = None
    appointment_id: UUID | None = None
    notification_type: str
    title: str
    message: str
    data: dict[str, Any] | None = None
    status: NotificationStatus
    sent_at: datetime
    read_at: datetime | None = None

    model_config = {"from_attributes": True}


class DoctorNotificationList(PageInfo):
    """Schema for a page of the doctor inbox."""

    unread: int
    items: list[DoctorNotificationResponse]
