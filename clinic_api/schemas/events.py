"""Lifecycle events handed to the notification dispatcher after commit."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class EventKind(str, Enum):
    """Closed set of events the dispatcher fans out."""

    CREATED = "created"
    STATE_CHANGED = "state-changed"
    RESCHEDULED = "rescheduled"
    RESCHEDULE_REQUESTED = "reschedule-requested"
    RESCHEDULE_RESOLVED = "reschedule-resolved"
    NEW_MESSAGE = "new-message"


class Audience(str, Enum):
    """Recipient groups of an event."""

    PATIENT = "patient"
    CLINICIAN = "clinician"
    ADMIN = "admin"


class AppointmentEvent(BaseModel):
    """A committed change that other parties must hear about."""

    kind: EventKind
    patient_id: UUID
    doctor_id: UUID | None = None
    appointment_id: UUID | None = None
    occurred_at: datetime
    # state-changed
    previous_state: str | None = None
    new_state: str | None = None
    # created, rescheduled, reschedule-resolved
    scheduled_at: datetime | None = None
    # reschedule-requested, rescheduled
    motive: str | None = None
    # reschedule-requested, reschedule-resolved
    request_id: UUID | None = None
    decision: str | None = None
    doctor_response: str | None = None
    # new-message
    preview: str | None = None
