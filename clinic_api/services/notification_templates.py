"""Notification text for every lifecycle event and audience."""

from dataclasses import dataclass
from datetime import datetime
from typing import assert_never

from clinic_api.schemas.events import AppointmentEvent, Audience, EventKind

# Who hears about each kind of event
RECIPIENTS: dict[EventKind, tuple[Audience, ...]] = {
    EventKind.CREATED: (Audience.PATIENT, Audience.CLINICIAN, Audience.ADMIN),
    EventKind.STATE_CHANGED: (Audience.PATIENT, Audience.CLINICIAN, Audience.ADMIN),
    EventKind.RESCHEDULED: (Audience.PATIENT, Audience.CLINICIAN, Audience.ADMIN),
    EventKind.RESCHEDULE_REQUESTED: (Audience.CLINICIAN, Audience.ADMIN),
    EventKind.RESCHEDULE_RESOLVED: (Audience.PATIENT, Audience.ADMIN),
    EventKind.NEW_MESSAGE: (Audience.CLINICIAN,),
}

# Stored notification type per event kind
NOTIFICATION_TYPES: dict[EventKind, str] = {
    EventKind.CREATED: "appointment_created",
    EventKind.STATE_CHANGED: "appointment_state_changed",
    EventKind.RESCHEDULED: "appointment_rescheduled",
    EventKind.RESCHEDULE_REQUESTED: "reschedule_requested",
    EventKind.RESCHEDULE_RESOLVED: "reschedule_resolved",
    EventKind.NEW_MESSAGE: "new_message",
}

STATE_LABELS = {
    "pending": "pending",
    "attended": "attended",
    "no_show": "missed",
    "rescheduled": "rescheduled",
    "cancelled": "cancelled",
}


@dataclass
class TemplateContext:
    """Names and counters resolved by the dispatcher before rendering."""

    patient_name: str = "A patient"
    doctor_name: str = "your doctor"
    unread_count: int = 0


@dataclass
class RenderedNotification:
    """Text and data shared by the stored record, realtime event and push."""

    notification_type: str
    title: str
    message: str
    data: dict[str, str]


def new_message_text(patient_name: str, unread_count: int, preview: str | None) -> str:
    """Inbox text for a chat thread given its current unread count."""
    if unread_count <= 0:
        return f"{patient_name}: all messages read"
    if unread_count == 1:
        return f"{patient_name}: {preview or 'new message'}"
    return f"You have +{unread_count} new messages from {patient_name}"


def _when(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else "the scheduled date"


def _label(state: str | None) -> str:
    return STATE_LABELS.get(state or "", state or "unknown")


def _event_data(event: AppointmentEvent) -> dict[str, str]:
    """Flat string payload, as required by push providers."""
    data = {"type": event.kind.value, "patient_id": str(event.patient_id)}
    if event.appointment_id:
        data["appointment_id"] = str(event.appointment_id)
    if event.doctor_id:
        data["doctor_id"] = str(event.doctor_id)
    if event.request_id:
        data["request_id"] = str(event.request_id)
    if event.new_state:
        data["state"] = event.new_state
    if event.decision:
        data["decision"] = event.decision
    if event.scheduled_at:
        data["scheduled_at"] = event.scheduled_at.isoformat()
    if event.preview:
        data["preview"] = event.preview
    return data


def _render_text(
    event: AppointmentEvent, audience: Audience, ctx: TemplateContext
) -> tuple[str, str]:
    when = _when(event.scheduled_at)
    patient = ctx.patient_name
    doctor = ctx.doctor_name

    match event.kind:
        case EventKind.CREATED:
            if audience is Audience.PATIENT:
                return "Appointment scheduled", f"Your appointment with {doctor} is on {when}."
            if audience is Audience.CLINICIAN:
                return "New appointment", f"{patient} has an appointment on {when}."
            return "Appointment created", f"{patient} with {doctor} on {when}."

        case EventKind.STATE_CHANGED:
            new = _label(event.new_state)
            if audience is Audience.PATIENT:
                return "Appointment updated", f"Your appointment on {when} is now {new}."
            previous = _label(event.previous_state)
            return (
                "Appointment updated",
                f"Appointment of {patient} changed from {previous} to {new}.",
            )

        case EventKind.RESCHEDULED:
            motive = f" Motive: {event.motive}" if event.motive else ""
            if audience is Audience.PATIENT:
                return "Appointment rescheduled", f"Your appointment was moved to {when}.{motive}"
            return "Appointment rescheduled", f"Appointment of {patient} moved to {when}.{motive}"

        case EventKind.RESCHEDULE_REQUESTED:
            if audience is Audience.PATIENT:
                return "Reschedule requested", "Your reschedule request was sent."
            return (
                "Reschedule requested",
                f"{patient} asked to reschedule the appointment: {event.motive}",
            )

        case EventKind.RESCHEDULE_RESOLVED:
            approved = event.decision == "approved"
            if audience is Audience.PATIENT:
                if approved:
                    return "Reschedule approved", f"Your appointment was moved to {when}."
                reply = f" {event.doctor_response}" if event.doctor_response else ""
                return "Reschedule rejected", f"Your reschedule request was rejected.{reply}"
            return (
                "Reschedule request resolved",
                f"Reschedule request of {patient} was {event.decision}.",
            )

        case EventKind.NEW_MESSAGE:
            if audience is Audience.CLINICIAN:
                return "New message", new_message_text(patient, ctx.unread_count, event.preview)
            return "New message", f"New message from {doctor}."

        case _:
            assert_never(event.kind)


def render_notification(
    event: AppointmentEvent,
    audience: Audience,
    ctx: TemplateContext,
) -> RenderedNotification:
    """
    Render the notification for one audience of an event.

    Args:
        event: Committed lifecycle event
        audience: Recipient group
        ctx: Resolved names and counters

    Returns:
        Type, title, message and data payload
    """
    title, message = _render_text(event, audience, ctx)
    return RenderedNotification(
        notification_type=NOTIFICATION_TYPES[event.kind],
        title=title,
        message=message,
        data=_event_data(event),
    )
