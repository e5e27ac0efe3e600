"""Doctor notification inbox table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from clinic_api.models.base import JSONType, metadata

doctor_notifications = Table(
    "doctor_notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("notification_type", String(50), nullable=False),
    Column("title", Text, nullable=False),
    Column("message", Text, nullable=False),
    Column("data", JSONType, nullable=True),
    Column("status", String(20), nullable=False, server_default="sent"),
    Column("sent_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("read_at", DateTime(timezone=True), nullable=True),
    CheckConstraint(
        "notification_type IN ('appointment_created', 'appointment_state_changed', "
        "'appointment_rescheduled', 'reschedule_requested', 'reschedule_resolved', "
        "'new_message')",
        name="doctor_notifications_type_check",
    ),
    CheckConstraint(
        "status IN ('sent', 'read', 'archived')",
        name="doctor_notifications_status_check",
    ),
    Index("idx_doctor_notifications_doctor_status", "doctor_id", "status"),
    Index("idx_doctor_notifications_sent_at", "sent_at"),
)
