"""Appointments and reschedule request tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
    false,
    func,
    text,
)

from clinic_api.models.base import metadata

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    ),
    # Appointment details
    Column("scheduled_at", DateTime(timezone=True), nullable=False, index=True),
    Column("rescheduled_at", DateTime(timezone=True), nullable=True),
    # Encoded through the field codec
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    Column("is_first_consultation", Boolean, nullable=False, server_default=false()),
    # Status management
    Column("state", String(20), nullable=False, server_default="pending"),
    # Legacy mirror of the state, kept for older clients
    Column("attendance", Boolean, nullable=True),
    Column("non_attendance_reason", Text, nullable=True),
    # Reschedule bookkeeping
    Column("requested_by", String(20), nullable=True),
    Column("reschedule_requested_at", DateTime(timezone=True), nullable=True),
    Column("reschedule_motive", Text, nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "state IN ('pending', 'attended', 'no_show', 'rescheduled', 'cancelled')",
        name="appointments_state_check",
    ),
    CheckConstraint(
        "requested_by IS NULL OR requested_by IN ('patient', 'doctor', 'admin')",
        name="appointments_requested_by_check",
    ),
)

# Patient-initiated reschedule requests awaiting a clinician decision
reschedule_requests = Table(
    "reschedule_requests",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("motive", Text, nullable=False),
    # Patients never propose a date, the clinician chooses it on approval
    Column("requested_date", DateTime(timezone=True), nullable=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("doctor_response", Text, nullable=True),
    Column("responded_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "status IN ('pending', 'approved', 'rejected', 'cancelled')",
        name="reschedule_requests_status_check",
    ),
    # At most one pending request per appointment
    Index(
        "uq_reschedule_requests_pending",
        "appointment_id",
        unique=True,
        postgresql_where=text("status = 'pending'"),
        sqlite_where=text("status = 'pending'"),
    ),
)
