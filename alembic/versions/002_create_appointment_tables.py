"""create appointments and reschedule_requests tables

Revision ID: 002
Revises: 001
Create Date: 2026-03-02 09:30:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create appointments with their lifecycle columns and reschedule requests."""
    op.create_table(
        "appointments",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("scheduled_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("rescheduled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "is_first_consultation",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("state", sa.String(20), server_default="pending", nullable=False),
        sa.Column("attendance", sa.Boolean(), nullable=True),
        sa.Column("non_attendance_reason", sa.Text(), nullable=True),
        sa.Column("requested_by", sa.String(20), nullable=True),
        sa.Column("reschedule_requested_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("reschedule_motive", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "state IN ('pending', 'attended', 'no_show', 'rescheduled', 'cancelled')",
            name="appointments_state_check",
        ),
        sa.CheckConstraint(
            "requested_by IS NULL OR requested_by IN ('patient', 'doctor', 'admin')",
            name="appointments_requested_by_check",
        ),
    )
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"])
    op.create_index("ix_appointments_scheduled_at", "appointments", ["scheduled_at"])

    op.create_table(
        "reschedule_requests",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("motive", sa.Text(), nullable=False),
        sa.Column("requested_date", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("doctor_response", sa.Text(), nullable=True),
        sa.Column("responded_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="reschedule_requests_status_check",
        ),
    )
    op.create_index(
        "ix_reschedule_requests_appointment_id", "reschedule_requests", ["appointment_id"]
    )
    op.create_index("ix_reschedule_requests_patient_id", "reschedule_requests", ["patient_id"])

    # At most one pending request per appointment
    op.create_index(
        "uq_reschedule_requests_pending",
        "reschedule_requests",
        ["appointment_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    """Drop appointments and reschedule requests."""
    op.drop_index("uq_reschedule_requests_pending", table_name="reschedule_requests")
    op.drop_table("reschedule_requests")
    op.drop_table("appointments")
