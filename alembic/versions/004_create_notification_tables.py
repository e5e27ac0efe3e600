"""create doctor_notifications and chat_messages tables

Revision ID: 004
Revises: 003
Create Date: 2026-03-06 11:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the doctor inbox and chat message tables."""
    op.create_table(
        "doctor_notifications",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("notification_type", sa.String(50), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", sa.String(20), server_default="sent", nullable=False),
        sa.Column(
            "sent_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column("read_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "notification_type IN ('appointment_created', 'appointment_state_changed', "
            "'appointment_rescheduled', 'reschedule_requested', 'reschedule_resolved', "
            "'new_message')",
            name="doctor_notifications_type_check",
        ),
        sa.CheckConstraint(
            "status IN ('sent', 'read', 'archived')",
            name="doctor_notifications_status_check",
        ),
    )
    op.create_index(
        "idx_doctor_notifications_doctor_status",
        "doctor_notifications",
        ["doctor_id", "status"],
    )
    op.create_index("idx_doctor_notifications_sent_at", "doctor_notifications", ["sent_at"])

    op.create_table(
        "chat_messages",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender_role", sa.String(20), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("read_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "sender_role IN ('patient', 'doctor')", name="chat_messages_sender_check"
        ),
    )
    op.create_index(
        "idx_chat_messages_thread",
        "chat_messages",
        ["doctor_id", "patient_id", "created_at"],
    )


def downgrade() -> None:
    """Drop the doctor inbox and chat message tables."""
    op.drop_index("idx_chat_messages_thread", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("idx_doctor_notifications_sent_at", table_name="doctor_notifications")
    op.drop_index("idx_doctor_notifications_doctor_status", table_name="doctor_notifications")
    op.drop_table("doctor_notifications")
