"""Doctor-patient chat messages using SQLAlchemy Core."""

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

from clinic_api.models.base import metadata

chat_messages = Table(
    "chat_messages",
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
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("sender_role", String(20), nullable=False),
    Column("body", Text, nullable=False),
    Column("read_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("sender_role IN ('patient', 'doctor')", name="chat_messages_sender_check"),
    Index("idx_chat_messages_thread", "doctor_id", "patient_id", "created_at"),
)
