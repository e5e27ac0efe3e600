"""Patient model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from clinic_api.models.base import metadata

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Login account, absent for patients registered by staff only
    Column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
        index=True,
    ),
    Column("full_name", Text, nullable=False),
    Column("email", Text),
    Column("phone", String(20)),
    Column("date_of_birth", Date),
    Column("gender", String(20)),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
