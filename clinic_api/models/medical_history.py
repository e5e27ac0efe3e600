"""Comorbidity catalog, patient comorbidities and vaccination records."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    func,
)

from clinic_api.models.base import metadata

comorbidities = Table(
    "comorbidities",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", String(200), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

patient_comorbidities = Table(
    "patient_comorbidities",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "comorbidity_id",
        Uuid,
        ForeignKey("comorbidities.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("is_baseline_diagnosis", Boolean, nullable=False, server_default=false()),
    Column("is_added_later", Boolean, nullable=False, server_default=false()),
    Column("diagnosis_year", Integer),
    Column("receives_non_pharmacological", Boolean, nullable=False, server_default=false()),
    Column("receives_pharmacological", Boolean, nullable=False, server_default=false()),
    Column("years_affected", Integer),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    UniqueConstraint("patient_id", "comorbidity_id", name="unique_patient_comorbidity"),
)

vaccination_records = Table(
    "vaccination_records",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("vaccine_name", Text, nullable=False),
    Column("applied_on", Date, nullable=False),
    Column("dose", String(50)),
    Column("notes", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
