"""Clinical sub-records attached one-to-one to an appointment."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    func,
    true,
)

from clinic_api.models.base import metadata

vital_signs = Table(
    "vital_signs",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("measured_at", DateTime(timezone=True), nullable=False),
    Column("weight_kg", Float),
    Column("height_m", Float),
    # Derived from weight and height
    Column("bmi", Float),
    Column("waist_cm", Float),
    Column("systolic_bp", Integer),
    Column("diastolic_bp", Integer),
    Column("glucose_mg_dl", Float),
    Column("total_cholesterol", Float),
    Column("ldl_cholesterol", Float),
    Column("hdl_cholesterol", Float),
    Column("triglycerides", Float),
    Column("hba1c", Float),
    Column("observations", Text),
    Column("recorded_by", Uuid),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

diagnoses = Table(
    "diagnoses",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column("description", Text, nullable=False),
    Column("code", String(20)),
    Column("diagnosed_by", Uuid),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

medication_plans = Table(
    "medication_plans",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("observations", Text),
    Column("start_date", Date),
    Column("end_date", Date),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

medication_plan_items = Table(
    "medication_plan_items",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "plan_id",
        Uuid,
        ForeignKey("medication_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("position", Integer, nullable=False),
    # Catalog reference, the catalog itself is managed elsewhere
    Column("drug_id", String(64), nullable=False),
    Column("drug_name", Text),
    Column("dosage", Text),
    Column("frequency", Text),
    Column("route", String(50)),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
