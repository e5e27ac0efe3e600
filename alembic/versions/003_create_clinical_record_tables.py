"""create clinical record and medical history tables

Revision ID: 003
Revises: 002
Create Date: 2026-03-04 14:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
TIMESTAMP = postgresql.TIMESTAMP(timezone=True)


def _id_column() -> sa.Column:
    return sa.Column("id", UUID, server_default=sa.text("gen_random_uuid()"), nullable=False)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, TIMESTAMP, server_default=sa.text("NOW()"), nullable=False)


def upgrade() -> None:
    """Create one-to-one appointment records, comorbidities and vaccinations."""
    op.create_table(
        "vital_signs",
        _id_column(),
        sa.Column("appointment_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("measured_at", TIMESTAMP, nullable=False),
        sa.Column("weight_kg", sa.Float(), nullable=True),
        sa.Column("height_m", sa.Float(), nullable=True),
        sa.Column("bmi", sa.Float(), nullable=True),
        sa.Column("waist_cm", sa.Float(), nullable=True),
        sa.Column("systolic_bp", sa.Integer(), nullable=True),
        sa.Column("diastolic_bp", sa.Integer(), nullable=True),
        sa.Column("glucose_mg_dl", sa.Float(), nullable=True),
        sa.Column("total_cholesterol", sa.Float(), nullable=True),
        sa.Column("ldl_cholesterol", sa.Float(), nullable=True),
        sa.Column("hdl_cholesterol", sa.Float(), nullable=True),
        sa.Column("triglycerides", sa.Float(), nullable=True),
        sa.Column("hba1c", sa.Float(), nullable=True),
        sa.Column("observations", sa.Text(), nullable=True),
        sa.Column("recorded_by", UUID, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("appointment_id", name="vital_signs_appointment_id_key"),
    )
    op.create_index("ix_vital_signs_patient_id", "vital_signs", ["patient_id"])

    op.create_table(
        "diagnoses",
        _id_column(),
        sa.Column("appointment_id", UUID, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("code", sa.String(20), nullable=True),
        sa.Column("diagnosed_by", UUID, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("appointment_id", name="diagnoses_appointment_id_key"),
    )

    op.create_table(
        "medication_plans",
        _id_column(),
        sa.Column("appointment_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("observations", sa.Text(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("appointment_id", name="medication_plans_appointment_id_key"),
    )
    op.create_index("ix_medication_plans_patient_id", "medication_plans", ["patient_id"])

    op.create_table(
        "medication_plan_items",
        _id_column(),
        sa.Column("plan_id", UUID, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("drug_id", sa.String(64), nullable=False),
        sa.Column("drug_name", sa.Text(), nullable=True),
        sa.Column("dosage", sa.Text(), nullable=True),
        sa.Column("frequency", sa.Text(), nullable=True),
        sa.Column("route", sa.String(50), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["plan_id"], ["medication_plans.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_medication_plan_items_plan_id", "medication_plan_items", ["plan_id"])

    op.create_table(
        "comorbidities",
        _id_column(),
        sa.Column("name", sa.String(200), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="comorbidities_name_key"),
    )

    op.create_table(
        "patient_comorbidities",
        _id_column(),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("comorbidity_id", UUID, nullable=False),
        sa.Column(
            "is_baseline_diagnosis", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("is_added_later", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("diagnosis_year", sa.Integer(), nullable=True),
        sa.Column(
            "receives_non_pharmacological",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column(
            "receives_pharmacological",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("years_affected", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["comorbidity_id"], ["comorbidities.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("patient_id", "comorbidity_id", name="unique_patient_comorbidity"),
    )
    op.create_index(
        "ix_patient_comorbidities_patient_id", "patient_comorbidities", ["patient_id"]
    )

    op.create_table(
        "vaccination_records",
        _id_column(),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("appointment_id", UUID, nullable=True),
        sa.Column("vaccine_name", sa.Text(), nullable=False),
        sa.Column("applied_on", sa.Date(), nullable=False),
        sa.Column("dose", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_vaccination_records_patient_id", "vaccination_records", ["patient_id"])


def downgrade() -> None:
    """Drop clinical record and medical history tables."""
    op.drop_table("vaccination_records")
    op.drop_table("patient_comorbidities")
    op.drop_table("comorbidities")
    op.drop_table("medication_plan_items")
    op.drop_table("medication_plans")
    op.drop_table("diagnoses")
    op.drop_table("vital_signs")
