"""Upserts of the one-to-one clinical sub-records of an appointment."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.core.exceptions import ValidationException
from clinic_api.core.timeutils import Clock, row_to_dict, to_utc, utc_now
from clinic_api.database import dialect_insert
from clinic_api.models.consultations import (
    diagnoses,
    medication_plan_items,
    medication_plans,
    vital_signs,
)
from clinic_api.schemas.consultations import (
    VITAL_MEASUREMENTS,
    DiagnosisPayload,
    MedicationPlanPayload,
    VitalSignsPayload,
)

logger = structlog.get_logger(__name__)

# Columns never overwritten when an existing record is updated
_IMMUTABLE_COLUMNS = frozenset({"id", "appointment_id", "created_at"})


def compute_bmi(weight_kg: float | None, height_m: float | None) -> float | None:
    """
    Body mass index rounded to two decimals.

    Args:
        weight_kg: Weight in kilograms
        height_m: Height in meters

    Returns:
        BMI, or None unless both measurements are present and height is positive
    """
    if weight_kg is None or height_m is None or height_m <= 0:
        return None
    return round(weight_kg / (height_m**2), 2)


class ClinicalRecordService:
    """
    Write vital signs, diagnosis and medication plan for an appointment.

    Every write is an ``INSERT ... ON CONFLICT (appointment_id) DO UPDATE`` so a
    repeated step updates the existing record instead of adding another one.
    Methods do not commit; callers own the transaction.
    """

    def __init__(self, db: AsyncSession, now: Clock = utc_now):
        """Initialize service with database session and clock."""
        self.db = db
        self.now = now

    async def upsert_vital_signs(
        self,
        appointment: dict[str, Any],
        payload: VitalSignsPayload,
        recorded_by: UUID | None,
    ) -> dict[str, Any] | None:
        """
        Create or replace the vital signs of an appointment.

        Args:
            appointment: Appointment row
            payload: Measurements
            recorded_by: User who took the measurements

        Returns:
            Stored vital signs, or None when the payload has no measurement
        """
        if not payload.has_measurements():
            logger.info("vital_signs_skipped_empty", appointment_id=str(appointment["id"]))
            return None

        now = self.now()
        values = {name: getattr(payload, name) for name in VITAL_MEASUREMENTS}
        values.update(
            appointment_id=appointment["id"],
            patient_id=appointment["patient_id"],
            measured_at=to_utc(payload.measured_at) or appointment["scheduled_at"],
            bmi=compute_bmi(payload.weight_kg, payload.height_m),
            observations=payload.observations,
            recorded_by=recorded_by,
            created_at=now,
            updated_at=now,
        )
        return await self._upsert(vital_signs, values)

    async def upsert_diagnosis(
        self,
        appointment_id: UUID,
        payload: DiagnosisPayload,
        diagnosed_by: UUID | None,
    ) -> dict[str, Any]:
        """Create or replace the diagnosis of an appointment."""
        now = self.now()
        values = {
            "appointment_id": appointment_id,
            "description": payload.description,
            "code": payload.code,
            "diagnosed_by": diagnosed_by,
            "created_at": now,
            "updated_at": now,
        }
        return await self._upsert(diagnoses, values)

    async def upsert_medication_plan(
        self,
        appointment: dict[str, Any],
        payload: MedicationPlanPayload,
    ) -> dict[str, Any]:
        """
        Create or replace the medication plan of an appointment.

        When ``items`` is supplied it replaces the stored list. Items without
        a drug reference are skipped.

        Raises:
            ValidationException: If the plan has neither observations nor items
        """
        if not (payload.observations and payload.observations.strip()) and not payload.items:
            raise ValidationException("A medication plan needs observations or items")

        now = self.now()
        values = {
            "appointment_id": appointment["id"],
            "patient_id": appointment["patient_id"],
            "observations": payload.observations,
            "start_date": payload.start_date,
            "end_date": payload.end_date,
            "is_active": payload.is_active,
            "created_at": now,
            "updated_at": now,
        }
        plan = await self._upsert(medication_plans, values)

        if payload.items is not None:
            await self.db.execute(
                delete(medication_plan_items).where(medication_plan_items.c.plan_id == plan["id"])
            )
            rows = []
            for item in payload.items:
                if not item.drug_id:
                    logger.warning(
                        "medication_item_skipped",
                        appointment_id=str(appointment["id"]),
                        reason="missing drug reference",
                    )
                    continue
                rows.append(
                    {
                        "plan_id": plan["id"],
                        "position": len(rows),
                        "drug_id": item.drug_id,
                        "drug_name": item.drug_name,
                        "dosage": item.dosage,
                        "frequency": item.frequency,
                        "route": item.route,
                        "created_at": now,
                    }
                )
            if rows:
                await self.db.execute(insert(medication_plan_items), rows)

        plan["items"] = await self._plan_items(plan["id"])
        return plan

    async def get_vital_signs(self, appointment_id: UUID) -> dict[str, Any] | None:
        """Get the vital signs of an appointment."""
        return await self._get_one(vital_signs, appointment_id)

    async def get_diagnosis(self, appointment_id: UUID) -> dict[str, Any] | None:
        """Get the diagnosis of an appointment."""
        return await self._get_one(diagnoses, appointment_id)

    async def get_medication_plan(self, appointment_id: UUID) -> dict[str, Any] | None:
        """Get the medication plan of an appointment with its items."""
        plan = await self._get_one(medication_plans, appointment_id)
        if plan:
            plan["items"] = await self._plan_items(plan["id"])
        return plan

    async def _upsert(self, table: Any, values: dict[str, Any]) -> dict[str, Any]:
        """Insert a record keyed by appointment, updating it on conflict."""
        stmt = dialect_insert(self.db, table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.appointment_id],
            set_={
                name: stmt.excluded[name] for name in values if name not in _IMMUTABLE_COLUMNS
            },
        ).returning(table)

        result = await self.db.execute(stmt)
        return row_to_dict(result.fetchone())

    async def _get_one(self, table: Any, appointment_id: UUID) -> dict[str, Any] | None:
        stmt = select(table).where(table.c.appointment_id == appointment_id)
        row = (await self.db.execute(stmt)).fetchone()
        return row_to_dict(row) if row else None

    async def _plan_items(self, plan_id: UUID) -> list[dict[str, Any]]:
        result = await self.db.execute(
            select(medication_plan_items)
            .where(medication_plan_items.c.plan_id == plan_id)
            .order_by(medication_plan_items.c.position)
        )
        return [row_to_dict(row) for row in result.fetchall()]
