"""Read-only lookups of patients, doctors and their assignments."""

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.config import settings
from clinic_api.core.redis_client import CacheManager
from clinic_api.models.doctors import doctor_patients, doctors
from clinic_api.models.patients import patients
from clinic_api.schemas.users import PersonSummary

logger = structlog.get_logger(__name__)


class DirectoryService:
    """Resolve patient and doctor records, optionally through the cache."""

    def __init__(self, db: AsyncSession, cache: CacheManager | None = None):
        """Initialize service with database session and optional cache."""
        self.db = db
        self.cache = cache

    async def get_patient(self, patient_id: UUID) -> PersonSummary | None:
        """Get a patient by ID."""
        return await self._lookup("patient", patient_id)

    async def get_doctor(self, doctor_id: UUID) -> PersonSummary | None:
        """Get a doctor by ID."""
        return await self._lookup("doctor", doctor_id)

    async def get_patient_by_user(self, user_id: UUID) -> PersonSummary | None:
        """Get the patient record linked to a user account."""
        stmt = select(patients.c.id, patients.c.user_id, patients.c.full_name).where(
            patients.c.user_id == user_id
        )
        row = (await self.db.execute(stmt)).fetchone()
        return PersonSummary.model_validate(dict(row._mapping)) if row else None

    async def get_doctor_by_user(self, user_id: UUID) -> PersonSummary | None:
        """Get the doctor record linked to a user account."""
        stmt = select(doctors.c.id, doctors.c.user_id, doctors.c.full_name).where(
            doctors.c.user_id == user_id
        )
        row = (await self.db.execute(stmt)).fetchone()
        return PersonSummary.model_validate(dict(row._mapping)) if row else None

    async def is_assigned(self, doctor_id: UUID, patient_id: UUID) -> bool:
        """Check whether a doctor follows a patient."""
        stmt = select(doctor_patients.c.id).where(
            doctor_patients.c.doctor_id == doctor_id,
            doctor_patients.c.patient_id == patient_id,
        )
        return (await self.db.execute(stmt)).first() is not None

    async def _lookup(self, kind: str, record_id: UUID) -> PersonSummary | None:
        """Look up a person, serving from the cache when possible."""
        cache_key = f"directory:{kind}:{record_id}"

        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                logger.debug("directory_cache_hit", kind=kind, record_id=str(record_id))
                return PersonSummary.model_validate(cached)

        table = patients if kind == "patient" else doctors
        stmt = select(table.c.id, table.c.user_id, table.c.full_name).where(
            table.c.id == record_id
        )
        row = (await self.db.execute(stmt)).fetchone()
        if not row:
            return None

        person = PersonSummary.model_validate(dict(row._mapping))
        if self.cache:
            self.cache.set_json(
                cache_key,
                person.model_dump(mode="json"),
                ttl=settings.directory_cache_ttl,
            )
        return person
