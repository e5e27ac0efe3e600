"""Caller identity schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class UserRole(str, Enum):
    """User role enumeration."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Caller(BaseModel):
    """Authenticated caller resolved from the bearer token."""

    user_id: UUID
    role: UserRole
    full_name: str | None = None
    # Set when the account is linked to a patient record
    patient_id: UUID | None = None
    # Set when the account is linked to a doctor record
    doctor_id: UUID | None = None

    @property
    def is_admin(self) -> bool:
        """Whether the caller is an administrator."""
        return self.role == UserRole.ADMIN

    @property
    def is_doctor(self) -> bool:
        """Whether the caller is a clinician."""
        return self.role == UserRole.DOCTOR

    @property
    def is_patient(self) -> bool:
        """Whether the caller is a patient."""
        return self.role == UserRole.PATIENT


class PersonSummary(BaseModel):
    """Directory entry for a patient or doctor."""

    id: UUID
    user_id: UUID | None = None
    full_name: str | None = None
