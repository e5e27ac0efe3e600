"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.core.audit import AuditSink, get_audit_sink
from clinic_api.core.codec import FieldCodec, get_field_codec
from clinic_api.core.realtime import get_connection_manager
from clinic_api.core.redis_client import get_cache_manager
from clinic_api.core.security import decode_access_token
from clinic_api.database import AsyncSessionLocal, get_db
from clinic_api.models.users import users
from clinic_api.schemas.users import Caller, UserRole
from clinic_api.services.directory_service import DirectoryService
from clinic_api.services.notification_dispatcher import NotificationDispatcher
from clinic_api.services.push_service import PushService

# Security
security = HTTPBearer()

_dispatcher: NotificationDispatcher | None = None


def get_dispatcher() -> NotificationDispatcher:
    """Process-wide notification dispatcher, built on first use."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(
            session_factory=AsyncSessionLocal,
            realtime=get_connection_manager(),
            push=PushService(AsyncSessionLocal),
            cache=get_cache_manager(),
        )
    return _dispatcher


def user_id_from_token(token: str) -> UUID | None:
    """Decode a bearer token and return the user ID it was issued to."""
    payload = decode_access_token(token)
    if payload is None:
        return None

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        return None

    try:
        return UUID(user_id_str)
    except ValueError:
        return None


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    user_id = user_id_from_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """
    Get current user from database.

    Args:
        user_id: User ID from JWT token
        db: Database session

    Returns:
        User data from database

    Raises:
        HTTPException: If user not found or inactive
    """
    result = await db.execute(select(users).where(users.c.id == user_id))
    user = result.fetchone()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return dict(user._mapping)


async def resolve_caller(db: AsyncSession, user: dict) -> Caller:
    """Attach the patient or doctor record linked to a user account."""
    directory = DirectoryService(db)
    caller = Caller(
        user_id=user["id"],
        role=UserRole(user["role"]),
        full_name=user.get("full_name"),
    )

    if caller.is_patient:
        patient = await directory.get_patient_by_user(caller.user_id)
        caller.patient_id = patient.id if patient else None
    elif caller.is_doctor:
        doctor = await directory.get_doctor_by_user(caller.user_id)
        caller.doctor_id = doctor.id if doctor else None

    return caller


async def get_current_caller(
    user: Annotated[dict, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Caller:
    """Resolve the caller's role and linked patient/doctor record."""
    return await resolve_caller(db, user)


async def require_clinician_or_admin(
    caller: Annotated[Caller, Depends(get_current_caller)],
) -> Caller:
    """
    Dependency to ensure the caller is a doctor or an admin.

    Raises:
        HTTPException: If caller is a patient or a doctor without a doctor record
    """
    if caller.is_admin or (caller.is_doctor and caller.doctor_id):
        return caller
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Clinician or admin access required",
    )


async def require_patient(
    caller: Annotated[Caller, Depends(get_current_caller)],
) -> Caller:
    """
    Dependency to ensure the caller is a patient with a patient record.

    Raises:
        HTTPException: If caller is not a patient
    """
    if caller.is_patient and caller.patient_id:
        return caller
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Patient access required",
    )


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
CurrentCaller = Annotated[Caller, Depends(get_current_caller)]
ClinicianOrAdmin = Annotated[Caller, Depends(require_clinician_or_admin)]
PatientCaller = Annotated[Caller, Depends(require_patient)]
Dispatcher = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
Codec = Annotated[FieldCodec, Depends(get_field_codec)]
Audit = Annotated[AuditSink, Depends(get_audit_sink)]
