import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

# Test database URL - MUST be different from production
# Set TEST_DATABASE_URL in .env or use environment variable. Without it the
# suite runs on a throwaway SQLite file.
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "clinic_api_test.db"),
)

# Ensure we're using asyncpg driver for async operations
if TEST_DATABASE_URL.startswith("postgresql://"):
    TEST_DATABASE_URL = TEST_DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

# The application engine and settings must never see production values
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DIRECTORY_CACHE_ENABLED", "false")

from clinic_api.core.realtime import ConnectionManager  # noqa: E402
from clinic_api.core.security import create_access_token  # noqa: E402
from clinic_api.core.timeutils import row_to_dict  # noqa: E402
from clinic_api.database import get_db  # noqa: E402
from clinic_api.dependencies import get_dispatcher  # noqa: E402
from clinic_api.main import app  # noqa: E402
from clinic_api.models import (  # noqa: E402
    appointments,
    doctor_patients,
    doctors,
    metadata,
    patients,
    users,
)
from clinic_api.schemas.events import AppointmentEvent, EventKind  # noqa: E402
from clinic_api.schemas.users import Caller, UserRole  # noqa: E402
from clinic_api.services.notification_dispatcher import NotificationDispatcher  # noqa: E402
from clinic_api.services.push_service import PushResult  # noqa: E402

# Use NullPool to avoid event loop issues between tests
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,  # Set to True for SQL debugging
    poolclass=NullPool,
)

# Create test session factory
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that remembers every published event.

    Nothing runs in the background: tests call ``drain()`` to deliver.
    """

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.events: list[AppointmentEvent] = []

    def publish(self, event: AppointmentEvent) -> None:
        self.events.append(event)
        super().publish(event)

    def kinds(self) -> list[EventKind]:
        return [event.kind for event in self.events]


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    # Create tables
    async with test_engine.begin() as conn:
        if test_engine.dialect.name == "postgresql":
            from sqlalchemy import text

            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    # Create session
    async with TestSessionLocal() as session:
        yield session

    # Drop tables after test
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def push() -> AsyncMock:
    """Push service double. Every push reaches one device."""
    service = AsyncMock()
    service.send_push_notification.return_value = PushResult(success=True, device_count=1)
    return service


@pytest.fixture
def dispatcher(push: AsyncMock) -> RecordingDispatcher:
    """Notification dispatcher writing to the test database."""
    return RecordingDispatcher(
        session_factory=TestSessionLocal,
        realtime=ConnectionManager(),
        push=push,
        cache=None,
        maxsize=100,
    )


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    dispatcher: RecordingDispatcher,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def create_account(
    db_session: AsyncSession,
    role: UserRole,
    full_name: str,
) -> dict[str, Any]:
    """Insert a user, its patient or doctor record, and build its credentials."""
    user_id = uuid4()
    email = f"{role.value}-{user_id.hex[:8]}@example.com"

    await db_session.execute(
        insert(users).values(
            id=user_id,
            email=email,
            full_name=full_name,
            role=role.value,
            is_active=True,
        )
    )

    account: dict[str, Any] = {"user_id": user_id, "email": email, "full_name": full_name}
    caller = Caller(user_id=user_id, role=role, full_name=full_name)

    if role is UserRole.PATIENT:
        patient_id = uuid4()
        await db_session.execute(
            insert(patients).values(id=patient_id, user_id=user_id, full_name=full_name)
        )
        account["patient_id"] = caller.patient_id = patient_id
    elif role is UserRole.DOCTOR:
        doctor_id = uuid4()
        await db_session.execute(
            insert(doctors).values(
                id=doctor_id,
                user_id=user_id,
                full_name=full_name,
                specialization="Family medicine",
            )
        )
        account["doctor_id"] = caller.doctor_id = doctor_id

    await db_session.commit()

    token = create_access_token(
        data={"sub": str(user_id), "email": email},
        expires_delta=timedelta(minutes=30),
    )
    account["caller"] = caller
    account["headers"] = {"Authorization": f"Bearer {token}"}
    return account


@pytest_asyncio.fixture
async def patient(db_session: AsyncSession) -> dict[str, Any]:
    """Patient account with a patient record."""
    return await create_account(db_session, UserRole.PATIENT, "Ana Patient")


@pytest_asyncio.fixture
async def other_patient(db_session: AsyncSession) -> dict[str, Any]:
    """Second patient, used for access checks."""
    return await create_account(db_session, UserRole.PATIENT, "Bruno Patient")


@pytest_asyncio.fixture
async def doctor(db_session: AsyncSession) -> dict[str, Any]:
    """Doctor account with a doctor record."""
    return await create_account(db_session, UserRole.DOCTOR, "Dr. Carla Doctor")


@pytest_asyncio.fixture
async def other_doctor(db_session: AsyncSession) -> dict[str, Any]:
    """Second doctor, used for access checks."""
    return await create_account(db_session, UserRole.DOCTOR, "Dr. Diego Doctor")


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> dict[str, Any]:
    """Administrator account."""
    return await create_account(db_session, UserRole.ADMIN, "Eva Admin")


@pytest_asyncio.fixture
async def assignment(
    db_session: AsyncSession,
    doctor: dict[str, Any],
    patient: dict[str, Any],
) -> None:
    """Assign the doctor to the patient."""
    await db_session.execute(
        insert(doctor_patients).values(
            doctor_id=doctor["doctor_id"],
            patient_id=patient["patient_id"],
        )
    )
    await db_session.commit()


@pytest.fixture
def make_appointment(
    db_session: AsyncSession,
    doctor: dict[str, Any],
    patient: dict[str, Any],
) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Factory inserting an appointment of the patient with the doctor.

    Defaults to a pending appointment three days from now.
    """

    async def _make(**overrides: Any) -> dict[str, Any]:
        now = datetime.now(UTC)
        values = {
            "patient_id": patient["patient_id"],
            "doctor_id": doctor["doctor_id"],
            "scheduled_at": now + timedelta(days=3),
            "reason": "Routine checkup",
            "state": "pending",
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        result = await db_session.execute(
            insert(appointments).values(**values).returning(appointments)
        )
        row = row_to_dict(result.fetchone())
        await db_session.commit()
        return row

    return _make
