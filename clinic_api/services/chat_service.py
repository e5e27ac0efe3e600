"""Doctor-patient chat messages that feed the doctor inbox."""

from uuid import UUID

import structlog
from sqlalchemy import insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.core.exceptions import ForbiddenException, ValidationException
from clinic_api.core.timeutils import Clock, row_to_dict, utc_now
from clinic_api.database import atomic
from clinic_api.models.chat import chat_messages
from clinic_api.models.notifications import doctor_notifications
from clinic_api.schemas.chat import ChatMessageCreate, ChatMessageResponse, ChatReadResponse
from clinic_api.schemas.events import AppointmentEvent, EventKind
from clinic_api.schemas.users import Caller
from clinic_api.services.directory_service import DirectoryService
from clinic_api.services.notification_dispatcher import NotificationDispatcher

logger = structlog.get_logger(__name__)

PREVIEW_LENGTH = 80


def message_preview(body: str) -> str:
    """First characters of a message, on one line."""
    text = " ".join(body.split())
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[: PREVIEW_LENGTH - 3].rstrip() + "..."


class ChatService:
    """Service for chat threads between a doctor and an assigned patient."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        now: Clock = utc_now,
    ):
        """Initialize service with database session and dispatcher."""
        self.db = db
        self.dispatcher = dispatcher
        self.now = now

    async def send_message(
        self,
        payload: ChatMessageCreate,
        caller: Caller,
    ) -> ChatMessageResponse:
        """
        Store a chat message.

        A patient message also notifies the doctor; the doctor keeps a single
        unread inbox record per thread.

        Raises:
            ValidationException: If the other party is not named
            ForbiddenException: If the doctor does not follow the patient
        """
        if caller.is_patient and caller.patient_id:
            if payload.doctor_id is None:
                raise ValidationException("doctor_id is required")
            doctor_id, patient_id = payload.doctor_id, caller.patient_id
        elif caller.is_doctor and caller.doctor_id:
            if payload.patient_id is None:
                raise ValidationException("patient_id is required")
            doctor_id, patient_id = caller.doctor_id, payload.patient_id
        else:
            raise ForbiddenException("Only patients and doctors can send messages")

        if not await DirectoryService(self.db).is_assigned(doctor_id, patient_id):
            raise ForbiddenException(
                "Messages are only allowed between a doctor and their patients"
            )

        body = payload.body.strip()
        if not body:
            raise ValidationException("Message cannot be empty")

        async with atomic(self.db, "send_chat_message"):
            result = await self.db.execute(
                insert(chat_messages)
                .values(
                    doctor_id=doctor_id,
                    patient_id=patient_id,
                    sender_role=caller.role.value,
                    body=body,
                    created_at=self.now(),
                )
                .returning(chat_messages)
            )
            message = row_to_dict(result.fetchone())

        logger.info(
            "chat_message_sent",
            doctor_id=str(doctor_id),
            patient_id=str(patient_id),
            sender_role=caller.role.value,
        )

        if caller.is_patient and self.dispatcher is not None:
            self.dispatcher.publish(
                AppointmentEvent(
                    kind=EventKind.NEW_MESSAGE,
                    patient_id=patient_id,
                    doctor_id=doctor_id,
                    occurred_at=self.now(),
                    preview=message_preview(body),
                )
            )

        return ChatMessageResponse.model_validate(message)

    async def mark_read(self, patient_id: UUID, caller: Caller) -> ChatReadResponse:
        """
        Mark the patient's messages to the calling doctor as read.

        The thread's unread inbox record is marked read too, so the next
        message opens a new one.

        Raises:
            ForbiddenException: If caller is not a doctor
        """
        if not (caller.is_doctor and caller.doctor_id):
            raise ForbiddenException("Only doctors can mark a conversation as read")

        now = self.now()
        async with atomic(self.db, "mark_chat_read"):
            result = await self.db.execute(
                update(chat_messages)
                .where(
                    chat_messages.c.doctor_id == caller.doctor_id,
                    chat_messages.c.patient_id == patient_id,
                    chat_messages.c.sender_role == "patient",
                    chat_messages.c.read_at.is_(None),
                )
                .values(read_at=now)
            )
            marked = result.rowcount

            await self.db.execute(
                update(doctor_notifications)
                .where(
                    doctor_notifications.c.doctor_id == caller.doctor_id,
                    doctor_notifications.c.patient_id == patient_id,
                    doctor_notifications.c.notification_type == "new_message",
                    doctor_notifications.c.status == "sent",
                )
                .values(status="read", read_at=now)
            )

        logger.info(
            "chat_thread_read",
            doctor_id=str(caller.doctor_id),
            patient_id=str(patient_id),
            marked_read=marked,
        )
        return ChatReadResponse(patient_id=patient_id, marked_read=marked)
