"""
Notification fanout for committed appointment events.

Services publish events after their transaction commits. A background task
consumes the queue and, for each recipient of the event:

1. stores a record in the doctor inbox (clinicians only)
2. sends a transient realtime event to connected sessions
3. sends a best-effort push to the recipient's devices

Each step is caught and logged on its own. Nothing here can fail the
operation that produced the event.
"""

import asyncio
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_api.config import settings
from clinic_api.core.realtime import ConnectionManager
from clinic_api.core.redis_client import CacheManager
from clinic_api.models.chat import chat_messages
from clinic_api.models.notifications import doctor_notifications
from clinic_api.schemas.events import AppointmentEvent, Audience, EventKind
from clinic_api.schemas.users import PersonSummary
from clinic_api.services.directory_service import DirectoryService
from clinic_api.services.notification_templates import (
    RECIPIENTS,
    RenderedNotification,
    TemplateContext,
    render_notification,
)
from clinic_api.services.push_service import PushService

logger = structlog.get_logger(__name__)


async def count_unread_messages(db: AsyncSession, doctor_id: UUID, patient_id: UUID) -> int:
    """Count patient messages the doctor has not read yet."""
    stmt = (
        select(func.count())
        .select_from(chat_messages)
        .where(
            chat_messages.c.doctor_id == doctor_id,
            chat_messages.c.patient_id == patient_id,
            chat_messages.c.sender_role == "patient",
            chat_messages.c.read_at.is_(None),
        )
    )
    return (await db.execute(stmt)).scalar() or 0


class NotificationDispatcher:
    """Consume lifecycle events and deliver them to every recipient channel."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        realtime: ConnectionManager,
        push: PushService,
        cache: CacheManager | None = None,
        maxsize: int | None = None,
    ):
        """Initialize dispatcher with its delivery collaborators."""
        self.session_factory = session_factory
        self.realtime = realtime
        self.push = push
        self.cache = cache
        self.queue: asyncio.Queue[AppointmentEvent] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.notification_queue_maxsize
        )
        self._task: asyncio.Task | None = None

    def publish(self, event: AppointmentEvent) -> None:
        """Queue an event for delivery. Never blocks and never raises."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(
                "notification_event_dropped",
                kind=event.kind.value,
                appointment_id=str(event.appointment_id) if event.appointment_id else None,
                reason="queue full",
            )

    def start(self) -> None:
        """Start the background consumer."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="notification-dispatcher")
            logger.info("notification_dispatcher_started")

    async def stop(self) -> None:
        """Deliver what is queued, then stop the background consumer."""
        await self.drain()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("notification_dispatcher_stopped")

    async def drain(self) -> int:
        """
        Deliver every queued event in the current task.

        Returns:
            Number of events delivered
        """
        delivered = 0
        while True:
            try:
                event = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return delivered
            try:
                if await self._deliver(event):
                    delivered += 1
            finally:
                self.queue.task_done()

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self._deliver(event)
            finally:
                self.queue.task_done()

    async def _deliver(self, event: AppointmentEvent) -> bool:
        try:
            await self.dispatch(event)
        except Exception as e:
            logger.error(
                "notification_dispatch_failed",
                kind=event.kind.value,
                appointment_id=str(event.appointment_id) if event.appointment_id else None,
                error=str(e),
            )
            return False
        return True

    async def dispatch(self, event: AppointmentEvent) -> None:
        """Fan an event out to its recipients. Failures are logged, never raised."""
        try:
            patient, doctor, ctx = await self._resolve_context(event)
        except Exception as e:
            logger.warning("notification_context_failed", kind=event.kind.value, error=str(e))
            patient, doctor, ctx = None, None, TemplateContext()

        for audience in RECIPIENTS[event.kind]:
            notification = render_notification(event, audience, ctx)

            if audience is Audience.CLINICIAN:
                if event.doctor_id is None:
                    continue
                await self._store_for_clinician(event, notification)

            await self._send_realtime(event, audience, notification, patient, doctor)

            if audience is not Audience.ADMIN:
                recipient = patient if audience is Audience.PATIENT else doctor
                await self._send_push(event, audience, notification, recipient)

    async def _resolve_context(
        self, event: AppointmentEvent
    ) -> tuple[PersonSummary | None, PersonSummary | None, TemplateContext]:
        async with self.session_factory() as session:
            directory = DirectoryService(session, self.cache)
            patient = await directory.get_patient(event.patient_id)
            doctor = await directory.get_doctor(event.doctor_id) if event.doctor_id else None

            ctx = TemplateContext()
            if patient and patient.full_name:
                ctx.patient_name = patient.full_name
            if doctor and doctor.full_name:
                ctx.doctor_name = doctor.full_name
            if event.kind is EventKind.NEW_MESSAGE and event.doctor_id:
                ctx.unread_count = await count_unread_messages(
                    session, event.doctor_id, event.patient_id
                )
        return patient, doctor, ctx

    async def _store_for_clinician(
        self, event: AppointmentEvent, notification: RenderedNotification
    ) -> None:
        """Persist the inbox record. Chat threads keep a single unread record."""
        try:
            async with self.session_factory() as session:
                values = {
                    "doctor_id": event.doctor_id,
                    "patient_id": event.patient_id,
                    "appointment_id": event.appointment_id,
                    "notification_type": notification.notification_type,
                    "title": notification.title,
                    "message": notification.message,
                    "data": notification.data,
                    "status": "sent",
                    "sent_at": event.occurred_at,
                }

                existing_id = None
                if event.kind is EventKind.NEW_MESSAGE:
                    result = await session.execute(
                        select(doctor_notifications.c.id).where(
                            and_(
                                doctor_notifications.c.doctor_id == event.doctor_id,
                                doctor_notifications.c.patient_id == event.patient_id,
                                doctor_notifications.c.notification_type == "new_message",
                                doctor_notifications.c.status == "sent",
                            )
                        )
                    )
                    existing_id = result.scalar()

                if existing_id is not None:
                    await session.execute(
                        update(doctor_notifications)
                        .where(doctor_notifications.c.id == existing_id)
                        .values(**values)
                    )
                else:
                    await session.execute(insert(doctor_notifications).values(**values))
                await session.commit()

            logger.info(
                "doctor_notification_stored",
                kind=event.kind.value,
                doctor_id=str(event.doctor_id),
                updated=existing_id is not None,
            )
        except Exception as e:
            logger.warning(
                "doctor_notification_store_failed",
                kind=event.kind.value,
                doctor_id=str(event.doctor_id),
                error=str(e),
            )

    async def _send_realtime(
        self,
        event: AppointmentEvent,
        audience: Audience,
        notification: RenderedNotification,
        patient: PersonSummary | None,
        doctor: PersonSummary | None,
    ) -> None:
        payload = {
            "title": notification.title,
            "message": notification.message,
            "type": notification.notification_type,
            "data": notification.data,
        }
        try:
            if audience is Audience.ADMIN:
                delivered = await self.realtime.send_to_role("admin", event.kind.value, payload)
            elif audience is Audience.PATIENT:
                delivered = await self.realtime.send_to_patient(
                    str(event.patient_id), event.kind.value, payload
                )
                if patient and patient.user_id:
                    delivered = (
                        await self.realtime.send_to_user(
                            str(patient.user_id), event.kind.value, payload
                        )
                        or delivered
                    )
            else:
                delivered = bool(doctor and doctor.user_id) and await self.realtime.send_to_user(
                    str(doctor.user_id), event.kind.value, payload
                )
            logger.debug(
                "realtime_notification_sent",
                kind=event.kind.value,
                audience=audience.value,
                delivered=delivered,
            )
        except Exception as e:
            logger.warning(
                "realtime_notification_failed",
                kind=event.kind.value,
                audience=audience.value,
                error=str(e),
            )

    async def _send_push(
        self,
        event: AppointmentEvent,
        audience: Audience,
        notification: RenderedNotification,
        recipient: PersonSummary | None,
    ) -> None:
        if recipient is None or recipient.user_id is None:
            logger.debug("push_skipped_no_account", kind=event.kind.value, audience=audience.value)
            return

        try:
            result = await self.push.send_push_notification(
                user_id=recipient.user_id,
                title=notification.title,
                message=notification.message,
                notification_type=notification.notification_type,
                data=notification.data,
            )
            logger.info(
                "push_notification_dispatched",
                kind=event.kind.value,
                audience=audience.value,
                success=result.success,
                devices=result.device_count,
            )
        except Exception as e:
            logger.warning(
                "push_notification_failed",
                kind=event.kind.value,
                audience=audience.value,
                error=str(e),
            )
