"""Doctor notification inbox and push token registration."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_api.core.exceptions import ForbiddenException, NotFoundException
from clinic_api.core.timeutils import Clock, row_to_dict, utc_now
from clinic_api.database import atomic
from clinic_api.models.notifications import doctor_notifications
from clinic_api.models.push_tokens import push_tokens
from clinic_api.schemas.notifications import (
    DoctorNotificationList,
    DoctorNotificationResponse,
    NotificationStatus,
    PushTokenResponse,
)
from clinic_api.schemas.users import Caller
from clinic_api.services.directory_service import DirectoryService
from clinic_api.services.notification_dispatcher import count_unread_messages
from clinic_api.services.notification_templates import new_message_text

logger = structlog.get_logger(__name__)


def ensure_inbox_owner(caller: Caller, doctor_id: UUID) -> None:
    """
    Raises:
        ForbiddenException: If the caller is neither the doctor nor an admin
    """
    if caller.is_admin or (caller.is_doctor and caller.doctor_id == doctor_id):
        return
    raise ForbiddenException("You can only access your own notifications")


class NotificationService:
    """Service for the doctor inbox and the push tokens of users."""

    def __init__(self, db: AsyncSession, now: Clock = utc_now):
        """Initialize service with database session and clock."""
        self.db = db
        self.now = now

    async def list_for_doctor(
        self,
        doctor_id: UUID,
        caller: Caller,
        status: NotificationStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> DoctorNotificationList:
        """
        List a doctor's inbox, newest first.

        Unread chat records get their text recomputed from the current
        unread count of the thread.

        Args:
            doctor_id: Doctor ID
            caller: The doctor or an admin
            status: Optional status filter. Archived records are hidden otherwise.
            page: Page number (1-indexed)
            page_size: Records per page

        Returns:
            Page of notifications with the unread total
        """
        ensure_inbox_owner(caller, doctor_id)

        conditions = [doctor_notifications.c.doctor_id == doctor_id]
        if status:
            conditions.append(doctor_notifications.c.status == status.value)
        else:
            conditions.append(doctor_notifications.c.status != NotificationStatus.ARCHIVED.value)
        where = and_(*conditions)

        count_stmt = select(func.count()).select_from(doctor_notifications).where(where)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        unread_stmt = (
            select(func.count())
            .select_from(doctor_notifications)
            .where(
                doctor_notifications.c.doctor_id == doctor_id,
                doctor_notifications.c.status == NotificationStatus.SENT.value,
            )
        )
        unread = (await self.db.execute(unread_stmt)).scalar() or 0

        result = await self.db.execute(
            select(doctor_notifications)
            .where(where)
            .order_by(doctor_notifications.c.sent_at.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )

        items = []
        for row in result.fetchall():
            record = row_to_dict(row)
            if (
                record["notification_type"] == "new_message"
                and record["status"] == NotificationStatus.SENT.value
                and record["patient_id"]
            ):
                record["message"] = await self._chat_text(record)
            items.append(DoctorNotificationResponse.model_validate(record))

        return DoctorNotificationList(
            total=total,
            page=page,
            page_size=page_size,
            unread=unread,
            items=items,
        )

    async def mark_read(
        self,
        doctor_id: UUID,
        notification_id: UUID,
        caller: Caller,
    ) -> DoctorNotificationResponse:
        """Mark an inbox record as read."""
        return await self._set_status(doctor_id, notification_id, caller, NotificationStatus.READ)

    async def archive(
        self,
        doctor_id: UUID,
        notification_id: UUID,
        caller: Caller,
    ) -> DoctorNotificationResponse:
        """Archive an inbox record."""
        return await self._set_status(
            doctor_id, notification_id, caller, NotificationStatus.ARCHIVED
        )

    async def register_token(
        self,
        user_id: UUID,
        fcm_token: str,
        platform: str,
    ) -> PushTokenResponse:
        """
        Register or refresh a device token for a user.

        Other tokens of the user on the same platform are deactivated.

        Args:
            user_id: User ID
            fcm_token: FCM token
            platform: Platform (android, ios, web)

        Returns:
            Created/updated token record
        """
        now = self.now()
        async with atomic(self.db, "register_push_token"):
            await self.db.execute(
                update(push_tokens)
                .where(
                    push_tokens.c.user_id == user_id,
                    push_tokens.c.platform == platform,
                    push_tokens.c.fcm_token != fcm_token,
                )
                .values(is_active=False)
            )

            result = await self.db.execute(
                select(push_tokens.c.id).where(
                    push_tokens.c.user_id == user_id,
                    push_tokens.c.fcm_token == fcm_token,
                )
            )
            existing_id = result.scalar()

            if existing_id is not None:
                result = await self.db.execute(
                    update(push_tokens)
                    .where(push_tokens.c.id == existing_id)
                    .values(is_active=True, last_used_at=now, platform=platform)
                    .returning(push_tokens)
                )
            else:
                result = await self.db.execute(
                    insert(push_tokens)
                    .values(
                        user_id=user_id,
                        fcm_token=fcm_token,
                        platform=platform,
                        is_active=True,
                        last_used_at=now,
                        created_at=now,
                    )
                    .returning(push_tokens)
                )
            token = row_to_dict(result.fetchone())

        logger.info(
            "push_token_registered",
            user_id=str(user_id),
            platform=platform,
            refreshed=existing_id is not None,
        )
        return PushTokenResponse.model_validate(token)

    async def deactivate_token(self, user_id: UUID, fcm_token: str) -> bool:
        """
        Deactivate a specific FCM token.

        Returns:
            True if token was deactivated
        """
        async with atomic(self.db, "deactivate_push_token"):
            result = await self.db.execute(
                update(push_tokens)
                .where(
                    push_tokens.c.user_id == user_id,
                    push_tokens.c.fcm_token == fcm_token,
                )
                .values(is_active=False)
            )
        return result.rowcount > 0

    async def _set_status(
        self,
        doctor_id: UUID,
        notification_id: UUID,
        caller: Caller,
        status: NotificationStatus,
    ) -> DoctorNotificationResponse:
        """
        Raises:
            ForbiddenException: If caller does not own the inbox
            NotFoundException: If the record is not in the doctor's inbox
        """
        ensure_inbox_owner(caller, doctor_id)

        values: dict[str, Any] = {"status": status.value}
        if status is NotificationStatus.READ:
            values["read_at"] = self.now()

        async with atomic(self.db, f"notification_{status.value}"):
            result = await self.db.execute(
                update(doctor_notifications)
                .where(
                    doctor_notifications.c.id == notification_id,
                    doctor_notifications.c.doctor_id == doctor_id,
                )
                .values(**values)
                .returning(doctor_notifications)
            )
            row = result.fetchone()
            if row is None:
                raise NotFoundException("Notification not found")

        return DoctorNotificationResponse.model_validate(row_to_dict(row))

    async def _chat_text(self, record: dict[str, Any]) -> str:
        patient = await DirectoryService(self.db).get_patient(record["patient_id"])
        name = patient.full_name if patient and patient.full_name else "A patient"
        unread = await count_unread_messages(self.db, record["doctor_id"], record["patient_id"])
        preview = (record.get("data") or {}).get("preview")
        return new_message_text(name, unread, preview)
