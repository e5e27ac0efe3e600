"""Push delivery through Firebase Cloud Messaging."""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

import structlog
from firebase_admin import messaging
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_api.core.exceptions import NotificationException
from clinic_api.models.push_tokens import push_tokens

logger = structlog.get_logger(__name__)


@dataclass
class PushResult:
    """Outcome of a push to one user."""

    success: bool
    device_count: int


class PushService:
    """Send push notifications to every active device of a user."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize service with a session factory for token lookups."""
        self.session_factory = session_factory

    async def send_push_notification(
        self,
        user_id: UUID,
        title: str,
        message: str,
        notification_type: str,
        data: dict[str, str] | None = None,
    ) -> PushResult:
        """
        Send a notification to all active devices of a user.

        Args:
            user_id: Recipient user ID
            title: Notification title
            message: Notification body
            notification_type: Type carried in the data payload
            data: Optional data payload

        Returns:
            Whether any device accepted the message and how many devices were targeted

        Raises:
            NotificationException: If the provider rejects the request
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(push_tokens.c.fcm_token).where(
                    push_tokens.c.user_id == user_id,
                    push_tokens.c.is_active == True,  # noqa: E712
                )
            )
            tokens = [row.fcm_token for row in result.fetchall()]

            if not tokens:
                logger.info("no_active_tokens_for_user", user_id=str(user_id))
                return PushResult(success=False, device_count=0)

            payload = {**(data or {}), "type": notification_type}

            try:
                response = messaging.send_each_for_multicast(
                    messaging.MulticastMessage(
                        notification=messaging.Notification(title=title, body=message),
                        data=payload,
                        tokens=tokens,
                        apns=messaging.APNSConfig(
                            payload=messaging.APNSPayload(
                                aps=messaging.Aps(sound="default", badge=1),
                            ),
                        ),
                        android=messaging.AndroidConfig(
                            priority="high",
                            notification=messaging.AndroidNotification(
                                sound="default",
                                priority="high",
                            ),
                        ),
                    )
                )
            except Exception as e:
                raise NotificationException(f"Push delivery failed: {e!s}") from e

            await session.execute(
                update(push_tokens)
                .where(push_tokens.c.user_id == user_id, push_tokens.c.fcm_token.in_(tokens))
                .values(last_used_at=datetime.now(UTC))
            )
            await session.commit()

        logger.info(
            "push_notification_sent",
            user_id=str(user_id),
            success_count=response.success_count,
            failure_count=response.failure_count,
        )
        return PushResult(success=response.success_count > 0, device_count=len(tokens))
