"""Notification endpoints: push tokens and the doctor inbox."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_api.core.exceptions import NotFoundException
from clinic_api.dependencies import CurrentCaller, CurrentUser, DatabaseSession
from clinic_api.schemas.common import ApiResponse
from clinic_api.schemas.notifications import (
    DoctorNotificationList,
    DoctorNotificationResponse,
    NotificationStatus,
    PushTokenRegister,
    PushTokenResponse,
)
from clinic_api.services.notification_service import NotificationService

router = APIRouter()


@router.post(
    "/notifications/register-token",
    response_model=ApiResponse[PushTokenResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register FCM token",
)
async def register_fcm_token(
    token_data: PushTokenRegister,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> ApiResponse[PushTokenResponse]:
    """
    Register or update FCM token for the authenticated user.

    This endpoint should be called:
    - After successful login
    - When FCM token is refreshed
    - When user switches devices

    Args:
        token_data: FCM token and platform information
        current_user: Authenticated user
        db: Database session

    Returns:
        Registered token details
    """
    service = NotificationService(db)
    token = await service.register_token(
        user_id=current_user["id"],
        fcm_token=token_data.fcm_token,
        platform=token_data.platform,
    )
    return ApiResponse(data=token, message="Token registered")


@router.delete(
    "/notifications/tokens/{fcm_token}",
    response_model=ApiResponse[None],
    status_code=status.HTTP_200_OK,
    summary="Deactivate FCM token",
)
async def deactivate_fcm_token(
    fcm_token: str,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> ApiResponse[None]:
    """
    Deactivate a specific FCM token.

    This should be called when the user logs out on a device or the token
    becomes invalid.

    Raises:
        NotFoundException: If the token is not registered for the user
    """
    service = NotificationService(db)
    if not await service.deactivate_token(current_user["id"], fcm_token):
        raise NotFoundException("Token not found")
    return ApiResponse(message="Token deactivated")


@router.get(
    "/doctors/{doctor_id}/notifications",
    response_model=ApiResponse[DoctorNotificationList],
    status_code=status.HTTP_200_OK,
    summary="List doctor notifications",
)
async def list_doctor_notifications(
    doctor_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
    status_filter: NotificationStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> ApiResponse[DoctorNotificationList]:
    """
    List the doctor's inbox, newest first.

    Args:
        doctor_id: Doctor ID
        caller: The doctor or an admin
        db: Database session
        status_filter: Filter by status (archived records only when asked for)
        page: Page number
        page_size: Items per page

    Returns:
        Page of notifications with the unread count
    """
    service = NotificationService(db)
    inbox = await service.list_for_doctor(doctor_id, caller, status_filter, page, page_size)
    return ApiResponse(data=inbox)


@router.put(
    "/doctors/{doctor_id}/notifications/{notification_id}/read",
    response_model=ApiResponse[DoctorNotificationResponse],
    status_code=status.HTTP_200_OK,
    summary="Mark notification as read",
)
async def mark_notification_read(
    doctor_id: UUID,
    notification_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
) -> ApiResponse[DoctorNotificationResponse]:
    """Mark an inbox record as read."""
    service = NotificationService(db)
    notification = await service.mark_read(doctor_id, notification_id, caller)
    return ApiResponse(data=notification, message="Notification marked as read")


@router.put(
    "/doctors/{doctor_id}/notifications/{notification_id}/archive",
    response_model=ApiResponse[DoctorNotificationResponse],
    status_code=status.HTTP_200_OK,
    summary="Archive notification",
)
async def archive_notification(
    doctor_id: UUID,
    notification_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
) -> ApiResponse[DoctorNotificationResponse]:
    """Archive an inbox record."""
    service = NotificationService(db)
    notification = await service.archive(doctor_id, notification_id, caller)
    return ApiResponse(data=notification, message="Notification archived")
