"""Chat endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from clinic_api.dependencies import CurrentCaller, DatabaseSession, Dispatcher
from clinic_api.schemas.chat import ChatMessageCreate, ChatMessageResponse, ChatReadResponse
from clinic_api.schemas.common import ApiResponse
from clinic_api.services.chat_service import ChatService

router = APIRouter()


@router.post(
    "/messages",
    response_model=ApiResponse[ChatMessageResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Send a chat message",
)
async def send_message(
    data: ChatMessageCreate,
    caller: CurrentCaller,
    db: DatabaseSession,
    dispatcher: Dispatcher,
) -> ApiResponse[ChatMessageResponse]:
    """
    Send a message between a doctor and one of their patients.

    Patients name the doctor, doctors name the patient.
    """
    service = ChatService(db, dispatcher)
    message = await service.send_message(data, caller)
    return ApiResponse(data=message, message="Message sent")


@router.put(
    "/{patient_id}/read",
    response_model=ApiResponse[ChatReadResponse],
    status_code=status.HTTP_200_OK,
    summary="Mark conversation as read",
)
async def mark_conversation_read(
    patient_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
) -> ApiResponse[ChatReadResponse]:
    """Mark the patient's messages to the calling doctor as read."""
    service = ChatService(db)
    return ApiResponse(data=await service.mark_read(patient_id, caller))
