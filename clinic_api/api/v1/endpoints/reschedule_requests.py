"""Reschedule request endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_api.dependencies import (
    Audit,
    ClinicianOrAdmin,
    Codec,
    CurrentCaller,
    DatabaseSession,
    Dispatcher,
    PatientCaller,
)
from clinic_api.schemas.common import ApiResponse
from clinic_api.schemas.reschedule_requests import (
    RescheduleDecision,
    RescheduleRequestCreate,
    RescheduleRequestFilters,
    RescheduleRequestResponse,
    RescheduleRequestStatus,
)
from clinic_api.services.reschedule_request_service import RescheduleRequestService

router = APIRouter()


@router.post(
    "/appointments/{appointment_id}/reschedule-requests",
    response_model=ApiResponse[RescheduleRequestResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Request a reschedule",
)
async def create_reschedule_request(
    appointment_id: UUID,
    data: RescheduleRequestCreate,
    caller: PatientCaller,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    audit: Audit,
    codec: Codec,
) -> ApiResponse[RescheduleRequestResponse]:
    """
    Ask the doctor to move an appointment.

    Args:
        appointment_id: Appointment ID
        data: Motive of the request
        caller: Patient owning the appointment

    Returns:
        Pending reschedule request
    """
    service = RescheduleRequestService(db, dispatcher, audit, codec)
    request = await service.request_reschedule(appointment_id, caller, data.motive)
    return ApiResponse(data=request, message="Reschedule request sent")


@router.get(
    "/appointments/{appointment_id}/reschedule-requests",
    response_model=ApiResponse[list[RescheduleRequestResponse]],
    status_code=status.HTTP_200_OK,
    summary="List reschedule requests of an appointment",
)
async def list_appointment_reschedule_requests(
    appointment_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
    codec: Codec,
) -> ApiResponse[list[RescheduleRequestResponse]]:
    """List every reschedule request of an appointment, newest first."""
    service = RescheduleRequestService(db, codec=codec)
    return ApiResponse(data=await service.list_for_appointment(appointment_id, caller))


@router.put(
    "/appointments/{appointment_id}/reschedule-requests/{request_id}",
    response_model=ApiResponse[RescheduleRequestResponse],
    status_code=status.HTTP_200_OK,
    summary="Approve or reject a reschedule request",
)
async def respond_reschedule_request(
    appointment_id: UUID,
    request_id: UUID,
    data: RescheduleDecision,
    caller: ClinicianOrAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    audit: Audit,
    codec: Codec,
) -> ApiResponse[RescheduleRequestResponse]:
    """
    Resolve a pending reschedule request.

    Approving requires the new date; the appointment is rescheduled to it.

    Args:
        appointment_id: Appointment ID
        request_id: Reschedule request ID
        data: Decision, optional response and new date
        caller: Clinician or admin

    Returns:
        Resolved request
    """
    service = RescheduleRequestService(db, dispatcher, audit, codec)
    request = await service.respond(appointment_id, request_id, data, caller)
    return ApiResponse(data=request, message=f"Reschedule request {request.status.value}")


@router.delete(
    "/appointments/{appointment_id}/reschedule-requests/{request_id}",
    response_model=ApiResponse[RescheduleRequestResponse],
    status_code=status.HTTP_200_OK,
    summary="Cancel a reschedule request",
)
async def cancel_reschedule_request(
    appointment_id: UUID,
    request_id: UUID,
    caller: PatientCaller,
    db: DatabaseSession,
    codec: Codec,
) -> ApiResponse[RescheduleRequestResponse]:
    """Withdraw a pending reschedule request made by the caller."""
    service = RescheduleRequestService(db, codec=codec)
    request = await service.cancel(appointment_id, request_id, caller)
    return ApiResponse(data=request, message="Reschedule request cancelled")


@router.get(
    "/reschedule-requests",
    response_model=ApiResponse[list[RescheduleRequestResponse]],
    status_code=status.HTTP_200_OK,
    summary="List reschedule requests",
)
async def list_reschedule_requests(
    caller: CurrentCaller,
    db: DatabaseSession,
    codec: Codec,
    status_filter: RescheduleRequestStatus | None = Query(None, alias="status"),
    patient_id: UUID | None = Query(None),
    doctor_id: UUID | None = Query(None),
) -> ApiResponse[list[RescheduleRequestResponse]]:
    """
    List reschedule requests visible to the caller.

    Args:
        caller: Authenticated caller
        db: Database session
        codec: Sensitive field codec
        status_filter: Filter by request status
        patient_id: Filter by patient ID
        doctor_id: Filter by doctor ID (admins only)

    Returns:
        Matching requests, newest first
    """
    filters = RescheduleRequestFilters(
        status=status_filter,
        patient_id=patient_id,
        doctor_id=doctor_id,
    )
    service = RescheduleRequestService(db, codec=codec)
    return ApiResponse(data=await service.list_requests(filters, caller))
