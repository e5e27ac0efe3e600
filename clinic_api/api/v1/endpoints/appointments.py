"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_api.dependencies import (
    Audit,
    ClinicianOrAdmin,
    Codec,
    CurrentCaller,
    DatabaseSession,
    Dispatcher,
)
from clinic_api.schemas.appointments import (
    AppointmentCreate,
    AppointmentDetailResponse,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentState,
    DirectRescheduleRequest,
    StateChangeRequest,
)
from clinic_api.schemas.common import ApiResponse
from clinic_api.schemas.consultations import WizardStepRequest, WizardStepResult
from clinic_api.services.appointment_service import AppointmentService
from clinic_api.services.state_transition_service import StateTransitionService
from clinic_api.services.wizard_service import CompletionWizardService

router = APIRouter()


@router.post(
    "",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create new appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    caller: ClinicianOrAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    codec: Codec,
) -> ApiResponse[AppointmentResponse]:
    """
    Create a pending appointment.

    Doctors creating an appointment without a doctor ID are assigned to it.

    Args:
        data: Appointment creation data
        caller: Clinician or admin
        db: Database session
        dispatcher: Notification dispatcher
        codec: Sensitive field codec

    Returns:
        Created appointment
    """
    service = AppointmentService(db, dispatcher, codec)
    appointment = await service.create_appointment(data, caller)
    return ApiResponse(data=appointment, message="Appointment created")


@router.get(
    "",
    response_model=ApiResponse[AppointmentListResponse],
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    caller: CurrentCaller,
    db: DatabaseSession,
    codec: Codec,
    state: AppointmentState | None = Query(None),
    patient_id: UUID | None = Query(None),
    doctor_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    search: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> ApiResponse[AppointmentListResponse]:
    """
    List appointments visible to the caller with filtering.

    Args:
        caller: Authenticated caller
        db: Database session
        codec: Sensitive field codec
        state: Filter by state
        patient_id: Filter by patient ID
        doctor_id: Filter by doctor ID (admins only, doctors see their own)
        from_date: Filter by start date
        to_date: Filter by end date
        search: Free text over reason and notes
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        state=state,
        patient_id=patient_id,
        doctor_id=doctor_id,
        from_date=from_date,
        to_date=to_date,
        search=search,
        page=page,
        page_size=page_size,
    )

    service = AppointmentService(db, codec=codec)
    return ApiResponse(data=await service.list_appointments(filters, caller))


@router.get(
    "/{appointment_id}",
    response_model=ApiResponse[AppointmentDetailResponse],
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
    codec: Codec,
) -> ApiResponse[AppointmentDetailResponse]:
    """
    Get an appointment with its clinical records and pending reschedule request.

    Raises:
        NotFoundException: If appointment not found
        ForbiddenException: If caller doesn't have access
    """
    service = AppointmentService(db, codec=codec)
    return ApiResponse(data=await service.get_appointment(appointment_id, caller))


@router.put(
    "/{appointment_id}/state",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Change appointment state",
)
async def set_appointment_state(
    appointment_id: UUID,
    data: StateChangeRequest,
    caller: ClinicianOrAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    audit: Audit,
    codec: Codec,
) -> ApiResponse[AppointmentResponse]:
    """
    Move an appointment to another state.

    Attended and cancelled appointments cannot change anymore.

    Args:
        appointment_id: Appointment ID
        data: Target state and optional observations
        caller: Clinician or admin
        db: Database session
        dispatcher: Notification dispatcher
        audit: Audit sink
        codec: Sensitive field codec

    Returns:
        Updated appointment
    """
    service = StateTransitionService(db, dispatcher, audit, codec)
    appointment = await service.set_state(appointment_id, data.state, caller, data.observations)
    return ApiResponse(data=appointment, message="Appointment state updated")


@router.put(
    "/{appointment_id}/reschedule",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: DirectRescheduleRequest,
    caller: ClinicianOrAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    audit: Audit,
    codec: Codec,
) -> ApiResponse[AppointmentResponse]:
    """
    Move an appointment to a new future date.

    Args:
        appointment_id: Appointment ID
        data: New date and optional motive
        caller: Clinician or admin

    Returns:
        Rescheduled appointment
    """
    service = StateTransitionService(db, dispatcher, audit, codec)
    appointment = await service.reschedule_direct(
        appointment_id, data.new_date, caller, data.motive
    )
    return ApiResponse(data=appointment, message="Appointment rescheduled")


@router.post(
    "/{appointment_id}/wizard",
    response_model=ApiResponse[WizardStepResult],
    status_code=status.HTTP_200_OK,
    summary="Complete a consultation wizard step",
)
async def complete_wizard_step(
    appointment_id: UUID,
    data: WizardStepRequest,
    caller: ClinicianOrAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    audit: Audit,
    codec: Codec,
) -> ApiResponse[WizardStepResult]:
    """
    Apply one step of the completion wizard.

    Steps can be repeated; clinical records are updated in place.

    Args:
        appointment_id: Appointment ID
        data: Step name and payload
        caller: Clinician or admin

    Returns:
        State after the step
    """
    service = CompletionWizardService(db, dispatcher, audit, codec)
    result = await service.complete_step(appointment_id, data, caller)
    return ApiResponse(data=result, message=result.message)
