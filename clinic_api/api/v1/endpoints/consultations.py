"""Consultation endpoints."""

from fastapi import APIRouter, status

from clinic_api.dependencies import Audit, ClinicianOrAdmin, Codec, DatabaseSession, Dispatcher
from clinic_api.schemas.common import ApiResponse
from clinic_api.schemas.consultations import (
    ConsultationRequest,
    ConsultationResult,
    FirstConsultationRequest,
)
from clinic_api.services.consultation_service import ConsultationService

router = APIRouter()


@router.post(
    "/full",
    response_model=ApiResponse[ConsultationResult],
    status_code=status.HTTP_201_CREATED,
    summary="Record a full consultation",
)
async def create_full_consultation(
    data: ConsultationRequest,
    caller: ClinicianOrAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    audit: Audit,
    codec: Codec,
) -> ApiResponse[ConsultationResult]:
    """
    Record vitals, diagnosis and medication plan in one call.

    Uses the given appointment of the patient, or creates an attended one.

    Args:
        data: Consultation payload
        caller: Clinician or admin

    Returns:
        Records written by the consultation
    """
    service = ConsultationService(db, dispatcher, audit, codec)
    result = await service.create_full_consultation(data, caller)
    return ApiResponse(data=result, message="Consultation recorded")


@router.post(
    "/first",
    response_model=ApiResponse[ConsultationResult],
    status_code=status.HTTP_201_CREATED,
    summary="Record a first consultation",
)
async def create_first_consultation(
    data: FirstConsultationRequest,
    caller: ClinicianOrAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    audit: Audit,
    codec: Codec,
) -> ApiResponse[ConsultationResult]:
    """
    Record a first consultation with comorbidities and vaccinations.

    Args:
        data: First consultation payload
        caller: Clinician or admin

    Returns:
        Records written by the consultation
    """
    service = ConsultationService(db, dispatcher, audit, codec)
    result = await service.create_first_consultation(data, caller)
    return ApiResponse(data=result, message="First consultation recorded")
