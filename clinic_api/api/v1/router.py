"""API v1 router configuration."""

from fastapi import APIRouter

from clinic_api.api.v1.endpoints import (
    appointments,
    chat,
    consultations,
    health,
    notifications,
    realtime,
    reschedule_requests,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(reschedule_requests.router, tags=["Reschedule Requests"])
api_router.include_router(consultations.router, prefix="/consultations", tags=["Consultations"])
api_router.include_router(notifications.router, tags=["Notifications"])
api_router.include_router(chat.router, prefix="/chat", tags=["Chat"])
api_router.include_router(realtime.router, tags=["Realtime"])
