"""Database models."""

from clinic_api.models.appointments import appointments, reschedule_requests
from clinic_api.models.base import metadata
from clinic_api.models.chat import chat_messages
from clinic_api.models.consultations import (
    diagnoses,
    medication_plan_items,
    medication_plans,
    vital_signs,
)
from clinic_api.models.doctors import doctor_patients, doctors
from clinic_api.models.medical_history import (
    comorbidities,
    patient_comorbidities,
    vaccination_records,
)
from clinic_api.models.notifications import doctor_notifications
from clinic_api.models.patients import patients
from clinic_api.models.push_tokens import push_tokens
from clinic_api.models.users import users

__all__ = [
    "appointments",
    "chat_messages",
    "comorbidities",
    "diagnoses",
    "doctor_notifications",
    "doctor_patients",
    "doctors",
    "medication_plan_items",
    "medication_plans",
    "metadata",
    "patient_comorbidities",
    "patients",
    "push_tokens",
    "reschedule_requests",
    "users",
    "vaccination_records",
    "vital_signs",
]
