"""Clinical sub-record, wizard and consultation schemas."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, field_validator

VITAL_MEASUREMENTS = (
    "weight_kg",
    "height_m",
    "waist_cm",
    "systolic_bp",
    "diastolic_bp",
    "glucose_mg_dl",
    "total_cholesterol",
    "ldl_cholesterol",
    "hdl_cholesterol",
    "triglycerides",
    "hba1c",
)


class VitalSignsPayload(BaseModel):
    """Vital signs captured during a consultation."""

    weight_kg: float | None = Field(None, gt=0, le=500)
    height_m: float | None = Field(None, gt=0, le=3)
    waist_cm: float | None = Field(None, gt=0, le=300)
    systolic_bp: int | None = Field(None, gt=0, le=300)
    diastolic_bp: int | None = Field(None, gt=0, le=200)
    glucose_mg_dl: float | None = Field(None, gt=0)
    total_cholesterol: float | None = Field(None, gt=0)
    ldl_cholesterol: float | None = Field(None, gt=0)
    hdl_cholesterol: float | None = Field(None, gt=0)
    triglycerides: float | None = Field(None, gt=0)
    hba1c: float | None = Field(None, gt=0, le=25)
    observations: str | None = Field(None, max_length=2000)
    measured_at: datetime | None = None

    def has_measurements(self) -> bool:
        """Whether at least one measurement was supplied."""
        return any(getattr(self, name) is not None for name in VITAL_MEASUREMENTS)


class DiagnosisPayload(BaseModel):
    """Diagnosis for a consultation."""

    description: str = Field(..., min_length=1, max_length=4000)
    code: str | None = Field(None, max_length=20)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        """Reject blank descriptions."""
        if not v.strip():
            raise ValueError("Diagnosis description is required")
        return v.strip()


class MedicationPlanItemPayload(BaseModel):
    """One medication line of a plan."""

    drug_id: str | None = Field(None, max_length=64)
    drug_name: str | None = Field(None, max_length=200)
    dosage: str | None = Field(None, max_length=200)
    frequency: str | None = Field(None, max_length=200)
    route: str | None = Field(None, max_length=50)


class MedicationPlanPayload(BaseModel):
    """Medication plan for a consultation. Supplied items replace the stored list."""

    observations: str | None = Field(None, max_length=4000)
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool = True
    items: list[MedicationPlanItemPayload] | None = None


class VitalSignsResponse(BaseModel):
    """Stored vital signs."""

    id: UUID
    appointment_id: UUID
    patient_id: UUID
    measured_at: datetime
    weight_kg: float | None = None
    height_m: float | None = None
    bmi: float | None = None
    waist_cm: float | None = None
    systolic_bp: int | None = None
    diastolic_bp: int | None = None
    glucose_mg_dl: float | None = None
    total_cholesterol: float | None = None
    ldl_cholesterol: float | None = None
    hdl_cholesterol: float | None = None
    triglycerides: float | None = None
    hba1c: float | None = None
    observations: str | None = None
    recorded_by: UUID | None = None

    model_config = {"from_attributes": True}


class DiagnosisResponse(BaseModel):
    """Stored diagnosis."""

    id: UUID
    appointment_id: UUID
    description: str
    code: str | None = None
    diagnosed_by: UUID | None = None

    model_config = {"from_attributes": True}


class MedicationPlanItemResponse(BaseModel):
    """Stored medication line."""

    id: UUID
    position: int
    drug_id: str
    drug_name: str | None = None
    dosage: str | None = None
    frequency: str | None = None
    route: str | None = None

    model_config = {"from_attributes": True}


class MedicationPlanResponse(BaseModel):
    """Stored medication plan with its items."""

    id: UUID
    appointment_id: UUID
    patient_id: UUID
    observations: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool
    items: list[MedicationPlanItemResponse] = []

    model_config = {"from_attributes": True}


class WizardStep(str, Enum):
    """Completion wizard steps."""

    ATTENDANCE = "attendance"
    VITALS = "vitals"
    NOTES = "notes"
    DIAGNOSIS = "diagnosis"
    MEDICATION_PLAN = "medicationPlan"
    FINALIZE = "finalize"


class WizardStepRequest(BaseModel):
    """
    Payload for one wizard step.

    Only the fields relevant to ``step`` are read. ``finalize`` applies any
    of the other payloads that are present before deciding the final state.
    """

    step: WizardStep
    attendance: bool | None = None
    non_attendance_reason: str | None = Field(
        None,
        max_length=1000,
        validation_alias=AliasChoices("non_attendance_reason", "nonAttendanceReason"),
    )
    vitals: VitalSignsPayload | None = None
    notes: str | None = Field(None, max_length=4000)
    diagnosis: DiagnosisPayload | None = None
    medication_plan: MedicationPlanPayload | None = Field(
        None,
        validation_alias=AliasChoices("medication_plan", "medicationPlan"),
    )
    # finalize only: False leaves an attended appointment pending
    mark_as_attended: bool = Field(
        True,
        validation_alias=AliasChoices("mark_as_attended", "markAsAttended"),
    )


class WizardStepResult(BaseModel):
    """Outcome of a wizard step."""

    appointment_id: UUID
    state: str
    step_completed: WizardStep
    message: str


class ConsultationRequest(BaseModel):
    """One-shot consultation attached to a new or existing appointment."""

    patient_id: UUID
    doctor_id: UUID | None = None
    # Existing appointment of the same patient; omitted to create a new one
    appointment_id: UUID | None = None
    scheduled_at: datetime | None = None
    reason: str | None = Field(None, max_length=1000)
    notes: str | None = Field(None, max_length=4000)
    vitals: VitalSignsPayload | None = None
    diagnosis: DiagnosisPayload | None = None
    medication_plan: MedicationPlanPayload | None = Field(
        None,
        validation_alias=AliasChoices("medication_plan", "medicationPlan"),
    )


class ComorbidityBaseline(BaseModel):
    """Diagnosis flags shared by every comorbidity in a request."""

    is_baseline_diagnosis: bool = False
    is_added_later: bool = False
    # Validated against [1900, current year] by the service
    diagnosis_year: int | None = None


class ComorbidityTreatment(BaseModel):
    """Treatment flags shared by every comorbidity in a request."""

    receives_non_pharmacological: bool = False
    receives_pharmacological: bool = False


class VaccinationPayload(BaseModel):
    """Vaccination applied to the patient."""

    vaccine_name: str | None = Field(None, max_length=200)
    applied_on: date | None = None
    dose: str | None = Field(None, max_length=50)
    notes: str | None = Field(None, max_length=1000)


class FirstConsultationRequest(ConsultationRequest):
    """First consultation: consultation plus the patient's baseline history."""

    comorbidities: list[str] = []
    baseline: ComorbidityBaseline = ComorbidityBaseline()
    treatment: ComorbidityTreatment = ComorbidityTreatment()
    # Years lived with each comorbidity, keyed by comorbidity name
    years_affected: dict[str, int] = {}
    vaccinations: list[VaccinationPayload] = []


class ConsultationResult(BaseModel):
    """Records written by a consultation."""

    appointment_id: UUID
    state: str
    created_appointment: bool
    vital_signs: VitalSignsResponse | None = None
    diagnosis: DiagnosisResponse | None = None
    medication_plan: MedicationPlanResponse | None = None
    comorbidities: list[str] = []
    vaccinations_recorded: int = 0
    doctor_assigned: bool = False
