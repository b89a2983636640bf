from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.clock import as_utc_naive
from ..models.appointment import AppointmentStatus, AppointmentType
from ..models.slot import ConsultationType
from .slot import Pagination


class AppointmentCreate(BaseModel):
    """Either ``slot_id`` books an existing slot, or ``doctor_id`` plus
    ``requested_date_time`` asks the doctor for a custom time."""
    slot_id: Optional[int] = None
    doctor_id: Optional[int] = None
    requested_date_time: Optional[datetime] = None
    reason_for_visit: str = Field(..., max_length=500)
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    symptoms: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("reason_for_visit")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Reason for visit is required")
        return normalized

    @field_validator("requested_date_time")
    @classmethod
    def normalize_requested_date_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc_naive(value)


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    notes: Optional[str] = Field(default=None, max_length=2000)
    diagnosis: Optional[str] = Field(default=None, max_length=255)
    treatment_plan: Optional[str] = Field(default=None, max_length=1500)
    cancellation_reason: Optional[str] = Field(default=None, max_length=255)
    rejection_reason: Optional[str] = Field(default=None, max_length=255)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: AppointmentStatus) -> AppointmentStatus:
        if value == AppointmentStatus.PENDING:
            raise ValueError("An appointment cannot be moved back to pending")
        return value


class DirectReschedule(BaseModel):
    new_slot_id: int
    reason: Optional[str] = Field(default=None, max_length=255)


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=1000)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    slot_id: Optional[int] = None
    appointment_date: datetime
    duration: int
    appointment_type: AppointmentType
    consultation_type: ConsultationType
    status: AppointmentStatus
    reason_for_visit: str
    symptoms: Optional[str] = None
    consultation_fee: float
    is_custom_request: bool
    requested_date_time: Optional[datetime] = None
    doctor_notes: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    original_date: Optional[datetime] = None
    rescheduled_by: Optional[str] = None
    rescheduled_at: Optional[datetime] = None
    reschedule_reason: Optional[str] = None
    rating: Optional[int] = None
    patient_feedback: Optional[str] = None
    last_modified_by: Optional[str] = None

    class Config:
        from_attributes = True


class AppointmentPage(BaseModel):
    appointments: List[AppointmentResponse]
    pagination: Pagination


class AppointmentBrief(BaseModel):
    id: int
    appointment_date: datetime
    status: AppointmentStatus
    reason_for_visit: str

    class Config:
        from_attributes = True


class PatientStats(BaseModel):
    total_appointments: int = 0
    completed_appointments: int = 0
    pending_appointments: int = 0
    cancelled_appointments: int = 0
    last_appointment: Optional[AppointmentBrief] = None
    next_appointment: Optional[AppointmentBrief] = None


class PatientSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    stats: PatientStats


class RescheduleResult(BaseModel):
    appointment: AppointmentResponse
    rescheduled_from: datetime
    rescheduled_to: datetime
    proposed_by: Optional[str] = None
    approved_by: Optional[str] = None


class ReviewResult(BaseModel):
    appointment_id: int
    rating: int
    doctor_average_rating: float
    doctor_total_reviews: int
