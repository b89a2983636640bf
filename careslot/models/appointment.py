from datetime import datetime
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Float, Text, Index, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base
from .slot import ConsultationType

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self not in ACTIVE_STATUSES

ACTIVE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
})

# Statuses from which a reschedule may be proposed or performed
RESCHEDULABLE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
})

STATUS_TRANSITIONS = {
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.REJECTED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.RESCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.REJECTED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}

def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in STATUS_TRANSITIONS[current]

class AppointmentType(str, enum.Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow-up"
    CHECK_UP = "check-up"
    PROCEDURE = "procedure"
    TELEMEDICINE = "telemedicine"

class ProposalDecision(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_doctor_date", "doctor_id", "appointment_date"),
        Index("ix_appointments_patient_date", "patient_id", "appointment_date"),
        Index("ix_appointments_status_date", "status", "appointment_date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=True, index=True)

    # Appointment details
    appointment_date = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=30)
    appointment_type = Column(SQLEnum(AppointmentType), nullable=False, default=AppointmentType.CONSULTATION)
    consultation_type = Column(SQLEnum(ConsultationType), nullable=False, default=ConsultationType.IN_PERSON)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING)
    reason_for_visit = Column(String(500), nullable=False)
    symptoms = Column(Text, nullable=True)
    consultation_fee = Column(Float, nullable=False, default=0)

    # Custom time requests (no slot)
    is_custom_request = Column(Boolean, nullable=False, default=False)
    requested_date_time = Column(DateTime, nullable=True)

    # Clinical outcome
    doctor_notes = Column(Text, nullable=True)
    diagnosis = Column(String(255), nullable=True)
    treatment_plan = Column(Text, nullable=True)

    # Confirmation, cancellation and rejection
    confirmed_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(255), nullable=True)
    rejection_reason = Column(String(255), nullable=True)
    cancelled_by = Column(String(20), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Last completed reschedule
    original_date = Column(DateTime, nullable=True)
    rescheduled_by = Column(String(20), nullable=True)
    rescheduled_at = Column(DateTime, nullable=True)
    reschedule_reason = Column(String(255), nullable=True)

    # Review
    rating = Column(Integer, nullable=True)
    patient_feedback = Column(Text, nullable=True)

    # Tracking
    last_modified_by = Column(String(20), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")
    slot = relationship("Slot", back_populates="appointments")
    reschedule_proposals = relationship(
        "RescheduleProposal",
        back_populates="appointment",
        order_by="RescheduleProposal.id",
        cascade="all, delete-orphan",
    )

    @property
    def pending_reschedule(self):
        """The currently open reschedule proposal, if any."""
        for proposal in self.reschedule_proposals:
            if proposal.active:
                return proposal
        return None

    def record_reschedule(self, original_date: datetime, rescheduled_by: str, reason: str, now: datetime) -> None:
        self.original_date = original_date
        self.rescheduled_by = rescheduled_by
        self.rescheduled_at = now
        self.reschedule_reason = reason

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.appointment_date}', status='{self.status}')>"

class RescheduleProposal(Base):
    __tablename__ = "reschedule_proposals"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)

    # Proposal
    active = Column(Boolean, nullable=False, default=True)
    proposed_by = Column(String(20), nullable=False)
    proposed_at = Column(DateTime, nullable=False)
    reason = Column(String(500), nullable=True)
    # True for slot targets, even after the slot row is gone
    targets_slot = Column(Boolean, nullable=False, default=False)
    proposed_slot_id = Column(Integer, ForeignKey("slots.id", ondelete="SET NULL"), nullable=True)
    proposed_date_time = Column(DateTime, nullable=False)

    # Decision
    decision = Column(SQLEnum(ProposalDecision), nullable=True)
    decided_by = Column(String(20), nullable=True)
    decision_at = Column(DateTime, nullable=True)
    decision_reason = Column(String(500), nullable=True)

    appointment = relationship("Appointment", back_populates="reschedule_proposals")
    proposed_slot = relationship("Slot")

    def close(self, decision: ProposalDecision, decided_by: str, reason: str, now: datetime) -> None:
        self.active = False
        self.decision = decision
        self.decided_by = decided_by
        self.decision_at = now
        self.decision_reason = reason

    def __repr__(self):
        return f"<RescheduleProposal(id={self.id}, appointment_id={self.appointment_id}, proposed_by='{self.proposed_by}', active={self.active})>"
