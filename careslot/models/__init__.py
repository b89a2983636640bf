from .doctor import Doctor
from .patient import Patient
from .slot import Slot, SlotStatus, ConsultationType
from .appointment import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    ProposalDecision,
    RescheduleProposal,
)

__all__ = [
    "Doctor",
    "Patient",
    "Slot",
    "SlotStatus",
    "ConsultationType",
    "Appointment",
    "AppointmentStatus",
    "AppointmentType",
    "ProposalDecision",
    "RescheduleProposal",
]
