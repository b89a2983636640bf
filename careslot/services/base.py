from datetime import datetime
from typing import Callable, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.exceptions import ConflictError, DatabaseUnavailableError, NotFoundError
from ..models.appointment import ACTIVE_STATUSES, Appointment, ProposalDecision, RescheduleProposal
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..models.slot import Slot, SlotStatus

logger = logging.getLogger(__name__)

class ServiceBase:
    """Shared session handling and lookups for the scheduling services."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Database error while {action}: {str(exc)}")
            raise DatabaseUnavailableError() from exc

    # Lookups
    def _get_doctor(self, doctor_id: int, detail: str = "Doctor profile not found") -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise NotFoundError(detail)
        return doctor

    def _get_patient(self, patient_id: int, detail: str = "Patient profile not found") -> Patient:
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        if not patient:
            raise NotFoundError(detail)
        return patient

    def _get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def _lock_slot(self, slot_id: int) -> Optional[Slot]:
        return self.db.query(Slot).filter(Slot.id == slot_id).with_for_update().first()

    def _active_appointment_for_slot(self, slot_id: int, exclude_id: Optional[int] = None) -> Optional[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.slot_id == slot_id,
            Appointment.status.in_(list(ACTIVE_STATUSES)),
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.first()

    def _open_proposal_for_slot(self, slot_id: int) -> Optional[RescheduleProposal]:
        return self.db.query(RescheduleProposal).filter(
            RescheduleProposal.proposed_slot_id == slot_id,
            RescheduleProposal.active.is_(True),
        ).first()

    def _slot_is_removable(self, slot: Slot) -> bool:
        """Unbooked, never used by an appointment and not the target of an open proposal."""
        return (
            not slot.is_booked
            and not slot.is_historical
            and self._open_proposal_for_slot(slot.id) is None
        )

    def _ensure_doctor_free(self, doctor_id: int, when: datetime, exclude_id: int) -> None:
        conflicting_appointment = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == when,
            Appointment.status.in_(list(ACTIVE_STATUSES)),
            Appointment.id != exclude_id,
        ).first()

        if conflicting_appointment:
            raise ConflictError("Doctor already has another appointment at the approved time")

    def _ensure_no_duplicate_slot(self, doctor_id: int, when: datetime, exclude_id: Optional[int] = None) -> None:
        query = self.db.query(Slot).filter(
            Slot.doctor_id == doctor_id,
            Slot.date_time == when,
            Slot.status == SlotStatus.ACTIVE,
        )
        if exclude_id is not None:
            query = query.filter(Slot.id != exclude_id)

        if query.first():
            raise ConflictError("A slot already exists at this date and time")

    # Mutations shared by booking and rescheduling
    def _release_slot(self, appointment: Appointment, released_by: str, reason: str, now: datetime) -> None:
        slot = appointment.slot
        if slot is not None and slot.is_booked:
            slot.release(released_by, reason, now)

    def _move_to_slot(self, appointment: Appointment, new_slot: Slot, moved_by: str, now: datetime) -> None:
        """Book ``new_slot`` for the appointment and free its previous slot."""
        self._release_slot(
            appointment,
            moved_by,
            f"Appointment {appointment.id} moved to slot {new_slot.id}",
            now,
        )
        new_slot.book(appointment.patient_id, now)

        appointment.slot = new_slot
        appointment.appointment_date = new_slot.date_time
        appointment.duration = new_slot.duration
        appointment.consultation_fee = new_slot.consultation_fee
        appointment.consultation_type = new_slot.consultation_type

    def _retime(self, appointment: Appointment, when: datetime) -> None:
        """Move the appointment, and the slot it holds, to ``when``."""
        if appointment.slot is not None:
            self._ensure_no_duplicate_slot(appointment.doctor_id, when, exclude_id=appointment.slot.id)
            appointment.slot.date_time = when
        appointment.appointment_date = when

    def _supersede_pending_reschedule(self, appointment: Appointment, superseded_by: str, reason: str, now: datetime) -> None:
        proposal = appointment.pending_reschedule
        if proposal is not None:
            proposal.close(ProposalDecision.SUPERSEDED, superseded_by, reason, now)
