from datetime import datetime
from typing import Dict, List, Optional
import logging

from sqlalchemy import func

from ..core.access import Actor, ActorRole, require_role
from ..core.clock import as_utc_naive
from ..core.config import settings
from ..core.exceptions import InvalidOperationError, NotFoundError, PermissionDeniedError
from ..models.appointment import (
    RESCHEDULABLE_STATUSES,
    Appointment,
    AppointmentStatus,
    can_transition,
)
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..models.slot import SlotStatus
from ..schemas.appointment import (
    AppointmentBrief,
    AppointmentCreate,
    AppointmentPage,
    AppointmentResponse,
    AppointmentStatusUpdate,
    DirectReschedule,
    PatientStats,
    PatientSummary,
    RescheduleResult,
    ReviewCreate,
    ReviewResult,
)
from ..schemas.slot import Pagination
from .base import ServiceBase

logger = logging.getLogger(__name__)

class AppointmentService(ServiceBase):
    """Booking and the appointment status lifecycle."""

    def book_appointment(self, actor: Actor, appointment_data: AppointmentCreate) -> Appointment:
        """Book an appointment for the calling patient.

        With ``slot_id`` the slot is reserved and the appointment confirmed at
        once. With ``doctor_id`` and ``requested_date_time`` a pending custom
        request is sent to the doctor instead.
        """
        require_role(actor, [ActorRole.PATIENT])
        patient = self._get_patient(actor.profile_id)
        now = self.clock()

        if appointment_data.slot_id is not None:
            return self._book_slot(patient, appointment_data, now)

        if appointment_data.doctor_id is not None and appointment_data.requested_date_time is not None:
            return self._request_custom_time(patient, appointment_data, now)

        raise InvalidOperationError(
            "Provide either a valid slot_id to book immediately or doctor_id "
            "and requested_date_time to request an appointment."
        )

    def _book_slot(self, patient: Patient, appointment_data: AppointmentCreate, now: datetime) -> Appointment:
        slot = self._lock_slot(appointment_data.slot_id)
        if not slot:
            raise NotFoundError("Slot not found")

        if not slot.can_be_booked(now) or self._active_appointment_for_slot(slot.id):
            raise InvalidOperationError("This slot is no longer available")

        appointment = Appointment(
            doctor_id=slot.doctor_id,
            patient_id=patient.id,
            appointment_date=slot.date_time,
            duration=slot.duration,
            appointment_type=appointment_data.appointment_type,
            consultation_type=slot.consultation_type,
            reason_for_visit=appointment_data.reason_for_visit,
            symptoms=appointment_data.symptoms,
            consultation_fee=slot.consultation_fee,
            is_custom_request=False,
            # Doctor-published slots need no further approval
            status=AppointmentStatus.CONFIRMED,
            confirmed_at=now,
            last_modified_by=ActorRole.PATIENT.value,
        )
        slot.book(patient.id, now)
        appointment.slot = slot

        self.db.add(appointment)
        self._commit("booking slot")
        self.db.refresh(appointment)

        logger.info(f"Patient {patient.id} booked slot {slot.id} (appointment {appointment.id})")
        return appointment

    def _request_custom_time(self, patient: Patient, appointment_data: AppointmentCreate, now: datetime) -> Appointment:
        doctor = self._get_doctor(appointment_data.doctor_id, detail="Doctor not found")

        requested = appointment_data.requested_date_time
        if requested < now:
            raise InvalidOperationError("Requested date/time must be a valid future date")

        appointment = Appointment(
            doctor_id=doctor.id,
            patient_id=patient.id,
            appointment_date=requested,
            duration=settings.DEFAULT_SLOT_DURATION,
            appointment_type=appointment_data.appointment_type,
            reason_for_visit=appointment_data.reason_for_visit,
            symptoms=appointment_data.symptoms,
            consultation_fee=doctor.consultation_fee or 0,
            is_custom_request=True,
            requested_date_time=requested,
            status=AppointmentStatus.PENDING,
            last_modified_by=ActorRole.PATIENT.value,
        )

        self.db.add(appointment)
        self._commit("requesting appointment")
        self.db.refresh(appointment)

        logger.info(f"Patient {patient.id} requested doctor {doctor.id} at {requested} (appointment {appointment.id})")
        return appointment

    def list_doctor_appointments(
        self,
        actor: Actor,
        status_filter: Optional[AppointmentStatus] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> AppointmentPage:
        require_role(actor, [ActorRole.DOCTOR])
        doctor = self._get_doctor(actor.profile_id)
        limit = limit or settings.DEFAULT_PAGE_SIZE
        if page < 1 or limit < 1:
            raise InvalidOperationError("Page and limit must be positive")

        query = self.db.query(Appointment).filter(Appointment.doctor_id == doctor.id)
        if status_filter is not None:
            query = query.filter(Appointment.status == status_filter)
        if from_date:
            query = query.filter(Appointment.appointment_date >= as_utc_naive(from_date))
        if to_date:
            query = query.filter(Appointment.appointment_date <= as_utc_naive(to_date))

        total = query.count()
        appointments = query.order_by(
            Appointment.appointment_date.desc()
        ).offset((page - 1) * limit).limit(limit).all()

        return AppointmentPage(
            appointments=[AppointmentResponse.model_validate(a) for a in appointments],
            pagination=Pagination.build(page, limit, len(appointments), total),
        )

    def list_patient_appointments(self, actor: Actor, limit: Optional[int] = None) -> List[Appointment]:
        require_role(actor, [ActorRole.PATIENT])
        patient = self._get_patient(actor.profile_id)

        return self.db.query(Appointment).filter(
            Appointment.patient_id == patient.id
        ).order_by(
            Appointment.appointment_date.desc()
        ).limit(limit or settings.DEFAULT_PAGE_SIZE).all()

    def update_status(self, actor: Actor, appointment_id: int, status_data: AppointmentStatusUpdate) -> Appointment:
        """Apply a status change requested by the doctor or the patient.

        Patients may only cancel. Doctors drive the rest of the lifecycle
        according to ``STATUS_TRANSITIONS``.
        """
        now = self.clock()
        target = status_data.status

        if actor.role == ActorRole.PATIENT:
            require_role(actor, [ActorRole.PATIENT])
            if target != AppointmentStatus.CANCELLED:
                raise PermissionDeniedError("Patients can only cancel their own appointments")
            appointment = self._get_owned_appointment(Appointment.patient_id, actor.profile_id, appointment_id)
            self._ensure_transition(appointment, target)
            self._cancel(
                appointment,
                ActorRole.PATIENT.value,
                status_data.cancellation_reason or "Cancelled by patient",
                now,
            )
        elif actor.role == ActorRole.DOCTOR:
            require_role(actor, [ActorRole.DOCTOR])
            appointment = self._get_owned_appointment(Appointment.doctor_id, actor.profile_id, appointment_id)
            self._ensure_transition(appointment, target)
            self._apply_doctor_status(appointment, status_data, now)
        else:
            raise PermissionDeniedError("Access denied. Required role: doctor or patient")

        appointment.last_modified_by = actor.role.value
        if appointment.status.is_terminal:
            self._supersede_pending_reschedule(
                appointment,
                actor.role.value,
                f"Appointment {appointment.status.value}",
                now,
            )

        self._commit("updating appointment status")
        self.db.refresh(appointment)

        logger.info(f"Appointment {appointment.id} is now {appointment.status.value} ({actor.role.value})")
        return appointment

    def _apply_doctor_status(self, appointment: Appointment, status_data: AppointmentStatusUpdate, now: datetime) -> None:
        target = status_data.status

        if target == AppointmentStatus.CONFIRMED:
            if appointment.slot is None:
                self._ensure_doctor_free(appointment.doctor_id, appointment.appointment_date, appointment.id)
            appointment.status = AppointmentStatus.CONFIRMED
            appointment.confirmed_at = now
        elif target == AppointmentStatus.REJECTED:
            reason = status_data.rejection_reason or "No reason provided"
            appointment.status = AppointmentStatus.REJECTED
            appointment.rejection_reason = reason
            appointment.cancelled_by = ActorRole.DOCTOR.value
            appointment.cancelled_at = now
            self._release_slot(appointment, ActorRole.DOCTOR.value, reason, now)
        elif target == AppointmentStatus.CANCELLED:
            self._cancel(
                appointment,
                ActorRole.DOCTOR.value,
                status_data.cancellation_reason or "Cancelled by doctor",
                now,
            )
        elif target == AppointmentStatus.COMPLETED:
            appointment.status = AppointmentStatus.COMPLETED
            if status_data.notes:
                appointment.doctor_notes = status_data.notes
            if status_data.diagnosis:
                appointment.diagnosis = status_data.diagnosis
            if status_data.treatment_plan:
                appointment.treatment_plan = status_data.treatment_plan
            if appointment.slot is not None:
                appointment.slot.status = SlotStatus.COMPLETED
        else:
            appointment.status = target

    def _cancel(self, appointment: Appointment, cancelled_by: str, reason: str, now: datetime) -> None:
        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancelled_by = cancelled_by
        appointment.cancellation_reason = reason
        appointment.cancelled_at = now
        self._release_slot(appointment, cancelled_by, reason, now)

    def _ensure_transition(self, appointment: Appointment, target: AppointmentStatus) -> None:
        if not can_transition(appointment.status, target):
            raise InvalidOperationError(
                f"Cannot change appointment from {appointment.status.value} to {target.value}"
            )

    def _get_owned_appointment(self, owner_column, owner_id: int, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            owner_column == owner_id,
        ).first()
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def reschedule_directly(self, actor: Actor, appointment_id: int, reschedule_data: DirectReschedule) -> RescheduleResult:
        """Move the patient's own appointment onto another open slot of the same doctor."""
        if actor.role != ActorRole.PATIENT:
            raise PermissionDeniedError(
                "Only patients can directly reschedule. Doctors should use the propose workflow."
            )
        require_role(actor, [ActorRole.PATIENT])

        appointment = self._get_appointment(appointment_id)
        if not actor.owns(appointment):
            raise PermissionDeniedError("Not authorized to reschedule this appointment")

        if appointment.status not in RESCHEDULABLE_STATUSES:
            raise InvalidOperationError("Only pending or confirmed appointments can be rescheduled")

        now = self.clock()
        new_slot = self._lock_slot(reschedule_data.new_slot_id)
        if not new_slot:
            raise NotFoundError("New slot not found")
        if not new_slot.can_be_booked(now) or self._active_appointment_for_slot(new_slot.id):
            raise InvalidOperationError("Selected slot is not available for booking")
        if new_slot.doctor_id != appointment.doctor_id:
            raise InvalidOperationError("New slot must belong to the same doctor")

        original_date = appointment.appointment_date
        self._move_to_slot(appointment, new_slot, ActorRole.PATIENT.value, now)

        appointment.status = AppointmentStatus.CONFIRMED
        appointment.confirmed_at = now
        appointment.last_modified_by = ActorRole.PATIENT.value
        self._supersede_pending_reschedule(
            appointment, ActorRole.PATIENT.value, "Patient rescheduled directly", now
        )
        appointment.record_reschedule(
            original_date,
            ActorRole.PATIENT.value,
            reschedule_data.reason or "Patient rescheduled appointment",
            now,
        )

        self._commit("rescheduling appointment")
        self.db.refresh(appointment)

        logger.info(f"Appointment {appointment.id} moved from {original_date} to {appointment.appointment_date} by patient")
        return RescheduleResult(
            appointment=AppointmentResponse.model_validate(appointment),
            rescheduled_from=original_date,
            rescheduled_to=appointment.appointment_date,
            proposed_by=ActorRole.PATIENT.value,
        )

    def submit_review(self, actor: Actor, appointment_id: int, review_data: ReviewCreate) -> ReviewResult:
        """Rate a completed appointment and refresh the doctor's average."""
        require_role(actor, [ActorRole.PATIENT])
        patient = self._get_patient(actor.profile_id)
        appointment = self._get_owned_appointment(Appointment.patient_id, patient.id, appointment_id)

        if appointment.status != AppointmentStatus.COMPLETED:
            raise InvalidOperationError("You can only review completed appointments")

        appointment.rating = review_data.rating
        appointment.patient_feedback = review_data.feedback or appointment.patient_feedback
        self.db.flush()

        average, total = self.db.query(
            func.avg(Appointment.rating),
            func.count(Appointment.id),
        ).filter(
            Appointment.doctor_id == appointment.doctor_id,
            Appointment.rating.isnot(None),
        ).one()

        doctor = self.db.query(Doctor).filter(Doctor.id == appointment.doctor_id).first()
        doctor.average_rating = float(average)
        doctor.total_reviews = total

        self._commit("submitting review")

        logger.info(f"Appointment {appointment.id} rated {review_data.rating}; doctor {doctor.id} now {doctor.average_rating:.2f}")
        return ReviewResult(
            appointment_id=appointment.id,
            rating=review_data.rating,
            doctor_average_rating=doctor.average_rating,
            doctor_total_reviews=doctor.total_reviews,
        )

    def list_doctor_patients(self, actor: Actor) -> List[PatientSummary]:
        """Distinct patients of the calling doctor with per-patient appointment stats."""
        require_role(actor, [ActorRole.DOCTOR])
        doctor = self._get_doctor(actor.profile_id)
        now = self.clock()

        appointments = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor.id
        ).order_by(Appointment.id.desc()).all()

        summaries: Dict[int, PatientSummary] = {}
        for appointment in appointments:
            patient = appointment.patient
            if patient.id not in summaries:
                summaries[patient.id] = PatientSummary(
                    id=patient.id,
                    first_name=patient.first_name,
                    last_name=patient.last_name,
                    email=patient.email,
                    phone_number=patient.phone_number,
                    stats=PatientStats(),
                )
            stats = summaries[patient.id].stats
            stats.total_appointments += 1

            if appointment.status == AppointmentStatus.COMPLETED:
                stats.completed_appointments += 1
            elif appointment.status == AppointmentStatus.PENDING:
                stats.pending_appointments += 1
            elif appointment.status in (AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED):
                stats.cancelled_appointments += 1

            brief = AppointmentBrief.model_validate(appointment)
            if appointment.appointment_date < now:
                if stats.last_appointment is None or brief.appointment_date > stats.last_appointment.appointment_date:
                    stats.last_appointment = brief
            else:
                if stats.next_appointment is None or brief.appointment_date < stats.next_appointment.appointment_date:
                    stats.next_appointment = brief

        return list(summaries.values())
