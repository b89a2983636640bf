from datetime import timedelta
import logging

from sqlalchemy import or_

from ..core.access import Actor, ActorRole, require_role
from ..core.config import settings
from ..models.appointment import Appointment, AppointmentStatus, ProposalDecision, RescheduleProposal
from ..models.slot import Slot
from ..schemas.maintenance import CleanupReport
from .base import ServiceBase

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# A later appointment in one of these statuses replaces a stale rescheduled one
SUPERSEDING_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.COMPLETED,
)

class MaintenanceService(ServiceBase):
    """Periodic housekeeping over proposals, appointments and slots."""

    def run_cleanup(self, actor: Actor) -> CleanupReport:
        require_role(actor, [ActorRole.ADMIN])
        now = self.clock()
        report = CleanupReport()

        report.proposals_expired = self._expire_proposals(now)
        report.appointments_confirmed, report.appointments_superseded = self._settle_rescheduled(now)
        report.slots_deleted = self._delete_stale_slots(now)

        self._commit("running cleanup")

        logger.info(
            f"Cleanup finished: {report.proposals_expired} proposals expired, "
            f"{report.appointments_confirmed} appointments confirmed, "
            f"{report.appointments_superseded} superseded, {report.slots_deleted} slots deleted"
        )
        return report

    def _expire_proposals(self, now) -> int:
        cutoff = now - timedelta(days=settings.PROPOSAL_EXPIRY_DAYS)
        stale = self.db.query(RescheduleProposal).filter(
            RescheduleProposal.active.is_(True),
            or_(
                RescheduleProposal.proposed_at < cutoff,
                RescheduleProposal.proposed_date_time < now,
            ),
        ).all()

        for proposal in stale:
            proposal.close(ProposalDecision.EXPIRED, SYSTEM_ACTOR, "Proposal expired", now)
            logger.debug(f"Expired reschedule proposal {proposal.id} (appointment {proposal.appointment_id})")
        self.db.flush()
        return len(stale)

    def _settle_rescheduled(self, now):
        confirmed = 0
        superseded = 0

        rescheduled = self.db.query(Appointment).filter(
            Appointment.status == AppointmentStatus.RESCHEDULED
        ).order_by(Appointment.id.asc()).all()

        for appointment in rescheduled:
            newer = self.db.query(Appointment).filter(
                Appointment.doctor_id == appointment.doctor_id,
                Appointment.patient_id == appointment.patient_id,
                Appointment.id > appointment.id,
                Appointment.status.in_(SUPERSEDING_STATUSES),
            ).order_by(Appointment.id.asc()).first()

            if newer:
                reason = f"Superseded by appointment {newer.id}"
                appointment.status = AppointmentStatus.CANCELLED
                appointment.cancelled_by = SYSTEM_ACTOR
                appointment.cancellation_reason = reason
                appointment.cancelled_at = now
                self._release_slot(appointment, SYSTEM_ACTOR, reason, now)
                self._supersede_pending_reschedule(appointment, SYSTEM_ACTOR, reason, now)
                superseded += 1
                logger.debug(f"Appointment {appointment.id} cancelled, superseded by {newer.id}")
            else:
                appointment.status = AppointmentStatus.CONFIRMED
                appointment.confirmed_at = appointment.confirmed_at or now
                confirmed += 1
                logger.debug(f"Appointment {appointment.id} confirmed after reschedule")

            appointment.last_modified_by = SYSTEM_ACTOR

        return confirmed, superseded

    def _delete_stale_slots(self, now) -> int:
        cutoff = now - timedelta(days=settings.SLOT_RETENTION_DAYS)
        candidates = self.db.query(Slot).filter(
            Slot.is_booked.is_(False),
            Slot.date_time < cutoff,
        ).all()

        deleted = 0
        for slot in candidates:
            if not self._slot_is_removable(slot):
                continue
            self.db.delete(slot)
            deleted += 1
        return deleted
