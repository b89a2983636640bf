import logging

from ..core.access import Actor, ActorRole, require_role
from ..core.exceptions import InvalidOperationError, NotFoundError, PermissionDeniedError
from ..models.appointment import (
    RESCHEDULABLE_STATUSES,
    Appointment,
    AppointmentStatus,
    ProposalDecision,
    RescheduleProposal,
)
from ..schemas.appointment import AppointmentResponse
from ..schemas.reschedule import (
    RescheduleDecisionCreate,
    RescheduleDecisionResult,
    RescheduleProposalCreate,
    RescheduleProposalResponse,
)
from .base import ServiceBase

logger = logging.getLogger(__name__)

class RescheduleService(ServiceBase):
    """Two-party reschedule negotiation.

    One side of the appointment proposes a new slot or a new date/time, the
    other side approves or rejects it. Only one proposal may be open per
    appointment; closed proposals are kept as history.
    """

    def propose(self, actor: Actor, appointment_id: int, proposal_data: RescheduleProposalCreate) -> RescheduleProposal:
        require_role(actor, [ActorRole.DOCTOR, ActorRole.PATIENT])
        appointment = self._get_appointment(appointment_id)

        if not actor.owns(appointment):
            raise PermissionDeniedError("Not authorized for this appointment")

        if appointment.status not in RESCHEDULABLE_STATUSES:
            raise InvalidOperationError("Only pending or confirmed appointments can be rescheduled")

        existing = appointment.pending_reschedule
        if existing is not None:
            raise InvalidOperationError(
                f"There is already an active reschedule proposal by {existing.proposed_by}"
            )

        now = self.clock()
        proposal = RescheduleProposal(
            proposed_by=actor.role.value,
            proposed_at=now,
            reason=proposal_data.reason,
            active=True,
        )

        if proposal_data.proposed_slot_id is not None:
            slot = self._lock_slot(proposal_data.proposed_slot_id)
            if not slot:
                raise NotFoundError("Proposed slot not found")
            if not slot.can_be_booked(now) or self._active_appointment_for_slot(slot.id):
                raise InvalidOperationError("Proposed slot is not available")
            if slot.doctor_id != appointment.doctor_id:
                raise InvalidOperationError("Slot must belong to the same doctor")

            proposal.targets_slot = True
            proposal.proposed_slot_id = slot.id
            proposal.proposed_date_time = slot.date_time
        else:
            if proposal_data.proposed_date_time < now:
                raise InvalidOperationError("Proposed date/time must be a valid future date")
            proposal.proposed_date_time = proposal_data.proposed_date_time

        appointment.reschedule_proposals.append(proposal)
        appointment.last_modified_by = actor.role.value

        self._commit("proposing reschedule")
        self.db.refresh(proposal)

        logger.info(
            f"Reschedule of appointment {appointment.id} to {proposal.proposed_date_time} "
            f"proposed by {proposal.proposed_by}"
        )
        return proposal

    def decide(self, actor: Actor, appointment_id: int, decision_data: RescheduleDecisionCreate) -> RescheduleDecisionResult:
        """Approve or reject the open proposal on behalf of the counterparty.

        Approval moves the appointment onto the proposed slot, or retimes the
        slot it already holds when only a date/time was proposed. Either way
        the appointment ends up confirmed.
        """
        require_role(actor, [ActorRole.DOCTOR, ActorRole.PATIENT])
        appointment = self._get_appointment(appointment_id)

        proposal = appointment.pending_reschedule
        if proposal is None:
            raise InvalidOperationError("No pending reschedule to decide")

        if ActorRole(proposal.proposed_by).counterparty != actor.role:
            raise PermissionDeniedError("Only the other party can decide on this proposal")

        if not actor.owns(appointment):
            raise PermissionDeniedError("Not authorized to decide on this appointment")

        now = self.clock()

        if decision_data.decision == ProposalDecision.REJECTED.value:
            proposal.close(ProposalDecision.REJECTED, actor.role.value, decision_data.reason, now)
            appointment.last_modified_by = actor.role.value

            self._commit("rejecting reschedule")
            self.db.refresh(appointment)

            logger.info(f"Reschedule proposal {proposal.id} for appointment {appointment.id} rejected by {actor.role.value}")
            return RescheduleDecisionResult(
                decision=ProposalDecision.REJECTED,
                appointment=AppointmentResponse.model_validate(appointment),
                proposal=RescheduleProposalResponse.model_validate(proposal),
                proposed_by=proposal.proposed_by,
                decided_by=actor.role.value,
            )

        original_date = appointment.appointment_date

        if proposal.targets_slot:
            new_slot = None
            if proposal.proposed_slot_id is not None:
                new_slot = self._lock_slot(proposal.proposed_slot_id)
            if (
                new_slot is None
                or not new_slot.can_be_booked(now)
                or self._active_appointment_for_slot(new_slot.id, exclude_id=appointment.id)
            ):
                raise InvalidOperationError("Proposed slot is no longer available")

            self._ensure_doctor_free(appointment.doctor_id, new_slot.date_time, appointment.id)
            self._move_to_slot(appointment, new_slot, actor.role.value, now)
        else:
            target = proposal.proposed_date_time
            if target < now:
                raise InvalidOperationError("Proposed date/time is no longer in the future")

            self._ensure_doctor_free(appointment.doctor_id, target, appointment.id)
            self._retime(appointment, target)

        appointment.status = AppointmentStatus.CONFIRMED
        appointment.confirmed_at = now
        appointment.last_modified_by = actor.role.value
        proposal.close(ProposalDecision.APPROVED, actor.role.value, decision_data.reason, now)
        appointment.record_reschedule(
            original_date,
            proposal.proposed_by,
            proposal.reason or f"Reschedule proposed by {proposal.proposed_by}",
            now,
        )

        self._commit("approving reschedule")
        self.db.refresh(appointment)

        logger.info(
            f"Appointment {appointment.id} rescheduled from {original_date} to "
            f"{appointment.appointment_date} ({proposal.proposed_by} -> {actor.role.value})"
        )
        return RescheduleDecisionResult(
            decision=ProposalDecision.APPROVED,
            appointment=AppointmentResponse.model_validate(appointment),
            proposal=RescheduleProposalResponse.model_validate(proposal),
            rescheduled_from=original_date,
            rescheduled_to=appointment.appointment_date,
            proposed_by=proposal.proposed_by,
            decided_by=actor.role.value,
        )

    def get_pending(self, actor: Actor, appointment_id: int) -> RescheduleProposal:
        """The open proposal of an appointment the caller takes part in."""
        require_role(actor, [ActorRole.DOCTOR, ActorRole.PATIENT])
        appointment: Appointment = self._get_appointment(appointment_id)
        if not actor.owns(appointment):
            raise PermissionDeniedError("Not authorized for this appointment")

        proposal = appointment.pending_reschedule
        if proposal is None:
            raise NotFoundError("No pending reschedule for this appointment")
        return proposal
