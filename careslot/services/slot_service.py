from datetime import datetime
from typing import List, Optional
import logging

from ..core.access import Actor, ActorRole, require_role
from ..core.clock import as_utc_naive
from ..core.config import settings
from ..core.exceptions import InvalidOperationError, NotFoundError
from ..models.slot import ConsultationType, Slot, SlotStatus
from ..schemas.slot import BulkDeleteResult, Pagination, SlotCreate, SlotPage, SlotResponse, SlotUpdate
from .base import ServiceBase

logger = logging.getLogger(__name__)

SLOT_STATUS_FILTERS = ("all", "available", "booked") + tuple(status.value for status in SlotStatus)

class SlotService(ServiceBase):
    """Doctor-side management of bookable slots, plus the public listing."""

    def list_doctor_slots(
        self,
        actor: Actor,
        status_filter: str = "all",
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> SlotPage:
        require_role(actor, [ActorRole.DOCTOR])
        doctor = self._get_doctor(actor.profile_id)
        limit = limit or settings.DEFAULT_PAGE_SIZE

        if status_filter not in SLOT_STATUS_FILTERS:
            raise InvalidOperationError(
                f"Unknown slot status filter '{status_filter}'"
            )
        if page < 1 or limit < 1:
            raise InvalidOperationError("Page and limit must be positive")

        query = self.db.query(Slot).filter(Slot.doctor_id == doctor.id)

        if status_filter == "available":
            query = query.filter(
                Slot.is_available.is_(True),
                Slot.is_booked.is_(False),
                Slot.status == SlotStatus.ACTIVE,
            )
        elif status_filter == "booked":
            query = query.filter(Slot.is_booked.is_(True))
        elif status_filter != "all":
            query = query.filter(Slot.status == SlotStatus(status_filter))

        if from_date:
            query = query.filter(Slot.date_time >= as_utc_naive(from_date))
        if to_date:
            query = query.filter(Slot.date_time <= as_utc_naive(to_date))

        total = query.count()
        slots = query.order_by(Slot.date_time.asc()).offset((page - 1) * limit).limit(limit).all()

        return SlotPage(
            slots=[SlotResponse.model_validate(slot) for slot in slots],
            pagination=Pagination.build(page, limit, len(slots), total),
        )

    def create_slot(self, actor: Actor, slot_data: SlotCreate) -> Slot:
        """Open a new bookable slot on the calling doctor's schedule."""
        require_role(actor, [ActorRole.DOCTOR])
        doctor = self._get_doctor(actor.profile_id)

        if slot_data.date_time < self.clock():
            raise InvalidOperationError("Cannot create slots in the past")

        self._ensure_no_duplicate_slot(doctor.id, slot_data.date_time)

        fee = slot_data.consultation_fee
        if fee is None:
            fee = doctor.consultation_fee or 0

        slot = Slot(
            doctor_id=doctor.id,
            date_time=slot_data.date_time,
            duration=slot_data.duration,
            consultation_fee=fee,
            consultation_type=slot_data.consultation_type,
            notes=slot_data.notes,
            requirements=slot_data.requirements,
            telemedicine_link=slot_data.telemedicine_link,
            is_available=True,
            is_booked=False,
            status=SlotStatus.ACTIVE,
        )

        self.db.add(slot)
        self._commit("creating slot")
        self.db.refresh(slot)

        logger.info(f"Doctor {doctor.id} opened slot {slot.id} at {slot.date_time}")
        return slot

    def update_slot(self, actor: Actor, slot_id: int, slot_data: SlotUpdate) -> Slot:
        require_role(actor, [ActorRole.DOCTOR])
        slot = self._get_own_slot(actor, slot_id)

        if slot.is_booked:
            raise InvalidOperationError("Cannot update a booked slot")

        updates = slot_data.model_dump(exclude_unset=True, exclude_none=True)
        if not updates:
            raise InvalidOperationError("No valid fields to update")

        if "date_time" in updates:
            if updates["date_time"] < self.clock():
                raise InvalidOperationError("Cannot schedule slots in the past")
            self._ensure_no_duplicate_slot(slot.doctor_id, updates["date_time"], exclude_id=slot.id)

        for field, value in updates.items():
            setattr(slot, field, value)

        self._commit("updating slot")
        self.db.refresh(slot)

        logger.info(f"Slot {slot.id} updated: {sorted(updates)}")
        return slot

    def delete_slot(self, actor: Actor, slot_id: int) -> None:
        require_role(actor, [ActorRole.DOCTOR])
        slot = self._get_own_slot(actor, slot_id)

        if slot.is_booked:
            raise InvalidOperationError("Cannot delete a booked slot. Cancel the appointment first.")
        if slot.is_historical:
            raise InvalidOperationError("Cannot delete a slot that appointment history refers to")
        if self._open_proposal_for_slot(slot.id):
            raise InvalidOperationError("Cannot delete a slot offered in an open reschedule proposal")

        self.db.delete(slot)
        self._commit("deleting slot")

        logger.info(f"Slot {slot_id} deleted by doctor {actor.profile_id}")

    def delete_unbooked_slots(self, actor: Actor) -> BulkDeleteResult:
        """Remove every unbooked slot of the doctor that nothing else refers to."""
        require_role(actor, [ActorRole.DOCTOR])
        doctor = self._get_doctor(actor.profile_id)

        candidates = self.db.query(Slot).filter(
            Slot.doctor_id == doctor.id,
            Slot.is_booked.is_(False),
        ).all()

        deleted = 0
        for slot in candidates:
            if not self._slot_is_removable(slot):
                continue
            self.db.delete(slot)
            deleted += 1

        self._commit("deleting unbooked slots")

        logger.info(f"Deleted {deleted} unbooked slots for doctor {doctor.id}")
        return BulkDeleteResult(deleted_count=deleted)

    def list_available_slots(
        self,
        doctor_id: int,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        consultation_type: Optional[ConsultationType] = None,
    ) -> List[Slot]:
        """Bookable slots of a doctor, soonest first."""
        self._get_doctor(doctor_id, detail="Doctor not found")

        now = self.clock()
        start = max(as_utc_naive(from_date), now) if from_date else now

        query = self.db.query(Slot).filter(
            Slot.doctor_id == doctor_id,
            Slot.is_available.is_(True),
            Slot.is_booked.is_(False),
            Slot.status == SlotStatus.ACTIVE,
            Slot.date_time >= start,
        )
        if to_date:
            query = query.filter(Slot.date_time <= as_utc_naive(to_date))
        if consultation_type:
            query = query.filter(Slot.consultation_type == consultation_type)

        return query.order_by(Slot.date_time.asc()).limit(settings.PUBLIC_SLOT_LIMIT).all()

    def _get_own_slot(self, actor: Actor, slot_id: int) -> Slot:
        slot = self.db.query(Slot).filter(
            Slot.id == slot_id,
            Slot.doctor_id == actor.profile_id,
        ).first()
        if not slot:
            raise NotFoundError("Slot not found")
        return slot
