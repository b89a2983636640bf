from datetime import timedelta

import pytest

from careslot.core.access import Actor
from careslot.core.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    PermissionDeniedError,
)
from careslot.models import Appointment, AppointmentStatus, ConsultationType, Slot
from careslot.schemas.slot import SlotCreate, SlotUpdate
from careslot.services.slot_service import SlotService


@pytest.fixture
def service(db):
    return SlotService(db)


class TestCreateSlot:

    def test_create_slot_defaults_fee_to_doctor(self, service, doctor, now):
        """Slots without an explicit fee inherit the doctor's fee."""
        slot = service.create_slot(
            Actor.doctor(doctor.id),
            SlotCreate(date_time=now + timedelta(days=1)),
        )
        assert slot.id is not None
        assert slot.consultation_fee == doctor.consultation_fee
        assert slot.duration == 30
        assert slot.can_be_booked(now)

    def test_create_slot_in_past(self, service, doctor, now):
        """Test create slot in past."""
        with pytest.raises(InvalidOperationError) as exc:
            service.create_slot(Actor.doctor(doctor.id), SlotCreate(date_time=now - timedelta(hours=1)))
        assert exc.value.detail == "Cannot create slots in the past"

    def test_duplicate_slot_conflicts(self, service, doctor, now):
        """Test duplicate slot conflicts."""
        when = now.replace(microsecond=0) + timedelta(days=2)
        service.create_slot(Actor.doctor(doctor.id), SlotCreate(date_time=when))
        with pytest.raises(ConflictError) as exc:
            service.create_slot(Actor.doctor(doctor.id), SlotCreate(date_time=when))
        assert exc.value.status_code == 409

    def test_patient_cannot_create_slots(self, service, patient, now):
        """Test patient cannot create slots."""
        with pytest.raises(PermissionDeniedError):
            service.create_slot(Actor.patient(patient.id), SlotCreate(date_time=now + timedelta(days=1)))

    def test_unknown_doctor_profile(self, service, now):
        """Test unknown doctor profile."""
        with pytest.raises(NotFoundError) as exc:
            service.create_slot(Actor.doctor(999), SlotCreate(date_time=now + timedelta(days=1)))
        assert exc.value.detail == "Doctor profile not found"


class TestUpdateAndDeleteSlot:

    def test_update_slot(self, service, doctor, make_slot):
        """Test update slot."""
        slot = make_slot(doctor)
        updated = service.update_slot(
            Actor.doctor(doctor.id),
            slot.id,
            SlotUpdate(duration=45, consultation_type=ConsultationType.TELEMEDICINE),
        )
        assert updated.duration == 45
        assert updated.consultation_type == ConsultationType.TELEMEDICINE

    def test_update_requires_fields(self, service, doctor, make_slot):
        """Test update requires fields."""
        slot = make_slot(doctor)
        with pytest.raises(InvalidOperationError) as exc:
            service.update_slot(Actor.doctor(doctor.id), slot.id, SlotUpdate())
        assert exc.value.detail == "No valid fields to update"

    def test_update_booked_slot(self, service, doctor, patient, make_slot):
        """Test update booked slot."""
        slot = make_slot(doctor, is_booked=True, is_available=False, patient_id=patient.id)
        with pytest.raises(InvalidOperationError) as exc:
            service.update_slot(Actor.doctor(doctor.id), slot.id, SlotUpdate(duration=60))
        assert exc.value.detail == "Cannot update a booked slot"

    def test_other_doctors_slot_not_found(self, service, doctor, make_doctor, make_slot):
        """Test other doctors slot not found."""
        other = make_doctor(first_name="Peter")
        slot = make_slot(other)
        with pytest.raises(NotFoundError):
            service.delete_slot(Actor.doctor(doctor.id), slot.id)

    def test_delete_slot(self, service, db, doctor, make_slot):
        """Test delete slot."""
        slot = make_slot(doctor)
        service.delete_slot(Actor.doctor(doctor.id), slot.id)
        assert db.query(Slot).count() == 0

    def test_delete_booked_slot(self, service, doctor, patient, make_slot):
        """Test delete booked slot."""
        slot = make_slot(doctor, is_booked=True, is_available=False, patient_id=patient.id)
        with pytest.raises(InvalidOperationError) as exc:
            service.delete_slot(Actor.doctor(doctor.id), slot.id)
        assert exc.value.detail == "Cannot delete a booked slot. Cancel the appointment first."

    def test_delete_historical_slot(self, service, db, doctor, patient, make_slot):
        """A released slot still referenced by a cancelled appointment is kept."""
        slot = make_slot(doctor)
        db.add(Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            slot_id=slot.id,
            appointment_date=slot.date_time,
            reason_for_visit="Checkup",
            status=AppointmentStatus.CANCELLED,
        ))
        db.commit()
        db.refresh(slot)

        with pytest.raises(InvalidOperationError) as exc:
            service.delete_slot(Actor.doctor(doctor.id), slot.id)
        assert exc.value.detail == "Cannot delete a slot that appointment history refers to"

    def test_delete_unbooked_slots(self, service, db, doctor, patient, make_slot):
        """Test delete unbooked slots."""
        make_slot(doctor, hours_ahead=24)
        make_slot(doctor, hours_ahead=48)
        make_slot(doctor, hours_ahead=72, is_booked=True, is_available=False, patient_id=patient.id)

        result = service.delete_unbooked_slots(Actor.doctor(doctor.id))
        assert result.deleted_count == 2
        assert db.query(Slot).count() == 1


class TestListSlots:

    def test_list_doctor_slots_filters(self, service, doctor, patient, make_slot):
        """Test list doctor slots filters."""
        make_slot(doctor, hours_ahead=24)
        make_slot(doctor, hours_ahead=48, is_booked=True, is_available=False, patient_id=patient.id)

        actor = Actor.doctor(doctor.id)
        assert service.list_doctor_slots(actor).pagination.total_items == 2
        assert len(service.list_doctor_slots(actor, status_filter="available").slots) == 1
        assert len(service.list_doctor_slots(actor, status_filter="booked").slots) == 1
        assert len(service.list_doctor_slots(actor, status_filter="cancelled").slots) == 0

    def test_list_doctor_slots_paginates(self, service, doctor, make_slot):
        """Test list doctor slots paginates."""
        for hours in (24, 48, 72):
            make_slot(doctor, hours_ahead=hours)

        page = service.list_doctor_slots(Actor.doctor(doctor.id), page=1, limit=2)
        assert len(page.slots) == 2
        assert page.slots[0].date_time < page.slots[1].date_time
        assert page.pagination.total_pages == 2
        assert page.pagination.has_next_page

    def test_unknown_status_filter(self, service, doctor):
        """Test unknown status filter."""
        with pytest.raises(InvalidOperationError):
            service.list_doctor_slots(Actor.doctor(doctor.id), status_filter="sleeping")

    def test_list_available_slots(self, service, doctor, patient, make_slot):
        """Only future, open, active slots are public."""
        open_slot = make_slot(doctor, hours_ahead=24)
        make_slot(doctor, hours_ahead=-24)
        make_slot(doctor, hours_ahead=48, is_booked=True, is_available=False, patient_id=patient.id)
        make_slot(doctor, hours_ahead=72, consultation_type=ConsultationType.PHONE)

        slots = service.list_available_slots(doctor.id)
        assert [slot.id for slot in slots][0] == open_slot.id
        assert len(slots) == 2

        phone_only = service.list_available_slots(doctor.id, consultation_type=ConsultationType.PHONE)
        assert len(phone_only) == 1

    def test_list_available_slots_unknown_doctor(self, service):
        """Test list available slots unknown doctor."""
        with pytest.raises(NotFoundError) as exc:
            service.list_available_slots(12345)
        assert exc.value.detail == "Doctor not found"
