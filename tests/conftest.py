import os
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set testing environment before the application modules read their settings
os.environ["TESTING"] = "1"

from careslot.core.clock import utcnow
from careslot.core.database import Base
from careslot.models import Doctor, Patient, Slot, SlotStatus, ConsultationType

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def now():
    return utcnow()


@pytest.fixture
def make_doctor(db):
    def _make_doctor(**overrides):
        values = {
            "first_name": "Grace",
            "last_name": "Otieno",
            "specialization": "Cardiology",
            "consultation_fee": 80.0,
        }
        values.update(overrides)
        doctor = Doctor(**values)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor
    return _make_doctor


@pytest.fixture
def make_patient(db):
    def _make_patient(**overrides):
        values = {
            "first_name": "Amos",
            "last_name": "Kariuki",
            "email": "amos@example.com",
            "phone_number": "+254700000001",
        }
        values.update(overrides)
        patient = Patient(**values)
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient
    return _make_patient


@pytest.fixture
def make_slot(db, now):
    def _make_slot(doctor, hours_ahead=24, **overrides):
        values = {
            "doctor_id": doctor.id,
            "date_time": now.replace(microsecond=0) + timedelta(hours=hours_ahead),
            "duration": 30,
            "consultation_fee": 80.0,
            "consultation_type": ConsultationType.IN_PERSON,
            "is_available": True,
            "is_booked": False,
            "status": SlotStatus.ACTIVE,
        }
        values.update(overrides)
        slot = Slot(**values)
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot
    return _make_slot


@pytest.fixture
def doctor(make_doctor):
    return make_doctor()


@pytest.fixture
def patient(make_patient):
    return make_patient()
