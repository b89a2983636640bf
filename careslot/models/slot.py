from datetime import datetime, timedelta
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Float, Text, Index, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base
from ..core.exceptions import InvalidOperationError

class SlotStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"

class ConsultationType(str, enum.Enum):
    IN_PERSON = "in-person"
    TELEMEDICINE = "telemedicine"
    PHONE = "phone"

class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        Index("ix_slots_doctor_date_time", "doctor_id", "date_time"),
        Index("ix_slots_available_booked", "is_available", "is_booked"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)

    # Timing
    date_time = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=30)

    # Consultation details
    consultation_fee = Column(Float, nullable=False, default=0)
    consultation_type = Column(SQLEnum(ConsultationType), nullable=False, default=ConsultationType.IN_PERSON)
    notes = Column(String(500), nullable=True)
    requirements = Column(String(300), nullable=True)
    telemedicine_link = Column(String(500), nullable=True)

    # Booking state
    is_available = Column(Boolean, nullable=False, default=True)
    is_booked = Column(Boolean, nullable=False, default=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True)
    status = Column(SQLEnum(SlotStatus), nullable=False, default=SlotStatus.ACTIVE)

    # Release tracking
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(20), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="slots")
    patient = relationship("Patient")
    appointments = relationship("Appointment", back_populates="slot")

    @property
    def end_time(self) -> datetime:
        return self.date_time + timedelta(minutes=self.duration or 0)

    def is_past(self, now: datetime) -> bool:
        return self.date_time < now

    def can_be_booked(self, now: datetime) -> bool:
        """Whether a patient may take this slot at ``now``."""
        return (
            bool(self.is_available)
            and not self.is_booked
            and self.status == SlotStatus.ACTIVE
            and not self.is_past(now)
        )

    @property
    def is_historical(self) -> bool:
        """Referenced by at least one appointment record."""
        return len(self.appointments) > 0

    def book(self, patient_id: int, now: datetime) -> None:
        if not self.can_be_booked(now):
            raise InvalidOperationError("This slot cannot be booked")

        self.is_booked = True
        self.is_available = False
        self.patient_id = patient_id

    def release(self, cancelled_by: str, reason: str, now: datetime) -> None:
        """Give a booked slot back to the doctor's open schedule."""
        if not self.is_booked:
            raise InvalidOperationError("This slot is not booked")

        self.is_booked = False
        self.is_available = True
        self.patient_id = None
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by
        self.cancelled_at = now

    def __repr__(self):
        return f"<Slot(id={self.id}, doctor_id={self.doctor_id}, date_time='{self.date_time}', booked={self.is_booked})>"
