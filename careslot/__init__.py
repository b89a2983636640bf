"""
Careslot Scheduling Service

Slot publication, booking, the appointment status lifecycle and two-party
reschedule negotiation between doctors and patients, on SQLAlchemy and FastAPI.
"""

__version__ = "1.0.0"
