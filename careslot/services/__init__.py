from .appointment_service import AppointmentService
from .maintenance_service import MaintenanceService
from .reschedule_service import RescheduleService
from .slot_service import SlotService

__all__ = [
    "AppointmentService",
    "MaintenanceService",
    "RescheduleService",
    "SlotService",
]
