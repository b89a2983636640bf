"""Caller identity and ownership checks for scheduling operations."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .exceptions import PermissionDeniedError


class ActorRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"

    @property
    def counterparty(self) -> "ActorRole":
        """The other side of a doctor/patient negotiation."""
        if self == ActorRole.DOCTOR:
            return ActorRole.PATIENT
        if self == ActorRole.PATIENT:
            return ActorRole.DOCTOR
        raise ValueError(f"Role '{self.value}' has no counterparty")


class Actor(BaseModel):
    """The already-authenticated caller of a service operation.

    ``profile_id`` is the doctor id for doctors and the patient id for
    patients. Admins carry no profile.
    """
    role: ActorRole
    profile_id: Optional[int] = None

    @classmethod
    def doctor(cls, doctor_id: int) -> "Actor":
        return cls(role=ActorRole.DOCTOR, profile_id=doctor_id)

    @classmethod
    def patient(cls, patient_id: int) -> "Actor":
        return cls(role=ActorRole.PATIENT, profile_id=patient_id)

    @classmethod
    def admin(cls) -> "Actor":
        return cls(role=ActorRole.ADMIN)

    def owns(self, appointment) -> bool:
        """Whether this actor is the doctor or patient of ``appointment``."""
        if self.profile_id is None:
            return False
        if self.role == ActorRole.DOCTOR:
            return appointment.doctor_id == self.profile_id
        if self.role == ActorRole.PATIENT:
            return appointment.patient_id == self.profile_id
        return False


def require_role(actor: Actor, allowed_roles: List[ActorRole]) -> Actor:
    """Raise unless ``actor`` has one of ``allowed_roles``."""
    if actor.role not in allowed_roles:
        raise PermissionDeniedError(
            f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
        )
    if actor.role != ActorRole.ADMIN and actor.profile_id is None:
        raise PermissionDeniedError(f"No {actor.role.value} profile attached to the caller")
    return actor
