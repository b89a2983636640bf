from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..core.clock import as_utc_naive
from ..models.appointment import ProposalDecision
from .appointment import AppointmentResponse


class RescheduleProposalCreate(BaseModel):
    proposed_slot_id: Optional[int] = None
    proposed_date_time: Optional[datetime] = None
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("proposed_date_time")
    @classmethod
    def normalize_proposed_date_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc_naive(value)

    @model_validator(mode="after")
    def validate_target(self) -> "RescheduleProposalCreate":
        if self.proposed_slot_id is None and self.proposed_date_time is None:
            raise ValueError("Provide proposed_slot_id or proposed_date_time")
        if self.proposed_slot_id is not None and self.proposed_date_time is not None:
            raise ValueError("Provide either proposed_slot_id or proposed_date_time, not both")
        return self


class RescheduleDecisionCreate(BaseModel):
    decision: Literal["approved", "rejected"]
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleProposalResponse(BaseModel):
    id: int
    appointment_id: int
    active: bool
    proposed_by: str
    proposed_at: datetime
    reason: Optional[str] = None
    targets_slot: bool = False
    proposed_slot_id: Optional[int] = None
    proposed_date_time: datetime
    decision: Optional[ProposalDecision] = None
    decided_by: Optional[str] = None
    decision_at: Optional[datetime] = None
    decision_reason: Optional[str] = None

    class Config:
        from_attributes = True


class RescheduleDecisionResult(BaseModel):
    decision: ProposalDecision
    appointment: AppointmentResponse
    proposal: RescheduleProposalResponse
    rescheduled_from: Optional[datetime] = None
    rescheduled_to: Optional[datetime] = None
    proposed_by: str
    decided_by: str
