from datetime import datetime
from typing import List, Optional
import re

from pydantic import BaseModel, Field, field_validator

from ..core.clock import as_utc_naive
from ..core.config import settings
from ..models.slot import ConsultationType, SlotStatus

TELEMEDICINE_LINK_PATTERN = re.compile(r"^https?://.+")


def _validate_link(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if not TELEMEDICINE_LINK_PATTERN.match(normalized):
        raise ValueError("Telemedicine link must be a valid URL")
    return normalized


class SlotCreate(BaseModel):
    date_time: datetime
    duration: int = Field(
        default=settings.DEFAULT_SLOT_DURATION,
        ge=settings.MIN_SLOT_DURATION,
        le=settings.MAX_SLOT_DURATION,
    )
    consultation_fee: Optional[float] = Field(default=None, ge=0)
    consultation_type: ConsultationType = ConsultationType.IN_PERSON
    notes: Optional[str] = Field(default=None, max_length=500)
    requirements: Optional[str] = Field(default=None, max_length=300)
    telemedicine_link: Optional[str] = None

    @field_validator("date_time")
    @classmethod
    def normalize_date_time(cls, value: datetime) -> datetime:
        return as_utc_naive(value)

    @field_validator("telemedicine_link")
    @classmethod
    def validate_telemedicine_link(cls, value: Optional[str]) -> Optional[str]:
        return _validate_link(value)


class SlotUpdate(BaseModel):
    date_time: Optional[datetime] = None
    duration: Optional[int] = Field(
        default=None,
        ge=settings.MIN_SLOT_DURATION,
        le=settings.MAX_SLOT_DURATION,
    )
    consultation_fee: Optional[float] = Field(default=None, ge=0)
    consultation_type: Optional[ConsultationType] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    requirements: Optional[str] = Field(default=None, max_length=300)
    telemedicine_link: Optional[str] = None

    @field_validator("date_time")
    @classmethod
    def normalize_date_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc_naive(value)

    @field_validator("telemedicine_link")
    @classmethod
    def validate_telemedicine_link(cls, value: Optional[str]) -> Optional[str]:
        return _validate_link(value)


class SlotResponse(BaseModel):
    id: int
    doctor_id: int
    date_time: datetime
    end_time: datetime
    duration: int
    consultation_fee: float
    consultation_type: ConsultationType
    notes: Optional[str] = None
    requirements: Optional[str] = None
    telemedicine_link: Optional[str] = None
    is_available: bool
    is_booked: bool
    patient_id: Optional[int] = None
    status: SlotStatus

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, returned: int, total: int) -> "Pagination":
        skip = (page - 1) * limit
        return cls(
            current_page=page,
            total_pages=(total + limit - 1) // limit,
            total_items=total,
            has_next_page=skip + returned < total,
            has_prev_page=page > 1,
        )


class SlotPage(BaseModel):
    slots: List[SlotResponse]
    pagination: Pagination


class BulkDeleteResult(BaseModel):
    deleted_count: int
