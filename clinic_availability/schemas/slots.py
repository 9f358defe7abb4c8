# clinic_availability/schemas/slots.py
"""
Pydantic schemas for slots API.
"""

from datetime import date, datetime
from pydantic import BaseModel, Field


class SlotInfo(BaseModel):
    """A single bookable slot."""
    start_time: datetime
    end_time: datetime
    staff_id: int
    shift_id: int

    model_config = {"from_attributes": True}


class SlotsDayResponse(BaseModel):
    """Bookable slots of a service at a location on one day."""
    service_id: int
    location_id: int
    date: date
    staff_id: int | None = None
    repeat_type_id: int | None = None
    slots: list[SlotInfo]

    model_config = {"from_attributes": True}


class HeatmapDayInfo(BaseModel):
    """Slot count of one day; available_slots is null when the day failed."""
    date: date
    available_slots: int | None = None
    error: str | None = Field(default=None, description="Error kind, 'timeout' or 'error'")

    model_config = {"from_attributes": True}


class HeatmapResponse(BaseModel):
    service_id: int
    location_id: int
    start: date
    end: date
    days: list[HeatmapDayInfo]
    complete: bool = Field(description="False when at least one day failed")


class HoldCreate(BaseModel):
    """Hold a slot for a checkout session."""
    staff_id: int
    start_time: datetime
    end_time: datetime
    session_token: str = Field(min_length=8, max_length=128)


class HoldResponse(BaseModel):
    staff_id: int
    start_time: datetime
    end_time: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class HoldsReleased(BaseModel):
    released: int


class CacheCleared(BaseModel):
    cleared: int
