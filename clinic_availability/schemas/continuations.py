# clinic_availability/schemas/continuations.py
"""
Pydantic schemas for repeat-booking continuation tokens.
"""

from datetime import datetime
from pydantic import BaseModel, Field


class ContinuationCreate(BaseModel):
    origin_booking_id: int
    repeat_type_id: int
    remaining_visits: int | None = Field(default=None, ge=1)


class RepeatTypeInfo(BaseModel):
    id: int
    service_id: int
    label: str | None = None
    duration_minutes: int
    price_eur_cents: int | None = None
    visit_count: int

    model_config = {"from_attributes": True}


class ContinuationInfo(BaseModel):
    """Token state; the token itself is only returned on issue."""
    id: int
    origin_booking_id: int
    repeat_type_id: int
    remaining_visits: int
    expires_at: datetime
    consumed: bool
    claimed_booking_id: int | None = None

    model_config = {"from_attributes": True}


class ContinuationIssued(ContinuationInfo):
    token: str


class ContinuationDetails(BaseModel):
    """What a valid token unlocks: the service to query slots for and at which duration."""
    continuation: ContinuationInfo
    repeat_type: RepeatTypeInfo
    service_id: int
    location_id: int
    client_id: int | None = None
    is_twin: bool = False


class FollowUpCreate(BaseModel):
    staff_id: int
    start_time: datetime
    shift_id: int | None = None
    location_id: int | None = None
    client_id: int | None = None


class BookingInfo(BaseModel):
    id: int
    staff_id: int
    location_id: int
    service_id: int
    start_time: datetime
    end_time: datetime
    status: str
    price_eur_cents: int | None = None
    parent_booking_id: int | None = None
    continuation_id: int | None = None
    repeat_type_id: int | None = None

    model_config = {"from_attributes": True}


class FollowUpResponse(BaseModel):
    booking: BookingInfo
    next_continuation: ContinuationIssued | None = None
