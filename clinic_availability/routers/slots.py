# clinic_availability/routers/slots.py
"""
Slots API endpoints.

GET /slots/day      - Bookable slots for a service on a day
GET /slots/heatmap  - Slot counts per day over a range
POST/DELETE /slots/holds - Checkout holds
POST /slots/cache/clear  - Drop cached availability
"""

from datetime import date
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import SessionLocal, get_db
from ..redis_client import redis_client
from ..schemas.slots import (
    CacheCleared,
    HeatmapDayInfo,
    HeatmapResponse,
    HoldCreate,
    HoldResponse,
    HoldsReleased,
    SlotInfo,
    SlotsDayResponse,
)
from ..services.continuations import ContinuationService
from ..services.errors import AvailabilityError
from ..services.slots import AvailabilityEngine, SlotHoldStore, get_booking_config
from ..services.slots.heatmap import OUTSIDE_HORIZON
from .errors import http_error


router = APIRouter(prefix="/slots", tags=["slots"])


@lru_cache
def get_engine() -> AvailabilityEngine:
    """Process-wide engine; owns the availability caches."""
    config = get_booking_config()
    hold_store = SlotHoldStore(redis_client, config) if redis_client is not None else None
    return AvailabilityEngine(SessionLocal, config, hold_store=hold_store)


@router.get("/day", response_model=SlotsDayResponse)
def get_slots_day(
    service_id: int,
    location_id: int,
    target_date: date = Query(..., alias="date"),
    staff_id: int | None = None,
    is_twin: bool = False,
    addon_ids: list[int] = Query(default=[]),
    continuation_token: str | None = None,
    exclude_booking_id: int | None = None,
    session_token: str | None = None,
    db: Session = Depends(get_db),
    engine: AvailabilityEngine = Depends(get_engine),
):
    """Get bookable slots for a service at a location on a specific day."""
    repeat_type_id = None
    try:
        if continuation_token:
            service = ContinuationService(db, engine.config, engine.now, availability=engine)
            redemption = service.validate(continuation_token)
            if redemption.repeat_type.service_id != service_id:
                raise HTTPException(
                    status_code=400,
                    detail="Continuation token is for a different service",
                )
            repeat_type_id = redemption.repeat_type.id

        slots = engine.day_slots(
            service_id,
            location_id,
            target_date,
            staff_id=staff_id,
            is_twin=is_twin,
            addon_ids=addon_ids,
            repeat_type_id=repeat_type_id,
            exclude_booking_id=exclude_booking_id,
            session_token=session_token,
        )
    except AvailabilityError as exc:
        raise http_error(exc)

    return SlotsDayResponse(
        service_id=service_id,
        location_id=location_id,
        date=target_date,
        staff_id=staff_id,
        repeat_type_id=repeat_type_id,
        slots=[SlotInfo.model_validate(slot) for slot in slots],
    )


@router.get("/heatmap", response_model=HeatmapResponse)
def get_slots_heatmap(
    service_id: int,
    location_id: int,
    start: date,
    end: date,
    staff_id: int | None = None,
    engine: AvailabilityEngine = Depends(get_engine),
):
    """Get the number of available slots per day for [start, end]."""
    try:
        days = engine.heatmap(service_id, location_id, start, end, staff_id)
    except AvailabilityError as exc:
        raise http_error(exc)

    return HeatmapResponse(
        service_id=service_id,
        location_id=location_id,
        start=start,
        end=end,
        days=[HeatmapDayInfo.model_validate(day) for day in days],
        complete=all(day.error in (None, OUTSIDE_HORIZON) for day in days),
    )


@router.post("/holds", response_model=HoldResponse, status_code=201)
def create_hold(
    data: HoldCreate,
    engine: AvailabilityEngine = Depends(get_engine),
):
    """Hold a slot while the client checks out."""
    try:
        return engine.place_hold(data.staff_id, data.start_time, data.end_time, data.session_token)
    except AvailabilityError as exc:
        raise http_error(exc)


@router.delete("/holds", response_model=HoldsReleased)
def release_holds(
    session_token: str,
    engine: AvailabilityEngine = Depends(get_engine),
):
    try:
        return HoldsReleased(released=engine.release_holds(session_token))
    except AvailabilityError as exc:
        raise http_error(exc)


@router.post("/cache/clear", response_model=CacheCleared)
def clear_cache(engine: AvailabilityEngine = Depends(get_engine)):
    """Drop every cached day and heatmap (after schedule edits)."""
    return CacheCleared(cleared=engine.clear_caches())
