# clinic_availability/routers/continuations.py
"""
Continuation token endpoints for repeat bookings.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.continuations import (
    BookingInfo,
    ContinuationCreate,
    ContinuationDetails,
    ContinuationInfo,
    ContinuationIssued,
    FollowUpCreate,
    FollowUpResponse,
    RepeatTypeInfo,
)
from ..services.continuations import ContinuationService, Redemption
from ..services.errors import AvailabilityError
from ..services.slots import AvailabilityEngine
from .errors import http_error
from .slots import get_engine

router = APIRouter(prefix="/continuations", tags=["continuations"])


def get_continuation_service(
    db: Session = Depends(get_db),
    engine: AvailabilityEngine = Depends(get_engine),
) -> ContinuationService:
    return ContinuationService(db, engine.config, engine.now, availability=engine)


def _details(redemption: Redemption) -> ContinuationDetails:
    origin = redemption.origin_booking
    return ContinuationDetails(
        continuation=ContinuationInfo.model_validate(redemption.continuation),
        repeat_type=RepeatTypeInfo.model_validate(redemption.repeat_type),
        service_id=redemption.repeat_type.service_id,
        location_id=origin.location_id,
        client_id=origin.client_id,
        is_twin=bool(origin.is_twin),
    )


@router.post("", response_model=ContinuationIssued, status_code=201)
def issue_continuation(
    data: ContinuationCreate,
    service: ContinuationService = Depends(get_continuation_service),
):
    try:
        continuation = service.issue(
            data.origin_booking_id, data.repeat_type_id, data.remaining_visits
        )
    except AvailabilityError as exc:
        raise http_error(exc)
    return ContinuationIssued.model_validate(continuation)


@router.get("/{token}", response_model=ContinuationDetails)
def validate_continuation(
    token: str,
    service: ContinuationService = Depends(get_continuation_service),
):
    """Check a token without consuming it."""
    try:
        return _details(service.validate(token))
    except AvailabilityError as exc:
        raise http_error(exc)


@router.post("/{token}/redeem", response_model=ContinuationDetails)
def redeem_continuation(
    token: str,
    service: ContinuationService = Depends(get_continuation_service),
):
    try:
        return _details(service.redeem(token))
    except AvailabilityError as exc:
        raise http_error(exc)


@router.post("/{token}/book", response_model=FollowUpResponse, status_code=201)
def book_follow_up(
    token: str,
    data: FollowUpCreate,
    service: ContinuationService = Depends(get_continuation_service),
):
    """Claim the token and create the follow-up booking."""
    try:
        result = service.book_follow_up(
            token,
            staff_id=data.staff_id,
            start_time=data.start_time,
            shift_id=data.shift_id,
            location_id=data.location_id,
            client_id=data.client_id,
        )
    except AvailabilityError as exc:
        raise http_error(exc)

    return FollowUpResponse(
        booking=BookingInfo.model_validate(result.booking),
        next_continuation=(
            ContinuationIssued.model_validate(result.next_continuation)
            if result.next_continuation else None
        ),
    )
