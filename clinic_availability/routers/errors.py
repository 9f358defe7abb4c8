# clinic_availability/routers/errors.py
"""
Engine error → HTTP status translation.
"""

from fastapi import HTTPException, status

from ..services.errors import (
    AvailabilityError,
    InvalidRange,
    NotFound,
    SlotUnavailable,
    TokenAlreadyConsumed,
    TokenExpired,
    Unqualified,
    UpstreamUnavailable,
)

STATUS_BY_ERROR: dict[type[AvailabilityError], int] = {
    InvalidRange: status.HTTP_400_BAD_REQUEST,
    Unqualified: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    TokenExpired: status.HTTP_410_GONE,
    TokenAlreadyConsumed: status.HTTP_409_CONFLICT,
    SlotUnavailable: status.HTTP_409_CONFLICT,
    UpstreamUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: AvailabilityError) -> HTTPException:
    status_code = STATUS_BY_ERROR.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=status_code, detail=str(exc))
