# clinic_availability/services/errors.py
"""
Error kinds raised by the availability engine and continuation service.

Routers translate them to HTTP status codes; nothing here knows about HTTP.
"""


class AvailabilityError(Exception):
    """Base class for engine errors."""


class InvalidRange(AvailabilityError):
    """End before start, date in the past, or window too large."""


class NotFound(AvailabilityError):
    """Unknown service, location, staff member, booking or token."""


class Unqualified(AvailabilityError):
    """Staff member not qualified for the service or not assigned to the location."""


class TokenExpired(AvailabilityError):
    """Continuation token past its expires_at."""


class TokenAlreadyConsumed(AvailabilityError):
    """Continuation token was already redeemed."""


class UpstreamUnavailable(AvailabilityError):
    """The collaborator store (database or Redis) failed."""


class SlotUnavailable(AvailabilityError):
    """The requested slot is taken or held by another session."""
