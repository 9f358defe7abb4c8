# clinic_availability/services/continuations.py
"""
Repeat-booking continuation tokens.

A token lets a client book the next visit of a repeat series without
signing in again. Lifecycle:

  issued ──redeem──→ redeemed ──book──→ claimed   (terminal)
     │                  │
     └──────book────────┘
     └────time─────→ expired                      (terminal)

redeem is a single conditional UPDATE (WHERE consumed = false), so of two
concurrent redemptions exactly one changes a row; the other re-reads the
token and fails with TokenAlreadyConsumed. A redeemed token still drives
slot queries and can be claimed once by book_follow_up, which sets
claimed_booking_id with its own conditional UPDATE.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models.generated import (
    BookingContinuations as DBContinuation,
    Bookings as DBBooking,
    ServiceRepeatTypes as DBRepeatType,
)
from .errors import (
    AvailabilityError,
    InvalidRange,
    NotFound,
    SlotUnavailable,
    TokenAlreadyConsumed,
    TokenExpired,
    UpstreamUnavailable,
)
from .slots.availability import AvailabilityEngine
from .slots.config import BookingConfig, get_booking_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Redemption:
    """What a valid token unlocks."""
    continuation: DBContinuation
    repeat_type: DBRepeatType
    origin_booking: DBBooking


@dataclass(frozen=True)
class FollowUp:
    booking: DBBooking
    next_continuation: DBContinuation | None


class ContinuationService:
    """Issue, validate and redeem continuation tokens against one Session."""

    def __init__(
        self,
        db: Session,
        config: BookingConfig | None = None,
        now: Callable[[], datetime] | None = None,
        availability: AvailabilityEngine | None = None,
    ):
        self.db = db
        self.config = config or get_booking_config()
        self.now = now or self.config.local_now
        # Follow-up times are checked against the live slot pipeline
        self.availability = availability or AvailabilityEngine(
            sessionmaker(bind=db.get_bind()), self.config, now=self.now
        )

    # ── Issue ────────────────────────────────────────────────────────────

    def issue(
        self,
        origin_booking_id: int,
        repeat_type_id: int,
        remaining_visits: int | None = None,
    ) -> DBContinuation:
        """
        Create a token for the next visit after origin_booking_id.

        remaining_visits defaults to repeat_type.visit_count - 1 (the origin
        booking is the first visit).
        """
        booking = self.db.get(DBBooking, origin_booking_id)
        if not booking:
            raise NotFound(f"Booking {origin_booking_id} not found")

        repeat_type = self.db.get(DBRepeatType, repeat_type_id)
        if not repeat_type or not repeat_type.active:
            raise NotFound(f"Repeat type {repeat_type_id} not found")

        if repeat_type.service_id != booking.service_id:
            raise InvalidRange("Repeat type does not belong to the booking service")

        if remaining_visits is None:
            remaining_visits = (repeat_type.visit_count or 1) - 1
        if remaining_visits < 1:
            raise InvalidRange("No visits remain for this repeat type")

        continuation = self._new_continuation(booking.id, repeat_type.id, remaining_visits)
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise UpstreamUnavailable("Failed to store continuation") from exc

        self.db.refresh(continuation)
        logger.info(
            "Issued continuation %s for booking %s (%d visits remaining)",
            continuation.id, booking.id, remaining_visits,
        )
        return continuation

    def issue_for_booking(self, booking: DBBooking) -> DBContinuation | None:
        """Issue a token when a booking opens a repeat series of more than one visit."""
        if booking.repeat_type_id is None:
            return None
        repeat_type = self.db.get(DBRepeatType, booking.repeat_type_id)
        if not repeat_type or (repeat_type.visit_count or 1) <= 1:
            return None
        return self.issue(booking.id, repeat_type.id)

    # ── Validate / redeem ────────────────────────────────────────────────

    def validate(self, token: str) -> Redemption:
        """
        Read-only check that the token can still book its follow-up.

        A redeemed token passes until a booking claims it.
        """
        continuation = self._get(token)
        self._check_claimable(continuation, self.now())
        return self._redemption(continuation)

    def redeem(self, token: str) -> Redemption:
        """Mark the token redeemed atomically and commit; succeeds once."""
        self._consume(token, self.now())
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise UpstreamUnavailable("Failed to consume continuation") from exc

        continuation = self._get(token)
        logger.info("Redeemed continuation %s", continuation.id)
        return self._redemption(continuation)

    def book_follow_up(
        self,
        token: str,
        staff_id: int,
        start_time: datetime,
        shift_id: int | None = None,
        location_id: int | None = None,
        client_id: int | None = None,
    ) -> FollowUp:
        """
        Claim the token and create the follow-up booking in one transaction.

        The start must be a slot the day pipeline offers for this staff
        member at the repeat type's duration. If the booking cannot be
        created the token stays claimable.

        Raises:
            NotFound / TokenExpired / TokenAlreadyConsumed: token unusable
            InvalidRange: date in the past or beyond the booking horizon
            SlotUnavailable: no such slot, or the staff member is busy
        """
        now = self.now()

        # Step 1: Token state, captured before the read transaction ends
        redemption = self.validate(token)
        continuation_id = redemption.continuation.id
        remaining_visits = redemption.continuation.remaining_visits
        repeat_type = redemption.repeat_type
        repeat_type_id = repeat_type.id
        service_id = repeat_type.service_id
        duration_minutes = repeat_type.duration_minutes
        price_eur_cents = repeat_type.price_eur_cents
        origin = redemption.origin_booking
        origin_id = origin.id
        is_twin = bool(origin.is_twin)
        location_id = location_id or origin.location_id
        if client_id is None:
            client_id = origin.client_id
        # Writes below start a fresh transaction
        self.db.rollback()

        # Step 2: The requested start must be an offered slot
        self.availability.validate_day(start_time.date())
        offered = self.availability.compute_day_slots(
            service_id,
            location_id,
            start_time.date(),
            staff_id=staff_id,
            is_twin=is_twin,
            repeat_type_id=repeat_type_id,
        )
        slot = next(
            (s for s in offered if s.staff_id == staff_id and s.start_time == start_time),
            None,
        )
        if slot is None:
            raise SlotUnavailable("Requested time is not an available slot")

        # Step 3: Insert, then claim the token, in one transaction
        try:
            booking = DBBooking(
                staff_id=staff_id,
                location_id=location_id,
                service_id=service_id,
                shift_id=shift_id or slot.shift_id,
                client_id=client_id,
                start_time=start_time,
                end_time=start_time + timedelta(minutes=duration_minutes),
                status="confirmed",
                price_eur_cents=price_eur_cents,
                is_twin=is_twin,
                parent_booking_id=origin_id,
                continuation_id=continuation_id,
                repeat_type_id=repeat_type_id,
            )
            self.db.add(booking)
            # Unique (staff_id, start_time) index is the last line of defence
            self.db.flush()

            overlapping = self.db.execute(
                select(DBBooking.id).where(
                    DBBooking.id != booking.id,
                    DBBooking.staff_id == staff_id,
                    DBBooking.status != "cancelled",
                    DBBooking.start_time < booking.end_time,
                    DBBooking.end_time > start_time,
                )
            ).first()
            if overlapping:
                raise SlotUnavailable("Slot already taken")

            self._claim(token, booking.id, now)

            next_continuation = None
            remaining = remaining_visits - 1
            if remaining > 0:
                next_continuation = self._new_continuation(booking.id, repeat_type_id, remaining)

            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise SlotUnavailable("Slot already taken") from exc
        except AvailabilityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise UpstreamUnavailable("Failed to book follow-up") from exc

        self.db.refresh(booking)
        logger.info(
            "Follow-up booking %s created from continuation %s (%d visits remaining)",
            booking.id, continuation_id, remaining,
        )
        return FollowUp(booking=booking, next_continuation=next_continuation)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _new_continuation(
        self,
        origin_booking_id: int,
        repeat_type_id: int,
        remaining_visits: int,
    ) -> DBContinuation:
        continuation = DBContinuation(
            token=secrets.token_hex(32),
            origin_booking_id=origin_booking_id,
            repeat_type_id=repeat_type_id,
            remaining_visits=remaining_visits,
            expires_at=self.now() + timedelta(days=self.config.continuation_ttl_days),
            consumed=False,
        )
        self.db.add(continuation)
        self.db.flush()
        return continuation

    def _consume(self, token: str, now: datetime) -> None:
        """Conditional update; on no match re-read to raise the precise error."""
        try:
            result = self.db.execute(
                update(DBContinuation)
                .where(
                    DBContinuation.token == token,
                    DBContinuation.consumed.is_(False),
                    DBContinuation.claimed_booking_id.is_(None),
                    DBContinuation.expires_at >= now,
                )
                .values(consumed=True)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise UpstreamUnavailable("Failed to consume continuation") from exc

        if result.rowcount == 1:
            return

        self.db.rollback()
        continuation = self._get(token)
        self._check_claimable(continuation, now)
        # Redeemed earlier, or lost a race that finished before the re-read
        raise TokenAlreadyConsumed("Token already used")

    def _claim(self, token: str, booking_id: int, now: datetime) -> None:
        """Bind the token to booking_id unless another booking claimed it first."""
        result = self.db.execute(
            update(DBContinuation)
            .where(
                DBContinuation.token == token,
                DBContinuation.claimed_booking_id.is_(None),
                DBContinuation.expires_at >= now,
            )
            .values(consumed=True, claimed_booking_id=booking_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        self.db.rollback()
        self._check_claimable(self._get(token), now)
        raise TokenAlreadyConsumed("Token already used")

    def _get(self, token: str) -> DBContinuation:
        continuation = self.db.execute(
            select(DBContinuation).where(DBContinuation.token == token)
        ).scalar_one_or_none()
        if continuation is None:
            raise NotFound("Invalid token")
        return continuation

    @staticmethod
    def _check_claimable(continuation: DBContinuation, now: datetime) -> None:
        if continuation.expires_at < now:
            raise TokenExpired("Token expired")
        if continuation.claimed_booking_id is not None:
            raise TokenAlreadyConsumed("Token already used")

    @staticmethod
    def _redemption(continuation: DBContinuation) -> Redemption:
        return Redemption(
            continuation=continuation,
            repeat_type=continuation.repeat_type,
            origin_booking=continuation.origin_booking,
        )
