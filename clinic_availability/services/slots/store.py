# clinic_availability/services/slots/store.py
"""
Read-side collaborator store for the availability engine.

Wraps a SQLAlchemy Session and converts rows into the plain dataclasses the
pure pipeline stages consume. Database failures surface as UpstreamUnavailable.
"""

import functools
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.generated import (
    BlackoutPeriods,
    Bookings,
    Locations,
    ServiceAddons,
    ServiceRepeatTypes,
    Services,
    ShiftBreaks,
    Shifts,
    SitewideBreaks,
    Staff,
    StaffLocations,
    StaffRecurringBreaks,
    StaffServices,
    TimeOffRequests,
    t_shift_services,
)
from ..errors import NotFound, UpstreamUnavailable
from .exclusions import (
    Blackout,
    BusyBooking,
    ExclusionSources,
    ShiftBreak,
    SitewideBreak,
    StaffBreak,
    TimeOff,
)
from .expander import ShiftDefinition
from .intervals import Interval

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceRules:
    id: int
    duration_minutes: int
    buffer_minutes: int = 0
    lead_time_minutes: int = 0
    allows_twins: bool = False
    twin_duration_minutes: int | None = None


def _upstream(method):
    """Translate database errors into UpstreamUnavailable."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.exception("Store call %s failed", method.__name__)
            raise UpstreamUnavailable(f"{method.__name__} failed") from exc
    return wrapper


class AvailabilityStore:
    """SQLAlchemy-backed reads for one request (one Session)."""

    def __init__(self, db: Session):
        self.db = db

    # ── Services ─────────────────────────────────────────────────────────

    @_upstream
    def get_service_rules(self, service_id: int) -> ServiceRules:
        service = self.db.get(Services, service_id)
        if not service or not service.is_active:
            raise NotFound(f"Service {service_id} not found")
        return ServiceRules(
            id=service.id,
            duration_minutes=service.duration_minutes or 0,
            buffer_minutes=service.buffer_minutes or 0,
            lead_time_minutes=service.lead_time_minutes or 0,
            allows_twins=bool(service.allows_twins),
            twin_duration_minutes=service.twin_duration_minutes,
        )

    @_upstream
    def get_addon_minutes(self, service_id: int, addon_ids: list[int]) -> list[int]:
        """Durations of active add-ons of the service; unknown ids are ignored."""
        if not addon_ids:
            return []
        rows = self.db.execute(
            select(ServiceAddons.duration_minutes).where(
                ServiceAddons.service_id == service_id,
                ServiceAddons.id.in_(addon_ids),
                ServiceAddons.is_active.is_(True),
            )
        ).scalars().all()
        return [minutes or 0 for minutes in rows]

    @_upstream
    def get_repeat_type(self, repeat_type_id: int) -> ServiceRepeatTypes:
        repeat_type = self.db.get(ServiceRepeatTypes, repeat_type_id)
        if not repeat_type:
            raise NotFound(f"Repeat type {repeat_type_id} not found")
        return repeat_type

    @_upstream
    def ensure_location(self, location_id: int) -> None:
        location = self.db.get(Locations, location_id)
        if not location or not location.is_active:
            raise NotFound(f"Location {location_id} not found")

    # ── Qualification ────────────────────────────────────────────────────

    @_upstream
    def is_qualified(self, staff_id: int, service_id: int, is_twin: bool = False) -> bool:
        """Staff member is active and actively qualified (twin-qualified if asked)."""
        query = (
            select(StaffServices.id)
            .join(Staff, Staff.id == StaffServices.staff_id)
            .where(
                StaffServices.staff_id == staff_id,
                StaffServices.service_id == service_id,
                StaffServices.is_active.is_(True),
                Staff.is_active.is_(True),
            )
        )
        if is_twin:
            query = query.where(StaffServices.is_twin_qualified.is_(True))
        return self.db.execute(query).first() is not None

    @_upstream
    def is_assigned(self, staff_id: int, location_id: int) -> bool:
        return self.db.execute(
            select(StaffLocations.id).where(
                StaffLocations.staff_id == staff_id,
                StaffLocations.location_id == location_id,
                StaffLocations.is_active.is_(True),
            )
        ).first() is not None

    # ── Shifts ───────────────────────────────────────────────────────────

    @_upstream
    def list_shift_definitions(
        self,
        location_id: int,
        window_start: date,
        window_end: date,
        staff_id: int | None = None,
    ) -> list[ShiftDefinition]:
        """
        Definitions that can produce instances dated in [window_start, window_end):
        recurring parents at the location, their exceptions in the window,
        and one-off shifts starting in the window.
        """
        start_dt = datetime.combine(window_start, time.min)
        end_dt = datetime.combine(window_end, time.min)

        query = select(Shifts).where(
            Shifts.location_id == location_id,
            Shifts.parent_shift_id.is_(None),
            or_(
                and_(
                    Shifts.is_recurring.is_(True),
                    Shifts.start_time < end_dt,
                    or_(
                        Shifts.recurrence_end_date.is_(None),
                        Shifts.recurrence_end_date >= window_start,
                    ),
                ),
                and_(
                    Shifts.is_recurring.is_(False),
                    Shifts.start_time >= start_dt,
                    Shifts.start_time < end_dt,
                ),
            ),
        )
        if staff_id is not None:
            query = query.where(Shifts.staff_id == staff_id)
        rows = list(self.db.execute(query).scalars().all())

        parent_ids = [row.id for row in rows if row.is_recurring]
        if parent_ids:
            exceptions = self.db.execute(
                select(Shifts).where(
                    Shifts.parent_shift_id.in_(parent_ids),
                    Shifts.exception_date >= window_start,
                    Shifts.exception_date < window_end,
                )
            ).scalars().all()
            rows.extend(exceptions)

        services_by_shift = self._services_by_shift([row.id for row in rows])

        return [
            ShiftDefinition(
                id=row.id,
                staff_id=row.staff_id,
                location_id=row.location_id,
                start_time=row.start_time,
                end_time=row.end_time,
                is_recurring=bool(row.is_recurring),
                parent_shift_id=row.parent_shift_id,
                exception_date=row.exception_date,
                is_active=bool(row.is_active),
                recurrence_end_date=row.recurrence_end_date,
                service_ids=frozenset(services_by_shift.get(row.id, ())),
            )
            for row in rows
        ]

    def _services_by_shift(self, shift_ids: list[int]) -> dict[int, set[int]]:
        if not shift_ids:
            return {}
        result: dict[int, set[int]] = {}
        for shift_id, service_id in self.db.execute(
            select(t_shift_services.c.shift_id, t_shift_services.c.service_id)
            .where(t_shift_services.c.shift_id.in_(shift_ids))
        ):
            result.setdefault(shift_id, set()).add(service_id)
        return result

    # ── Exclusions ───────────────────────────────────────────────────────

    @_upstream
    def list_exclusion_sources(
        self,
        staff_ids: set[int],
        shift_ids: set[int],
        window: Interval,
    ) -> ExclusionSources:
        """All block-out rows for the given staff members/shifts overlapping window."""
        sources = ExclusionSources()
        if not staff_ids:
            return sources

        first_day = window.start.date()
        last_day = (window.end - timedelta(microseconds=1)).date()

        sources.blackouts = [
            Blackout(
                start=row.start_date,
                end=row.end_date,
                location_id=row.location_id,
                staff_id=row.staff_id,
                is_active=bool(row.is_active),
            )
            for row in self.db.execute(
                select(BlackoutPeriods).where(
                    BlackoutPeriods.is_active.is_(True),
                    BlackoutPeriods.start_date < window.end,
                    BlackoutPeriods.end_date > window.start,
                    or_(
                        BlackoutPeriods.staff_id.is_(None),
                        BlackoutPeriods.staff_id.in_(staff_ids),
                    ),
                )
            ).scalars()
        ]

        # Daily windows may run past midnight, so look one day back
        sources.sitewide_breaks = [
            SitewideBreak(
                start_date=row.start_date,
                end_date=row.end_date,
                start_time=row.start_time,
                end_time=row.end_time,
                is_active=bool(row.is_active),
            )
            for row in self.db.execute(
                select(SitewideBreaks).where(
                    SitewideBreaks.is_active.is_(True),
                    SitewideBreaks.start_date <= last_day,
                    SitewideBreaks.end_date >= first_day - timedelta(days=1),
                )
            ).scalars()
        ]

        if shift_ids:
            sources.shift_breaks = [
                ShiftBreak(shift_id=row.shift_id, start=row.start_time, end=row.end_time)
                for row in self.db.execute(
                    select(ShiftBreaks).where(ShiftBreaks.shift_id.in_(shift_ids))
                ).scalars()
            ]

        sources.staff_breaks = [
            StaffBreak(
                staff_id=row.staff_id,
                start_time=row.start_time,
                end_time=row.end_time,
                day_of_week=row.day_of_week,
            )
            for row in self.db.execute(
                select(StaffRecurringBreaks).where(StaffRecurringBreaks.staff_id.in_(staff_ids))
            ).scalars()
        ]

        sources.time_off = [
            TimeOff(
                staff_id=row.staff_id,
                start_date=row.start_date,
                end_date=row.end_date,
                status=row.status,
            )
            for row in self.db.execute(
                select(TimeOffRequests).where(
                    TimeOffRequests.staff_id.in_(staff_ids),
                    TimeOffRequests.status == "approved",
                    TimeOffRequests.start_date <= last_day,
                    TimeOffRequests.end_date >= first_day,
                )
            ).scalars()
        ]

        sources.bookings = self.list_busy_bookings(staff_ids, window)
        return sources

    @_upstream
    def list_busy_bookings(self, staff_ids: set[int], window: Interval) -> list[BusyBooking]:
        """Non-cancelled bookings of the staff members overlapping window, any location."""
        return [
            BusyBooking(
                id=row.id,
                staff_id=row.staff_id,
                start=row.start_time,
                end=row.end_time,
                status=row.status,
            )
            for row in self.db.execute(
                select(Bookings).where(
                    Bookings.staff_id.in_(staff_ids),
                    Bookings.status != "cancelled",
                    Bookings.start_time < window.end,
                    Bookings.end_time > window.start,
                )
            ).scalars()
        ]
