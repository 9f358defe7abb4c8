# clinic_availability/services/slots/exclusions.py
"""
Exclusion gathering.

Every block-out source is normalized to Interval here so the slot
calculator deals with a single merged set instead of five overlap checks.

Sources:
✓ Blackout periods (global, location-scoped, staff-scoped)
✓ Sitewide breaks (whole days, or a daily time window)
✓ Shift breaks (projected onto recurring occurrences by time of day)
✓ Staff recurring breaks (per weekday or every day)
✓ Approved time-off
✓ Non-cancelled bookings of the staff member, at any location
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from .expander import ShiftInstance, ShiftKind
from .intervals import Interval, clip, dates_interval, merge


@dataclass(frozen=True)
class Blackout:
    start: datetime
    end: datetime
    location_id: int | None = None
    staff_id: int | None = None
    is_active: bool = True

    def applies_to(self, instance: ShiftInstance) -> bool:
        if not self.is_active:
            return False
        if self.location_id is None and self.staff_id is None:
            return True
        if self.location_id is not None and self.location_id != instance.location_id:
            return False
        if self.staff_id is not None and self.staff_id != instance.staff_id:
            return False
        return True


@dataclass(frozen=True)
class SitewideBreak:
    start_date: date
    end_date: date  # inclusive
    start_time: time | None = None
    end_time: time | None = None
    is_active: bool = True


@dataclass(frozen=True)
class ShiftBreak:
    shift_id: int
    start: datetime
    end: datetime


@dataclass(frozen=True)
class StaffBreak:
    staff_id: int
    start_time: time
    end_time: time
    day_of_week: int | None = None  # 0 = Monday, None = every day


@dataclass(frozen=True)
class TimeOff:
    staff_id: int
    start_date: date
    end_date: date  # inclusive
    status: str = "approved"


@dataclass(frozen=True)
class BusyBooking:
    id: int
    staff_id: int
    start: datetime
    end: datetime
    status: str = "confirmed"


@dataclass
class ExclusionSources:
    """Collaborator rows relevant to one query window."""
    blackouts: list[Blackout] = field(default_factory=list)
    sitewide_breaks: list[SitewideBreak] = field(default_factory=list)
    shift_breaks: list[ShiftBreak] = field(default_factory=list)
    staff_breaks: list[StaffBreak] = field(default_factory=list)
    time_off: list[TimeOff] = field(default_factory=list)
    bookings: list[BusyBooking] = field(default_factory=list)


def collect_exclusions(
    instance: ShiftInstance,
    sources: ExclusionSources,
    shift_origin: datetime | None = None,
    exclude_booking_id: int | None = None,
) -> list[Interval]:
    """
    Merged excluded intervals for one shift instance, clipped to its bounds.

    Args:
        instance: The shift instance slots will be generated for
        sources: All exclusion rows fetched for the window
        shift_origin: start_time of the recurring parent; breaks stored against
            the parent are shifted by (instance.start - shift_origin)
        exclude_booking_id: Booking being rescheduled, ignored as an exclusion
    """
    bound = instance.interval
    excluded: list[Interval] = []

    for blackout in sources.blackouts:
        if blackout.applies_to(instance):
            excluded.append(Interval(blackout.start, blackout.end))

    excluded.extend(_sitewide_intervals(sources.sitewide_breaks, bound))
    excluded.extend(_shift_break_intervals(instance, sources.shift_breaks, shift_origin))
    excluded.extend(_staff_break_intervals(instance.staff_id, sources.staff_breaks, bound))

    for request in sources.time_off:
        if request.staff_id == instance.staff_id and request.status == "approved":
            excluded.append(dates_interval(request.start_date, request.end_date))

    for booking in sources.bookings:
        if booking.staff_id != instance.staff_id or booking.status == "cancelled":
            continue
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        excluded.append(Interval(booking.start, booking.end))

    return merge(clip(excluded, bound))


# ── Helpers ──────────────────────────────────────────────────────────────


def _each_date(bound: Interval):
    """Calendar dates touched by the interval."""
    current = bound.start.date()
    last = (bound.end - timedelta(microseconds=1)).date()
    while current <= last:
        yield current
        current += timedelta(days=1)


def _time_window(on: date, start: time, end: time) -> Interval:
    """Daily window on a date; an end at or before start runs past midnight."""
    window_start = datetime.combine(on, start)
    window_end = datetime.combine(on, end)
    if window_end <= window_start:
        window_end += timedelta(days=1)
    return Interval(window_start, window_end)


def _sitewide_intervals(breaks: list[SitewideBreak], bound: Interval) -> list[Interval]:
    intervals = []
    for brk in breaks:
        if not brk.is_active:
            continue
        if brk.start_time is None or brk.end_time is None:
            intervals.append(dates_interval(brk.start_date, brk.end_date))
            continue
        # Daily window applies on each date of the range, the day before the
        # bound included so an overnight window reaching into it is kept
        for on in _each_date(Interval(bound.start - timedelta(days=1), bound.end)):
            if brk.start_date <= on <= brk.end_date:
                intervals.append(_time_window(on, brk.start_time, brk.end_time))
    return intervals


def _shift_break_intervals(
    instance: ShiftInstance,
    breaks: list[ShiftBreak],
    shift_origin: datetime | None,
) -> list[Interval]:
    offset = timedelta(0)
    if instance.kind == ShiftKind.RECURRING and shift_origin is not None:
        offset = instance.start_time - shift_origin

    return [
        Interval(brk.start + offset, brk.end + offset)
        for brk in breaks
        if brk.shift_id == instance.shift_id
    ]


def _staff_break_intervals(
    staff_id: int,
    breaks: list[StaffBreak],
    bound: Interval,
) -> list[Interval]:
    intervals = []
    for brk in breaks:
        if brk.staff_id != staff_id:
            continue
        for on in _each_date(Interval(bound.start - timedelta(days=1), bound.end)):
            if brk.day_of_week is None or brk.day_of_week == on.weekday():
                intervals.append(_time_window(on, brk.start_time, brk.end_time))
    return intervals
