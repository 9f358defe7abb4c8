from datetime import date, datetime, time

from clinic_availability.services.slots.exclusions import (
    Blackout,
    BusyBooking,
    ExclusionSources,
    ShiftBreak,
    SitewideBreak,
    StaffBreak,
    TimeOff,
    collect_exclusions,
)
from clinic_availability.services.slots.expander import ShiftInstance, ShiftKind
from clinic_availability.services.slots.intervals import Interval

MONDAY = date(2030, 1, 7)


def instance(location_id=1, staff_id=10, kind=ShiftKind.ONE_OFF, day=MONDAY, shift_id=1):
    return ShiftInstance(
        shift_id=shift_id,
        staff_id=staff_id,
        location_id=location_id,
        date=day,
        start_time=datetime.combine(day, time(9)),
        end_time=datetime.combine(day, time(17)),
        service_ids=frozenset({1}),
        kind=kind,
        definition_id=shift_id,
    )


def h(hour, minute=0, day=7):
    return datetime(2030, 1, day, hour, minute)


def test_location_scoped_blackout_only_hits_that_location():
    sources = ExclusionSources(blackouts=[Blackout(h(10), h(12), location_id=1)])

    assert collect_exclusions(instance(location_id=1), sources) == [Interval(h(10), h(12))]
    assert collect_exclusions(instance(location_id=2), sources) == []


def test_global_and_staff_blackouts():
    sources = ExclusionSources(blackouts=[
        Blackout(h(8), h(10)),
        Blackout(h(15), h(16), staff_id=99),
    ])
    assert collect_exclusions(instance(), sources) == [Interval(h(9), h(10))]


def test_sitewide_whole_day_and_daily_window():
    whole_day = ExclusionSources(sitewide_breaks=[SitewideBreak(MONDAY, MONDAY)])
    assert collect_exclusions(instance(), whole_day) == [Interval(h(9), h(17))]

    lunch = ExclusionSources(sitewide_breaks=[
        SitewideBreak(date(2030, 1, 1), date(2030, 1, 31), time(12, 30), time(13)),
    ])
    assert collect_exclusions(instance(), lunch) == [Interval(h(12, 30), h(13))]


def test_recurring_shift_break_is_projected_onto_occurrence():
    # Break stored against the parent's first occurrence a week earlier
    origin = datetime(2029, 12, 31, 9)
    sources = ExclusionSources(shift_breaks=[
        ShiftBreak(1, datetime(2029, 12, 31, 12), datetime(2029, 12, 31, 13)),
    ])
    result = collect_exclusions(instance(kind=ShiftKind.RECURRING), sources, shift_origin=origin)
    assert result == [Interval(h(12), h(13))]


def test_staff_break_only_on_its_weekday():
    sources = ExclusionSources(staff_breaks=[
        StaffBreak(10, time(11), time(11, 30), day_of_week=0),
        StaffBreak(10, time(14), time(14, 30), day_of_week=1),
    ])
    assert collect_exclusions(instance(), sources) == [Interval(h(11), h(11, 30))]


def test_approved_time_off_blocks_whole_days():
    sources = ExclusionSources(time_off=[
        TimeOff(10, MONDAY, MONDAY),
        TimeOff(10, date(2030, 1, 8), date(2030, 1, 8)),
    ])
    assert collect_exclusions(instance(), sources) == [Interval(h(9), h(17))]

    pending = ExclusionSources(time_off=[TimeOff(10, MONDAY, MONDAY, status="pending")])
    assert collect_exclusions(instance(), pending) == []


def test_bookings_block_except_cancelled_and_rescheduled():
    sources = ExclusionSources(bookings=[
        BusyBooking(1, 10, h(9), h(9, 30)),
        BusyBooking(2, 10, h(10), h(10, 30), status="cancelled"),
        BusyBooking(3, 10, h(11), h(11, 30)),
        BusyBooking(4, 11, h(12), h(12, 30)),
    ])
    assert collect_exclusions(instance(), sources, exclude_booking_id=3) == [
        Interval(h(9), h(9, 30)),
    ]


def test_result_is_merged_and_clipped():
    sources = ExclusionSources(
        blackouts=[Blackout(h(7), h(10))],
        bookings=[BusyBooking(1, 10, h(9, 30), h(11))],
        staff_breaks=[StaffBreak(10, time(16, 30), time(18))],
    )
    assert collect_exclusions(instance(), sources) == [
        Interval(h(9), h(11)),
        Interval(h(16, 30), h(17)),
    ]
