from datetime import date, datetime, time, timedelta

import pytest

from clinic_availability.services.slots.calculator import (
    Slot,
    generate_slots,
    resolve_duration,
    sort_slots,
)
from clinic_availability.services.slots.expander import ShiftInstance, ShiftKind
from clinic_availability.services.slots.intervals import Interval, intersects

MONDAY = date(2030, 1, 7)


def h(hour, minute=0):
    return datetime.combine(MONDAY, time(hour, minute))


def instance(start=h(9), end=h(17), staff_id=10, shift_id=1):
    return ShiftInstance(
        shift_id=shift_id,
        staff_id=staff_id,
        location_id=1,
        date=MONDAY,
        start_time=start,
        end_time=end,
        service_ids=frozenset({1}),
        kind=ShiftKind.ONE_OFF,
    )


def spans(slots):
    return {(s.start_time.strftime("%H:%M"), s.end_time.strftime("%H:%M")) for s in slots}


def test_lunch_break_boundaries():
    slots = generate_slots(instance(), [Interval(h(12), h(13))], duration_minutes=30, step_minutes=15)
    found = spans(slots)

    assert ("11:30", "12:00") in found
    assert ("13:00", "13:30") in found
    assert ("11:45", "12:15") not in found
    assert ("12:30", "13:00") not in found


def test_no_slot_intersects_an_exclusion():
    exclusions = [Interval(h(9, 10), h(9, 50)), Interval(h(12), h(13)), Interval(h(15, 5), h(15, 20))]
    slots = generate_slots(instance(), exclusions, duration_minutes=25, step_minutes=5)

    assert slots
    for slot in slots:
        assert h(9) <= slot.start_time and slot.end_time <= h(17)
        assert not any(intersects(slot.interval, ex) for ex in exclusions)


def test_step_grid_starts_at_free_interval_start():
    slots = generate_slots(instance(h(9), h(10)), [], duration_minutes=30, step_minutes=15)
    assert [s.start_time for s in slots] == [h(9), h(9, 15), h(9, 30)]


def test_buffer_must_fit_after_appointment():
    slots = generate_slots(instance(h(9), h(10)), [], duration_minutes=30, step_minutes=15, buffer_minutes=15)
    assert [s.start_time for s in slots] == [h(9), h(9, 15)]
    assert all(s.end_time - s.start_time == timedelta(minutes=30) for s in slots)


def test_earliest_start_drops_earlier_slots():
    slots = generate_slots(instance(), [], duration_minutes=60, step_minutes=60, earliest_start=h(14, 10))
    assert [s.start_time for s in slots] == [h(15), h(16)]


def test_zero_duration_yields_nothing():
    assert generate_slots(instance(), [], duration_minutes=0, step_minutes=15) == []


def test_slot_identity_is_staff_and_start():
    a = Slot(h(9), h(9, 30), staff_id=10, shift_id=1)
    b = Slot(h(9), h(10), staff_id=10, shift_id=2)
    c = Slot(h(9), h(9, 30), staff_id=11, shift_id=1)
    assert a == b
    assert a != c
    assert len({a, b, c}) == 2


def test_sort_slots_dedupes_and_orders_by_start_then_staff():
    slots = [
        Slot(h(10), h(10, 30), 11, 2),
        Slot(h(9), h(9, 30), 12, 3),
        Slot(h(10), h(10, 30), 10, 1),
        Slot(h(10), h(10, 30), 11, 4),
    ]
    ordered = sort_slots(slots)
    assert [(s.start_time, s.staff_id) for s in ordered] == [
        (h(9), 12), (h(10), 10), (h(10), 11),
    ]
    assert ordered[2].shift_id == 2


@pytest.mark.parametrize("kwargs, expected", [
    ({}, 30),
    ({"addon_minutes": [10, 5]}, 45),
    ({"is_twin": True, "allows_twins": True}, 60),
    ({"is_twin": True, "allows_twins": True, "twin_duration_minutes": 45}, 45),
    ({"is_twin": True, "allows_twins": False}, 30),
    ({"is_twin": True, "allows_twins": True, "addon_minutes": [15]}, 75),
])
def test_resolve_duration(kwargs, expected):
    assert resolve_duration(30, **kwargs) == expected
