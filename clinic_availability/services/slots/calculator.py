# clinic_availability/services/slots/calculator.py
"""
Slot generation for one shift instance.

Produces Slot(start_time, end_time, staff_id, shift_id) on a fixed step grid
inside the free parts of the instance:

  free = subtract(instance, exclusions)
  for each free [s, e): t = s, s+step, ... while t + duration + buffer <= e

Guarantees:
✓ No slot intersects an exclusion
✓ Every slot lies inside one shift instance
✓ No slot starts before earliest_start (now + lead time)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from .expander import ShiftInstance
from .intervals import Interval, subtract


@dataclass(frozen=True, eq=False)
class Slot:
    start_time: datetime
    end_time: datetime
    staff_id: int
    shift_id: int

    # Identity is (staff_id, start_time): two shifts offering the same staff
    # member at the same instant are one slot
    def _key(self) -> tuple[int, datetime]:
        return self.staff_id, self.start_time

    def __eq__(self, other):
        if not isinstance(other, Slot):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)


def generate_slots(
    instance: ShiftInstance,
    exclusions: list[Interval],
    duration_minutes: int,
    step_minutes: int,
    earliest_start: datetime | None = None,
    buffer_minutes: int = 0,
) -> list[Slot]:
    """
    Generate bookable slots for one shift instance.

    Args:
        instance: Shift instance (already qualified for the service)
        exclusions: Merged excluded intervals for the instance
        duration_minutes: Appointment length
        step_minutes: Start-time cadence
        earliest_start: Starts before this instant are dropped
        buffer_minutes: Cleanup time that must fit after the appointment

    Returns:
        Slots ordered by start time.
    """
    if duration_minutes <= 0 or step_minutes <= 0:
        return []

    duration = timedelta(minutes=duration_minutes)
    occupied = timedelta(minutes=duration_minutes + max(buffer_minutes, 0))
    step = timedelta(minutes=step_minutes)

    slots: list[Slot] = []
    for free in subtract(instance.interval, exclusions):
        t = free.start
        while t + occupied <= free.end:
            if earliest_start is None or t >= earliest_start:
                slots.append(Slot(
                    start_time=t,
                    end_time=t + duration,
                    staff_id=instance.staff_id,
                    shift_id=instance.shift_id,
                ))
            t += step

    return slots


def sort_slots(slots: Iterable[Slot]) -> list[Slot]:
    """Order by (start_time, staff_id), keeping the first of duplicate slots."""
    seen: set[Slot] = set()
    unique = []
    for slot in slots:
        if slot in seen:
            continue
        seen.add(slot)
        unique.append(slot)
    unique.sort(key=lambda s: (s.start_time, s.staff_id))
    return unique


def resolve_duration(
    base_minutes: int,
    addon_minutes: Iterable[int] = (),
    is_twin: bool = False,
    allows_twins: bool = False,
    twin_duration_minutes: int | None = None,
) -> int:
    """
    Appointment length for a request.

    Twin pregnancies use the service's twin duration, or double the base
    duration when none is set. Add-ons are added on top. A twin request for a
    service that does not allow twins uses the plain duration.
    """
    minutes = base_minutes
    if is_twin and allows_twins:
        minutes = twin_duration_minutes or base_minutes * 2
    return minutes + sum(addon_minutes)
