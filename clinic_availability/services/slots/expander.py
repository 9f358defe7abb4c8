# clinic_availability/services/slots/expander.py
"""
Shift expansion: shift definitions → concrete per-day shift instances.

Definitions come in four shapes, resolved here and nowhere else:
  - recurring parent   → one occurrence per week on the parent's weekday/time
  - one-off shift      → kept as-is
  - exception override → replaces the parent's occurrence on exception_date
  - tombstone          → inactive exception, suppresses that occurrence

Exceptions are indexed by (parent_id, exception_date) so each candidate
occurrence is resolved with a single dict lookup.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from .intervals import Interval

logger = logging.getLogger(__name__)


class ShiftKind(str, enum.Enum):
    RECURRING = "recurring"
    ONE_OFF = "one_off"
    EXCEPTION = "exception"
    TOMBSTONE = "tombstone"  # definitions only, never an instance


@dataclass(frozen=True)
class ShiftDefinition:
    """A shift row as stored, before expansion."""
    id: int
    staff_id: int
    location_id: int
    start_time: datetime
    end_time: datetime
    is_recurring: bool = False
    parent_shift_id: int | None = None
    exception_date: date | None = None
    is_active: bool = True
    recurrence_end_date: date | None = None
    service_ids: frozenset[int] = field(default_factory=frozenset)

    @property
    def is_exception(self) -> bool:
        return self.parent_shift_id is not None and self.exception_date is not None

    @property
    def is_tombstone(self) -> bool:
        return self.is_exception and not self.is_active

    @property
    def kind(self) -> ShiftKind:
        if self.is_exception:
            return ShiftKind.TOMBSTONE if not self.is_active else ShiftKind.EXCEPTION
        return ShiftKind.RECURRING if self.is_recurring else ShiftKind.ONE_OFF


@dataclass(frozen=True)
class ShiftInstance:
    """One concrete occurrence of a shift on one date."""
    shift_id: int
    staff_id: int
    location_id: int
    date: date
    start_time: datetime
    end_time: datetime
    service_ids: frozenset[int]
    kind: ShiftKind
    # Recurring parent this instance was generated from (exceptions keep it too)
    definition_id: int | None = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)


def expand_shifts(
    definitions: list[ShiftDefinition],
    window_start: date,
    window_end: date,
) -> list[ShiftInstance]:
    """
    Expand definitions into instances whose date falls in [window_start, window_end).

    Returns:
        Instances ordered by (start_time, staff_id, shift_id).
    """
    if window_end <= window_start:
        return []

    parents: dict[int, ShiftDefinition] = {}
    recurring_ids: set[int] = set()
    exceptions: dict[tuple[int, date], ShiftDefinition] = {}
    one_offs: list[ShiftDefinition] = []

    # Step 1: Partition, rejecting malformed rows at the boundary
    for definition in definitions:
        kind = definition.kind
        # Tombstone times are placeholders and never validated
        if kind != ShiftKind.TOMBSTONE and definition.end_time <= definition.start_time:
            logger.warning(
                "Skipping shift %s: end_time %s is not after start_time %s",
                definition.id, definition.end_time, definition.start_time,
            )
            continue

        if kind == ShiftKind.TOMBSTONE and definition.service_ids:
            logger.warning(
                "Shift exception %s is inactive but lists services; treating it as a cancelled occurrence",
                definition.id,
            )

        if kind in (ShiftKind.EXCEPTION, ShiftKind.TOMBSTONE):
            exceptions[(definition.parent_shift_id, definition.exception_date)] = definition
        elif kind == ShiftKind.RECURRING:
            recurring_ids.add(definition.id)
            if definition.is_active:
                parents[definition.id] = definition
        elif definition.is_active:
            one_offs.append(definition)

    for parent_id, exception_date in exceptions:
        if parent_id not in recurring_ids:
            logger.warning(
                "Ignoring orphan shift exception for parent %s on %s",
                parent_id, exception_date,
            )

    instances: list[ShiftInstance] = []

    # Steps 2-3: Weekly occurrences with exception resolution
    for parent in parents.values():
        for occurrence_date in _occurrence_dates(parent, window_start, window_end):
            override = exceptions.get((parent.id, occurrence_date))
            if override is None:
                instances.append(_recurring_occurrence(parent, occurrence_date))
            elif override.kind == ShiftKind.TOMBSTONE:
                continue
            else:
                instances.append(ShiftInstance(
                    shift_id=override.id,
                    staff_id=override.staff_id,
                    location_id=override.location_id,
                    date=occurrence_date,
                    start_time=override.start_time,
                    end_time=override.end_time,
                    service_ids=override.service_ids,
                    kind=ShiftKind.EXCEPTION,
                    definition_id=parent.id,
                ))

    # Step 4: One-off shifts starting inside the window
    for shift in one_offs:
        shift_date = shift.start_time.date()
        if window_start <= shift_date < window_end:
            instances.append(ShiftInstance(
                shift_id=shift.id,
                staff_id=shift.staff_id,
                location_id=shift.location_id,
                date=shift_date,
                start_time=shift.start_time,
                end_time=shift.end_time,
                service_ids=shift.service_ids,
                kind=ShiftKind.ONE_OFF,
                definition_id=shift.id,
            ))

    instances.sort(key=lambda i: (i.start_time, i.staff_id, i.shift_id))
    return instances


def _occurrence_dates(
    parent: ShiftDefinition,
    window_start: date,
    window_end: date,
) -> list[date]:
    """Dates in [window_start, window_end) on the parent's weekday, from its first occurrence."""
    first = parent.start_time.date()
    last = window_end - timedelta(days=1)
    if parent.recurrence_end_date and parent.recurrence_end_date < last:
        last = parent.recurrence_end_date

    if first > last:
        return []

    current = first
    if current < window_start:
        weeks_behind = (window_start - current).days // 7
        current += timedelta(weeks=weeks_behind)
        if current < window_start:
            current += timedelta(weeks=1)

    dates = []
    while current <= last:
        dates.append(current)
        current += timedelta(weeks=1)

    return dates


def _recurring_occurrence(parent: ShiftDefinition, occurrence_date: date) -> ShiftInstance:
    offset = occurrence_date - parent.start_time.date()
    return ShiftInstance(
        shift_id=parent.id,
        staff_id=parent.staff_id,
        location_id=parent.location_id,
        date=occurrence_date,
        start_time=parent.start_time + offset,
        end_time=parent.end_time + offset,
        service_ids=parent.service_ids,
        kind=ShiftKind.RECURRING,
        definition_id=parent.id,
    )
