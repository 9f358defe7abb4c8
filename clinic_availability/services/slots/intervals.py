# clinic_availability/services/slots/intervals.py
"""
Half-open time intervals [start, end) and the algebra the slot pipeline
is built on: merge, subtract, intersects, clip.

All functions are pure and never mutate their input.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, NamedTuple


class Interval(NamedTuple):
    start: datetime  # inclusive
    end: datetime    # exclusive

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def is_empty(self) -> bool:
        return self.end <= self.start


def intersects(a: Interval, b: Interval) -> bool:
    """
    True iff the two half-open intervals share at least one instant.

    An empty interval contains no instant, so it intersects nothing.
    """
    if a.end <= a.start or b.end <= b.start:
        return False
    return a.start < b.end and b.start < a.end


def merge(intervals: Iterable[Interval]) -> list[Interval]:
    """
    Merge overlapping and adjacent intervals.

    Returns the minimal ordered list of disjoint intervals covering the input.
    Empty intervals are dropped.
    """
    ordered = sorted(iv for iv in intervals if not iv.is_empty())
    merged: list[Interval] = []

    for iv in ordered:
        if merged and iv.start <= merged[-1].end:
            last = merged[-1]
            if iv.end > last.end:
                merged[-1] = Interval(last.start, iv.end)
        else:
            merged.append(iv)

    return merged


def subtract(base: Interval, excluded: Iterable[Interval]) -> list[Interval]:
    """
    Parts of `base` not covered by any excluded interval, in order.
    """
    if base.is_empty():
        return []

    free: list[Interval] = []
    cursor = base.start

    for ex in merge(excluded):
        if ex.end <= cursor:
            continue
        if ex.start >= base.end:
            break
        if ex.start > cursor:
            free.append(Interval(cursor, ex.start))
        cursor = max(cursor, ex.end)
        if cursor >= base.end:
            break

    if cursor < base.end:
        free.append(Interval(cursor, base.end))

    return free


def clip(intervals: Iterable[Interval], bound: Interval) -> list[Interval]:
    """Intersections of each interval with `bound`, empty results dropped."""
    clipped = []
    for iv in intervals:
        start = max(iv.start, bound.start)
        end = min(iv.end, bound.end)
        if end > start:
            clipped.append(Interval(start, end))
    return clipped


def day_interval(target_date: date) -> Interval:
    """The calendar day [target_date 00:00, next day 00:00)."""
    start = datetime.combine(target_date, time.min)
    return Interval(start, start + timedelta(days=1))


def dates_interval(first: date, last: date) -> Interval:
    """Whole days first..last inclusive."""
    return Interval(
        datetime.combine(first, time.min),
        datetime.combine(last + timedelta(days=1), time.min),
    )
