# clinic_availability/services/slots/heatmap.py
"""
Heatmap: per-day available slot counts over a date range.

Each day runs the day pipeline (through the day cache) on its own worker
thread with its own Session. Days are independent:
✓ A failing day is recorded with its error, the others still count
✓ Days unfinished at the deadline are recorded as "timeout"
✓ Days the day query would reject (past, beyond horizon) are recorded as
  "InvalidRange" without being computed
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date, timedelta

from ..errors import AvailabilityError, InvalidRange

logger = logging.getLogger(__name__)

# Error recorded for days the single-day query rejects (past or beyond horizon)
OUTSIDE_HORIZON = "InvalidRange"


@dataclass(frozen=True)
class HeatmapDay:
    date: date
    available_slots: int | None  # None = unknown (see error)
    error: str | None = None


def date_range(start: date, end: date) -> list[date]:
    """Dates in [start, end], inclusive."""
    days = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days


def build_heatmap(
    engine,
    service_id: int,
    location_id: int,
    start: date,
    end: date,
    staff_id: int | None = None,
) -> list[HeatmapDay]:
    """
    Count slots per day for [start, end].

    Args:
        engine: AvailabilityEngine providing validate_day, cached_day_slots and config

    Returns:
        One HeatmapDay per date, in date order.
    """
    config = engine.config
    dates = date_range(start, end)
    started = time.monotonic()

    results: dict[date, HeatmapDay] = {}
    bookable = []
    for dt in dates:
        try:
            engine.validate_day(dt)
        except InvalidRange:
            results[dt] = HeatmapDay(dt, None, OUTSIDE_HORIZON)
            continue
        bookable.append(dt)

    executor = ThreadPoolExecutor(
        max_workers=min(config.heatmap_workers, len(bookable)) or 1,
        thread_name_prefix="heatmap",
    )

    try:
        futures = {
            executor.submit(
                engine.cached_day_slots,
                service_id, location_id, dt, staff_id,
            ): dt
            for dt in bookable
        }
        done, _ = wait(futures, timeout=config.heatmap_timeout_seconds)

        for future, dt in futures.items():
            if future not in done:
                future.cancel()
                results[dt] = HeatmapDay(dt, None, "timeout")
                continue

            exc = future.exception()
            if exc is None:
                results[dt] = HeatmapDay(dt, len(future.result()))
            elif isinstance(exc, AvailabilityError):
                logger.warning("Heatmap day %s failed: %s", dt, exc)
                results[dt] = HeatmapDay(dt, None, type(exc).__name__)
            else:
                logger.error("Heatmap day %s failed", dt, exc_info=exc)
                results[dt] = HeatmapDay(dt, None, "error")
    finally:
        # Running days past the deadline finish in the background
        executor.shutdown(wait=False, cancel_futures=True)

    days = [results[dt] for dt in dates]
    logger.info(
        "Heatmap service=%s location=%s %s..%s: %d days, %d with slots, %d errored in %.2fs",
        service_id, location_id, start, end,
        len(days),
        sum(1 for d in days if d.available_slots),
        sum(1 for d in days if d.error),
        time.monotonic() - started,
    )
    return days
