# clinic_availability/services/slots/cache.py
"""
In-process TTL + LRU cache for day slots and heatmaps.

Entries are read-through and never invalidated on writes: a cached result
may lag a new booking by up to ttl_seconds. Booking creation is protected
by the (staff_id, start_time) unique index, not by this cache.

Key format:
  day:     ("day", service_id, location_id, date, staff_id|None, is_twin, addon_ids, repeat_type_id|None)
  heatmap: ("heatmap", service_id, location_id, start, end, staff_id|None)
"""

import logging
import threading
import time
from collections import OrderedDict
from datetime import date
from typing import Any, Callable, Hashable, Iterable

logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:
    """Capacity-bounded TTL cache; recency is refreshed on get and set."""

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return default

            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return default

            self._entries.move_to_end(key)
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache evicted %s", evicted)

            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING


def day_slots_key(
    service_id: int,
    location_id: int,
    target_date: date,
    staff_id: int | None = None,
    is_twin: bool = False,
    addon_ids: Iterable[int] = (),
    repeat_type_id: int | None = None,
) -> tuple:
    return (
        "day",
        service_id,
        location_id,
        target_date.isoformat(),
        staff_id,
        bool(is_twin),
        tuple(sorted(set(addon_ids))),
        repeat_type_id,
    )


def heatmap_key(
    service_id: int,
    location_id: int,
    start: date,
    end: date,
    staff_id: int | None = None,
) -> tuple:
    return (
        "heatmap",
        service_id,
        location_id,
        start.isoformat(),
        end.isoformat(),
        staff_id,
    )
