# clinic_availability/services/slots/config.py
"""
Booking configuration for slots calculation.
"""

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from zoneinfo import ZoneInfo

from ...config import settings


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for the availability engine.

    Attributes:
        horizon_days: How many days ahead a day query may look
        min_advance_minutes: Minimum minutes before a slot can be booked
        slot_step_minutes: Start-time cadence in minutes (5/10/15/20/30/60)
        cache_ttl_seconds: TTL of day/heatmap cache entries
        cache_max_size: Entries per cache before LRU eviction
        max_heatmap_days: Largest heatmap range, inclusive
        heatmap_workers: Thread pool size for per-day heatmap computation
        heatmap_timeout_seconds: Deadline for a whole heatmap range
        continuation_ttl_days: Lifetime of a continuation token
        hold_ttl_minutes: Lifetime of a checkout hold
        timezone: Clinic timezone; all stored datetimes are naive local time
    """
    horizon_days: int = 90
    min_advance_minutes: int = 60
    slot_step_minutes: int = 15
    cache_ttl_seconds: int = 20
    cache_max_size: int = 200
    max_heatmap_days: int = 62
    heatmap_workers: int = 4
    heatmap_timeout_seconds: float = 10.0
    continuation_ttl_days: int = 30
    hold_ttl_minutes: int = 30
    timezone: str = "Europe/Amsterdam"

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_step_minutes not in (5, 10, 15, 20, 30, 60):
            raise ValueError(
                f"slot_step_minutes must divide an hour evenly, got {self.slot_step_minutes}"
            )
        if self.cache_max_size < 1:
            raise ValueError(f"cache_max_size must be positive, got {self.cache_max_size}")
        if self.heatmap_workers < 1:
            raise ValueError(f"heatmap_workers must be positive, got {self.heatmap_workers}")
        if self.min_advance_minutes < 0:
            raise ValueError(f"min_advance_minutes cannot be negative, got {self.min_advance_minutes}")

    def local_now(self) -> datetime:
        """Current wall-clock time in the clinic timezone, naive."""
        return datetime.now(ZoneInfo(self.timezone)).replace(tzinfo=None)


@lru_cache
def get_booking_config() -> BookingConfig:
    """Get booking configuration (singleton), built from environment settings."""
    return BookingConfig(
        horizon_days=settings.horizon_days,
        min_advance_minutes=settings.min_advance_minutes,
        slot_step_minutes=settings.slot_step_minutes,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        cache_max_size=settings.cache_max_size,
        max_heatmap_days=settings.max_heatmap_days,
        heatmap_workers=settings.heatmap_workers,
        heatmap_timeout_seconds=settings.heatmap_timeout_seconds,
        continuation_ttl_days=settings.continuation_ttl_days,
        hold_ttl_minutes=settings.hold_ttl_minutes,
        timezone=settings.timezone,
    )
