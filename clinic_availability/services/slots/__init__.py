# clinic_availability/services/slots/__init__.py
"""
Slot availability module.

Pure stages: intervals → expander → exclusions → calculator
Orchestration: availability (day pipeline + cache + holds), heatmap
"""

from .config import BookingConfig, get_booking_config
from .intervals import Interval, merge, subtract, intersects
from .expander import ShiftDefinition, ShiftInstance, ShiftKind, expand_shifts
from .exclusions import ExclusionSources, collect_exclusions
from .calculator import Slot, generate_slots, sort_slots
from .cache import TTLCache
from .holds import SlotHoldStore
from .heatmap import HeatmapDay
from .availability import AvailabilityEngine

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "Interval",
    "merge",
    "subtract",
    "intersects",
    "ShiftDefinition",
    "ShiftInstance",
    "ShiftKind",
    "expand_shifts",
    "ExclusionSources",
    "collect_exclusions",
    "Slot",
    "generate_slots",
    "sort_slots",
    "TTLCache",
    "SlotHoldStore",
    "HeatmapDay",
    "AvailabilityEngine",
]
