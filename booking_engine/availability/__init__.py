"""Availability: window normalization, slot generation and selection."""

from .conflicts import is_available
from .generator import generate_slots
from .selector import format_slot_time, select_interactive, select_nearest, select_time_matched
from .service import AvailabilityMode, AvailabilityResult, AvailabilityService
from .window import NormalizedWindow, normalize

__all__ = [
    "AvailabilityMode",
    "AvailabilityResult",
    "AvailabilityService",
    "NormalizedWindow",
    "format_slot_time",
    "generate_slots",
    "is_available",
    "normalize",
    "select_interactive",
    "select_nearest",
    "select_time_matched",
]
