"""
Domain layer - Pure business logic without external dependencies.
"""

from .calendar_grid import GridPlacement, Selection, WeekGrid
from .models import (
    AgentSession,
    AvailabilitySlot,
    DisplaySlot,
    Property,
    SlotCandidate,
    TimeRange,
    ViewMode,
    VisitSlot,
)
from .palette import PALETTE, assign_colors, color_for_index

__all__ = [
    "AgentSession",
    "AvailabilitySlot",
    "DisplaySlot",
    "GridPlacement",
    "PALETTE",
    "Property",
    "Selection",
    "SlotCandidate",
    "TimeRange",
    "ViewMode",
    "VisitSlot",
    "WeekGrid",
    "assign_colors",
    "color_for_index",
]
