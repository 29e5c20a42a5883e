"""
Weekly calendar grid: a 7-day x 24-hour board.

Turns pointer drag gestures into hour selections and positions display
slots by their hour offset. No rendering happens here; the CLI and any other
front-end read the geometry off ``GridPlacement`` objects.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import pendulum
from pendulum import Date

from .models import DisplaySlot

HOURS_PER_DAY = 24
DAYS_PER_WEEK = 7
HOUR_HEIGHT_PX = 60


def validate_hour(hour: int) -> int:
    """Ensure a grid hour is between 0 and 23."""
    if not 0 <= hour <= HOURS_PER_DAY - 1:
        raise ValueError(f"Hour must be between 0 and 23, got {hour}")
    return hour


def start_of_week(day: Date) -> Date:
    """Return the Sunday that opens the week containing ``day``."""
    # date.weekday(): Monday=0 ... Sunday=6
    return day.subtract(days=(day.weekday() + 1) % DAYS_PER_WEEK)


@dataclass(frozen=True)
class Selection:
    """Raw result of a drag gesture: the two hours the pointer went through."""
    day: Date
    first_hour: int
    last_hour: int


@dataclass(frozen=True)
class GridPlacement:
    """Where a display slot lands on the grid."""
    slot: DisplaySlot
    day_index: int
    top_px: int
    height_px: int

    @property
    def z_index(self) -> int:
        return self.slot.z_index


class WeekGrid:
    """
    State of the weekly grid: the visible week and an in-progress drag.
    """

    def __init__(self, reference: Optional[Date] = None, timezone: str = "UTC"):
        self.timezone = timezone
        today = reference or pendulum.today(timezone).date()
        self.week_start = start_of_week(today)
        self._drag_start: Optional[Tuple[Date, int]] = None

    @property
    def days(self) -> List[Date]:
        return [self.week_start.add(days=offset) for offset in range(DAYS_PER_WEEK)]

    @property
    def week_end(self) -> Date:
        return self.week_start.add(days=DAYS_PER_WEEK - 1)

    @property
    def is_selecting(self) -> bool:
        return self._drag_start is not None

    def label(self) -> str:
        return f"{self.week_start.format('MMM D')} - {self.week_end.format('MMM D, YYYY')}"

    def previous_week(self) -> None:
        self.week_start = self.week_start.subtract(days=DAYS_PER_WEEK)

    def next_week(self) -> None:
        self.week_start = self.week_start.add(days=DAYS_PER_WEEK)

    def contains(self, day: Date) -> bool:
        return self.week_start <= day <= self.week_end

    def begin_drag(self, day: Date, hour: int) -> None:
        """Pointer pressed on a cell."""
        self._drag_start = (day, validate_hour(hour))

    def cancel_drag(self) -> None:
        self._drag_start = None

    def end_drag(self, day: Date, hour: int) -> Optional[Selection]:
        """
        Pointer released on a cell.

        Returns a Selection when the drag started on the same day, otherwise
        None. The drag state is cleared in both cases.
        """
        validate_hour(hour)
        drag_start, self._drag_start = self._drag_start, None

        if drag_start is None:
            return None

        start_day, start_hour = drag_start
        if start_day != day:
            return None

        return Selection(day=day, first_hour=start_hour, last_hour=hour)

    def highlighted_hours(self, day: Date, hover_hour: int) -> List[int]:
        """Hours to highlight on ``day`` while the pointer hovers ``hover_hour``."""
        if self._drag_start is None:
            return []
        start_day, start_hour = self._drag_start
        if start_day != day:
            return []
        low, high = sorted((start_hour, validate_hour(hover_hour)))
        return list(range(low, high + 1))

    def place(self, slot: DisplaySlot) -> Optional[GridPlacement]:
        """
        Position a slot by its hour offset from midnight.

        Slots outside the visible week return None. A slot running past
        midnight is clipped to the bottom of its start day.
        """
        start = slot.start.in_timezone(self.timezone)
        end = slot.end.in_timezone(self.timezone)
        day = start.date()

        if not self.contains(day):
            return None

        day_end = start.start_of("day").add(days=1)
        visible_end = min(end, day_end)
        minutes = int((visible_end - start).total_seconds() // 60)

        return GridPlacement(
            slot=slot,
            day_index=self.days.index(day),
            top_px=start.hour * HOUR_HEIGHT_PX + start.minute * HOUR_HEIGHT_PX // 60,
            height_px=minutes * HOUR_HEIGHT_PX // 60,
        )

    def layout(self, slots: Iterable[DisplaySlot]) -> List[GridPlacement]:
        """
        Place every visible slot, lowest stacking order first.

        The sort is stable, so slots sharing a z-index keep their input order
        and later entries are drawn on top.
        """
        placements = [placement for placement in map(self.place, slots) if placement]
        return sorted(placements, key=lambda p: p.z_index)

    def events_for_day(self, slots: Iterable[DisplaySlot], day: Date) -> List[DisplaySlot]:
        return [
            slot for slot in slots
            if slot.start.in_timezone(self.timezone).date() == day
        ]
