"""
Domain models for properties, availability slots and booked visits.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import pendulum
from pendulum import Date, DateTime

from .exceptions import AuthMissing

STATUS_AVAILABLE = "available"

KIND_SCHEDULE = "schedule"
KIND_VISIT = "visit"


class ViewMode(str, Enum):
    """Which slot sources the calendar shows."""

    ALL = "all"
    AVAILABLE = "available"
    VISITS = "visits"


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def duration_hours(self) -> float:
        return self.duration_minutes() / 60

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another (half-open bounds)."""
        return self.start < other.end and self.end > other.start

    def touches(self, other: "TimeRange") -> bool:
        """
        Check overlap with inclusive bounds.

        Unlike ``overlaps``, two ranges that only share a boundary instant
        (one ends exactly when the other begins) count as touching.
        """
        return self.start <= other.end and other.start <= self.end

    def shifted(self, hours: int) -> "TimeRange":
        """Return a copy moved by a whole number of hours."""
        return TimeRange(start=self.start.add(hours=hours), end=self.end.add(hours=hours))

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class Property:
    """A published listing as shown on the calendar."""
    id: str
    title: str
    color: str = ""
    publisher_id: Optional[str] = None


@dataclass(frozen=True)
class AvailabilitySlot:
    """
    A window in which an agent declared a property available for visits.
    """
    id: str
    property_id: str
    time_range: TimeRange
    status: str = STATUS_AVAILABLE

    @property
    def start(self) -> DateTime:
        return self.time_range.start

    @property
    def end(self) -> DateTime:
        return self.time_range.end

    def is_available(self) -> bool:
        return self.status == STATUS_AVAILABLE


@dataclass(frozen=True)
class VisitSlot:
    """A booked viewing. Created by the booking flow, read-only here."""
    id: str
    property_id: str
    time_range: TimeRange
    status: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None

    @property
    def start(self) -> DateTime:
        return self.time_range.start

    @property
    def end(self) -> DateTime:
        return self.time_range.end


@dataclass(frozen=True)
class SlotCandidate:
    """
    A normalized, not yet persisted availability slot.

    ``end_hour`` is exclusive and may be 24 (midnight of the next day).
    """
    property_id: str
    day: Date
    start_hour: int
    end_hour: int

    def time_range(self, timezone: str) -> TimeRange:
        """Resolve the candidate to absolute datetimes in ``timezone``."""
        midnight = pendulum.datetime(self.day.year, self.day.month, self.day.day, tz=timezone)
        return TimeRange(
            start=midnight.add(hours=self.start_hour),
            end=midnight.add(hours=self.end_hour),
        )

    @property
    def duration_hours(self) -> int:
        return self.end_hour - self.start_hour

    def __str__(self) -> str:
        return (
            f"{self.day.format('YYYY-MM-DD')} "
            f"{self.start_hour:02d}:00 - {self.end_hour:02d}:00"
        )


@dataclass(frozen=True)
class SlotStyle:
    """Visual treatment of a slot on the grid."""
    color: str
    fill: str
    border: str
    opacity: float
    z_index: int

    def rich_style(self) -> str:
        """Return a Rich style string for terminal rendering."""
        if not self.color:
            return "dim"
        if self.fill == "solid":
            return f"bold white on {self.color}"
        return self.color


@dataclass(frozen=True)
class DisplaySlot:
    """
    A slot ready for rendering.

    ``start`` and ``end`` carry the display shift; they are never written back.
    """
    id: str
    property_id: str
    kind: str
    status: str
    start: DateTime
    end: DateTime
    style: SlotStyle
    label: str
    pending: bool = False

    @property
    def color(self) -> str:
        return self.style.color

    @property
    def z_index(self) -> int:
        return self.style.z_index

    def is_visit(self) -> bool:
        return self.kind == KIND_VISIT


@dataclass(frozen=True)
class AgentSession:
    """Identity of the signed-in agent, if any."""
    agent_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.agent_id)

    def require_agent(self) -> str:
        """Return the agent id or raise AuthMissing."""
        if not self.agent_id:
            raise AuthMissing("No authenticated agent for this operation.")
        return self.agent_id
