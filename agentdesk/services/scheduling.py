"""
Scheduling engine for per-property availability slots.

The engine turns a grid selection into a candidate slot, checks it against
the store for overlaps, persists it, and keeps the in-memory board that the
calendar renders from. The store is injected through a protocol so the REST
adapter, the in-memory adapter, or a test stub can be plugged in.

Overlap policy: a candidate conflicts with an existing ``available`` slot of
the same property when ``existing.start <= candidate.end`` and
``existing.end >= candidate.start``. Both bounds are inclusive, so a slot
ending at 12:00 blocks a new slot starting at 12:00.

The overlap query and the insert are two separate store calls; two engines
confirming overlapping candidates at the same moment can both pass the check.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Set

from pendulum import Date, DateTime

from ..adapters.records import ScheduleRecord, VisitRecord
from ..domain.calendar_grid import Selection, validate_hour
from ..domain.exceptions import OverlapError, RequestInFlightError
from ..domain.models import (
    KIND_SCHEDULE,
    KIND_VISIT,
    STATUS_AVAILABLE,
    AgentSession,
    AvailabilitySlot,
    DisplaySlot,
    Property,
    SlotCandidate,
    TimeRange,
    ViewMode,
    VisitSlot,
)
from ..domain.palette import PALETTE, color_for_index, slot_style
from .changes import SCHEDULES_TABLE, VISITS_TABLE, ChangeEvent, ChangeFeedProtocol
from .slot_board import BoardEntry, SlotBoard

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_SHIFT_HOURS = 3

OVERLAP_MESSAGE = "This time slot overlaps with existing schedules"


class ScheduleStoreProtocol(Protocol):
    """Protocol describing the store calls the scheduling engine needs."""

    async def fetch_schedules(self, property_ids: Sequence[str]) -> List[ScheduleRecord]:
        """Return availability rows for the given properties, in store order."""

    async def fetch_overlapping_schedules(
        self,
        property_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[ScheduleRecord]:
        """Return ``available`` rows with start <= end and end >= start."""

    async def insert_schedule(
        self,
        *,
        property_id: str,
        start: DateTime,
        end: DateTime,
        status: str,
    ) -> ScheduleRecord:
        """Insert a row and return it with its generated id."""

    async def update_schedule(
        self,
        schedule_id: str,
        *,
        start: DateTime,
        end: DateTime,
    ) -> ScheduleRecord:
        """Rewrite the timestamps of a row and return it."""

    async def delete_schedule(self, schedule_id: str) -> None:
        """Delete a row by id."""

    async def fetch_visits(self, property_ids: Sequence[str]) -> List[VisitRecord]:
        """Return visit rows (with client names) for the given properties."""


class SchedulingEngine:
    """
    Validates, persists and displays availability slots.

    Every operation that writes requires an authenticated agent in the
    injected session. Failures are raised as ``AgentDeskError`` subclasses;
    turning them into user-facing alerts is the caller's job (see
    ``services.alerts``).
    """

    def __init__(
        self,
        store: ScheduleStoreProtocol,
        session: AgentSession,
        *,
        timezone: str,
        palette: Sequence[str] = PALETTE,
        display_shift_hours: int = DEFAULT_DISPLAY_SHIFT_HOURS,
        revalidate_on_update: bool = False,
        board: Optional[SlotBoard] = None,
    ) -> None:
        self._store = store
        self._session = session
        self.timezone = timezone
        self.palette = tuple(palette)
        self.display_shift_hours = display_shift_hours
        self.revalidate_on_update = revalidate_on_update
        self.board = board or SlotBoard()
        self._in_flight = False
        self._refresh_tasks: Set[asyncio.Task] = set()

    @property
    def is_busy(self) -> bool:
        """True while a confirmation is waiting on the store."""
        return self._in_flight

    def propose_slot(
        self,
        property_id: str,
        day: Date,
        start_hour: int,
        end_hour: int,
    ) -> SlotCandidate:
        """
        Normalize a pair of grid hours into a candidate slot.

        The hours may come in either order. The earlier one becomes the start
        and the later one plus one becomes the exclusive end, so selecting
        the same hour twice yields a one-hour slot.
        """
        validate_hour(start_hour)
        validate_hour(end_hour)
        low, high = sorted((start_hour, end_hour))
        return SlotCandidate(
            property_id=property_id,
            day=day,
            start_hour=low,
            end_hour=high + 1,
        )

    def propose_from_selection(self, property_id: str, selection: Selection) -> SlotCandidate:
        return self.propose_slot(
            property_id,
            selection.day,
            selection.first_hour,
            selection.last_hour,
        )

    async def find_conflicts(
        self,
        property_id: str,
        time_range: TimeRange,
        exclude_id: Optional[str] = None,
    ) -> List[AvailabilitySlot]:
        """Return available slots of ``property_id`` touching ``time_range``."""
        rows = await self._store.fetch_overlapping_schedules(
            property_id,
            time_range.start,
            time_range.end,
        )
        slots = [row.to_slot(self.timezone) for row in rows]
        return [
            slot for slot in slots
            if slot.id != exclude_id
            and slot.is_available()
            and slot.time_range.touches(time_range)
        ]

    async def confirm_slot(self, candidate: SlotCandidate) -> AvailabilitySlot:
        """
        Persist a candidate after the overlap check passes.

        On success the new slot is appended to the board as pending. On any
        failure the board is left untouched and nothing is retried.

        Raises:
            AuthMissing: No agent is signed in.
            RequestInFlightError: Another confirmation is still running.
            OverlapError: The candidate touches an existing available slot.
            PersistenceError: The store call failed.
        """
        self._session.require_agent()

        if self._in_flight:
            raise RequestInFlightError("A slot request is already in progress.")

        self._in_flight = True
        try:
            time_range = candidate.time_range(self.timezone)
            conflicts = await self.find_conflicts(candidate.property_id, time_range)

            if conflicts:
                logger.info(
                    "Rejected slot %s for property %s: overlaps %s",
                    candidate,
                    candidate.property_id,
                    ", ".join(slot.id for slot in conflicts),
                )
                raise OverlapError(
                    OVERLAP_MESSAGE,
                    conflicting_ids=[slot.id for slot in conflicts],
                )

            record = await self._store.insert_schedule(
                property_id=candidate.property_id,
                start=time_range.start,
                end=time_range.end,
                status=STATUS_AVAILABLE,
            )
            slot = record.to_slot(self.timezone)
            self.board.append_pending(slot)

            logger.info(
                "Created availability slot %s for property %s (%s)",
                slot.id,
                slot.property_id,
                slot.time_range,
            )
            return slot
        finally:
            self._in_flight = False

    async def update_slot(
        self,
        slot: AvailabilitySlot,
        new_start: DateTime,
        new_end: DateTime,
    ) -> AvailabilitySlot:
        """
        Move an existing slot to new timestamps.

        Sibling slots are only re-checked for overlap when
        ``revalidate_on_update`` is enabled; by default the new times are
        written as given.
        """
        self._session.require_agent()
        time_range = TimeRange(start=new_start, end=new_end)

        if self.revalidate_on_update:
            conflicts = await self.find_conflicts(
                slot.property_id,
                time_range,
                exclude_id=slot.id,
            )
            if conflicts:
                raise OverlapError(
                    OVERLAP_MESSAGE,
                    conflicting_ids=[conflict.id for conflict in conflicts],
                )

        record = await self._store.update_schedule(slot.id, start=new_start, end=new_end)
        updated = record.to_slot(self.timezone)
        self.board.replace(updated)

        logger.info("Moved availability slot %s to %s", updated.id, updated.time_range)
        return updated

    async def delete_slot(self, slot: AvailabilitySlot) -> None:
        """Delete a slot from the store and drop it from the board."""
        self._session.require_agent()
        await self._store.delete_schedule(slot.id)
        self.board.remove(slot.id)
        logger.info("Deleted availability slot %s", slot.id)

    async def refresh(self, properties: Sequence[Property]) -> None:
        """Refetch availability and visits and merge them into the board."""
        property_ids = [prop.id for prop in properties]
        fetch_id = self.board.start_fetch()

        if property_ids:
            schedule_rows = await self._store.fetch_schedules(property_ids)
            visit_rows = await self._store.fetch_visits(property_ids)
        else:
            schedule_rows, visit_rows = [], []

        self.board.reconcile_schedules(
            (row.to_slot(self.timezone) for row in schedule_rows),
            fetch_id,
        )
        self.board.set_visits(row.to_slot(self.timezone) for row in visit_rows)

    def display_slots(
        self,
        properties: Sequence[Property],
        view_mode: ViewMode | str = ViewMode.ALL,
    ) -> List[DisplaySlot]:
        """
        Build the render list from the board without touching the store.

        Availability slots come first, then visits, each in board order.
        A property keeps its assigned colour; only uncoloured properties
        fall back to their position in ``properties``.
        """
        mode = ViewMode(view_mode)
        colors: Dict[str, str] = {
            prop.id: prop.color or color_for_index(index, self.palette)
            for index, prop in enumerate(properties)
        }

        available = [
            self._display_schedule(entry, colors[entry.slot.property_id])
            for entry in self.board.schedules
            if entry.slot.property_id in colors
        ]
        visits = [
            self._display_visit(visit, colors[visit.property_id])
            for visit in self.board.visits
            if visit.property_id in colors
        ]

        if mode is ViewMode.AVAILABLE:
            return available
        if mode is ViewMode.VISITS:
            return visits
        return available + visits

    async def merge_for_display(
        self,
        properties: Sequence[Property],
        view_mode: ViewMode | str = ViewMode.ALL,
    ) -> List[DisplaySlot]:
        """Refetch both slot sources and return the merged render list."""
        await self.refresh(properties)
        return self.display_slots(properties, view_mode)

    def watch(self, feed: ChangeFeedProtocol, properties: Sequence[Property]):
        """
        Refresh the board whenever availability or visit rows change.

        Must be called with an event loop running. Returns a callable that
        cancels both subscriptions.
        """
        scope = list(properties)

        def on_change(event: ChangeEvent) -> None:
            logger.debug("%s on %s, refreshing calendar", event.event_type, event.table)
            self._schedule_refresh(scope)

        unsubscribers = [
            feed.subscribe(SCHEDULES_TABLE, on_change),
            feed.subscribe(VISITS_TABLE, on_change),
        ]

        def unsubscribe() -> None:
            for cancel in unsubscribers:
                cancel()

        return unsubscribe

    async def wait_for_refreshes(self) -> None:
        """Wait until refreshes triggered by change notifications settle."""
        while self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    def _schedule_refresh(self, properties: Sequence[Property]) -> None:
        task = asyncio.get_running_loop().create_task(self.refresh(properties))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        self._refresh_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Calendar refresh after change notification failed: %s", exc)

    def _shift(self, time_range: TimeRange) -> TimeRange:
        return time_range.shifted(self.display_shift_hours)

    def _display_schedule(self, entry: BoardEntry, color: str) -> DisplaySlot:
        slot = entry.slot
        shown = self._shift(slot.time_range)
        label = "Available" if slot.is_available() else slot.status.title()
        return DisplaySlot(
            id=slot.id,
            property_id=slot.property_id,
            kind=KIND_SCHEDULE,
            status=slot.status,
            start=shown.start,
            end=shown.end,
            style=slot_style(color, is_visit=False),
            label=label,
            pending=entry.pending,
        )

    def _display_visit(self, visit: VisitSlot, color: str) -> DisplaySlot:
        shown = self._shift(visit.time_range)
        return DisplaySlot(
            id=visit.id,
            property_id=visit.property_id,
            kind=KIND_VISIT,
            status=visit.status,
            start=shown.start,
            end=shown.end,
            style=slot_style(color, is_visit=True),
            label=f"Visit - {visit.client_name or 'No client name'}",
        )
