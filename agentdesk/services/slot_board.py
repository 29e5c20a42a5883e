"""
In-memory collection of the slots currently shown on the calendar.

Locally created slots are appended immediately and tagged ``pending``.
Refetches are merged by id instead of replacing the collection wholesale,
so a refetch that was issued before an insert does not drop the fresh slot,
and a refetch that raced ahead of a delete does not bring the removed slot
back. The first refetch issued after the insert is authoritative: if it does
not contain the slot, the slot is gone from the server and leaves the board.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Set

from ..domain.models import AvailabilitySlot, VisitSlot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoardEntry:
    slot: AvailabilitySlot
    pending: bool = False
    # Number of refetches issued before this entry was appended.
    fetch_floor: int = 0

    @property
    def id(self) -> str:
        return self.slot.id


class SlotBoard:
    """Availability entries (with pending markers) plus the visit list."""

    def __init__(self) -> None:
        self._schedules: List[BoardEntry] = []
        self._visits: List[VisitSlot] = []
        self._deleted: Set[str] = set()
        self._fetches_issued = 0

    @property
    def schedules(self) -> List[BoardEntry]:
        return list(self._schedules)

    @property
    def visits(self) -> List[VisitSlot]:
        return list(self._visits)

    @property
    def pending_ids(self) -> List[str]:
        return [entry.id for entry in self._schedules if entry.pending]

    def get(self, slot_id: str) -> Optional[AvailabilitySlot]:
        for entry in self._schedules:
            if entry.id == slot_id:
                return entry.slot
        return None

    def append_pending(self, slot: AvailabilitySlot) -> None:
        """Optimistically add a slot the store just accepted."""
        self._schedules.append(
            BoardEntry(slot=slot, pending=True, fetch_floor=self._fetches_issued)
        )

    def replace(self, slot: AvailabilitySlot) -> bool:
        """Swap in an edited slot, keeping its position and pending marker."""
        for index, entry in enumerate(self._schedules):
            if entry.id == slot.id:
                self._schedules[index] = replace(entry, slot=slot)
                return True
        return False

    def remove(self, slot_id: str) -> bool:
        """Drop a slot and remember it so stale refetches cannot restore it."""
        before = len(self._schedules)
        self._schedules = [entry for entry in self._schedules if entry.id != slot_id]
        self._deleted.add(slot_id)
        return len(self._schedules) != before

    def start_fetch(self) -> int:
        """Register a refetch about to be issued; pass the id to ``reconcile_schedules``."""
        self._fetches_issued += 1
        return self._fetches_issued

    def reconcile_schedules(self, fetched: Iterable[AvailabilitySlot], fetch_id: int) -> None:
        """
        Merge a server refetch into the board.

        Server rows win and keep server order. Pending entries missing from a
        refetch issued before they were appended stay at the end; missing
        from a later refetch, they were deleted on the server and are dropped.
        Tombstones are forgotten once the server no longer returns the
        deleted row.
        """
        fetched = list(fetched)
        fetched_ids = {slot.id for slot in fetched}

        entries = [
            BoardEntry(slot=slot)
            for slot in fetched
            if slot.id not in self._deleted
        ]
        missing = [
            entry for entry in self._schedules
            if entry.pending and entry.id not in fetched_ids
        ]
        still_pending = [entry for entry in missing if fetch_id <= entry.fetch_floor]
        dropped = [entry.id for entry in missing if fetch_id > entry.fetch_floor]

        self._deleted &= fetched_ids
        self._schedules = entries + still_pending

        if still_pending:
            logger.debug(
                "Kept %d pending slot(s) missing from an earlier refetch: %s",
                len(still_pending),
                ", ".join(entry.id for entry in still_pending),
            )
        if dropped:
            logger.info("Pending slot(s) no longer on the server: %s", ", ".join(dropped))

    def set_visits(self, visits: Iterable[VisitSlot]) -> None:
        self._visits = list(visits)
