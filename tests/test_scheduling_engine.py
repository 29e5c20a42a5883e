"""
Tests for the SchedulingEngine orchestration layer.
"""

import asyncio
from typing import List

import pendulum
import pytest

from agentdesk.adapters.memory_store import MemoryStore
from agentdesk.domain.exceptions import AuthMissing, OverlapError, PersistenceError, RequestInFlightError
from agentdesk.domain.models import AgentSession, Property, ViewMode
from agentdesk.domain.palette import PALETTE, assign_colors
from agentdesk.services.scheduling import OVERLAP_MESSAGE, SchedulingEngine

TZ = "UTC"
DAY = pendulum.date(2024, 11, 25)

PROPERTIES = [
    Property(id="prop-1", title="Palermo"),
    Property(id="prop-2", title="Belgrano"),
]


def _seed() -> dict:
    return {
        "property_schedules": [
            {
                "id": "sched-1",
                "property_id": "prop-1",
                "start_timestamp": "2024-11-25T10:00:00+00:00",
                "end_timestamp": "2024-11-25T12:00:00+00:00",
                "status": "available",
            },
            {
                "id": "sched-2",
                "property_id": "prop-2",
                "start_timestamp": "2024-11-26T15:00:00+00:00",
                "end_timestamp": "2024-11-26T17:00:00+00:00",
                "status": "available",
            },
        ],
        "property_visit": [
            {
                "id": "visit-1",
                "property_id": "prop-2",
                "start_date": "2024-11-26T15:00:00+00:00",
                "end_date": "2024-11-26T16:00:00+00:00",
                "status": "confirmed",
                "client_id": "client-1",
            },
        ],
        "clients": [{"id": "client-1", "name": "Lucia Fernandez"}],
    }


def _build_engine(store=None, session=None, **kwargs) -> SchedulingEngine:
    store = store or MemoryStore(tables=_seed(), agent_id="agent-1")
    session = session or AgentSession(agent_id="agent-1")
    return SchedulingEngine(store, session, timezone=TZ, **kwargs)


def _schedule_ids(store: MemoryStore) -> List[str]:
    return [row["id"] for row in store.tables["property_schedules"]]


class FailingInsertStore(MemoryStore):
    async def insert_schedule(self, **kwargs):
        raise PersistenceError("insert failed")


class BlockingStore(MemoryStore):
    """Holds the overlap query until ``release`` is set."""

    release: asyncio.Event

    async def fetch_overlapping_schedules(self, property_id, start, end):
        await self.release.wait()
        return await super().fetch_overlapping_schedules(property_id, start, end)


class TestProposeSlot:
    """Tests for turning grid hours into candidates."""

    def test_normalizes_reversed_hours(self):
        engine = _build_engine()

        candidate = engine.propose_slot("prop-1", DAY, 14, 10)

        assert (candidate.start_hour, candidate.end_hour) == (10, 15)

    def test_single_hour_selection(self):
        engine = _build_engine()

        candidate = engine.propose_slot("prop-1", DAY, 9, 9)

        assert (candidate.start_hour, candidate.end_hour) == (9, 10)

    def test_last_hour_of_day(self):
        candidate = _build_engine().propose_slot("prop-1", DAY, 22, 23)

        assert candidate.end_hour == 24
        assert candidate.time_range(TZ).end == pendulum.datetime(2024, 11, 26, tz=TZ)

    def test_invalid_hour(self):
        with pytest.raises(ValueError):
            _build_engine().propose_slot("prop-1", DAY, 10, 24)


class TestConfirmSlot:
    """Tests for the overlap check and persistence."""

    @pytest.mark.parametrize(
        "first_hour,last_hour",
        [
            (11, 12),  # [11, 13) overlaps [10, 12)
            (12, 13),  # [12, 14) starts where the existing slot ends
            (8, 9),  # [8, 10) ends where the existing slot starts
            (10, 11),  # identical
        ],
    )
    def test_rejects_touching_candidates(self, first_hour, last_hour):
        engine = _build_engine()
        store = engine._store
        candidate = engine.propose_slot("prop-1", DAY, first_hour, last_hour)

        with pytest.raises(OverlapError, match=OVERLAP_MESSAGE) as excinfo:
            asyncio.run(engine.confirm_slot(candidate))

        assert excinfo.value.conflicting_ids == ["sched-1"]
        assert _schedule_ids(store) == ["sched-1", "sched-2"]
        assert engine.board.schedules == []
        assert not engine.is_busy

    def test_accepts_disjoint_candidate(self):
        engine = _build_engine()
        store = engine._store
        candidate = engine.propose_slot("prop-1", DAY, 13, 13)

        slot = asyncio.run(engine.confirm_slot(candidate))

        assert slot.time_range.start == pendulum.datetime(2024, 11, 25, 13, tz=TZ)
        assert slot.time_range.end == pendulum.datetime(2024, 11, 25, 14, tz=TZ)
        assert slot.status == "available"
        assert slot.id in _schedule_ids(store)
        assert engine.board.pending_ids == [slot.id]

    def test_other_property_does_not_conflict(self):
        engine = _build_engine()
        candidate = engine.propose_slot("prop-2", DAY, 10, 11)

        slot = asyncio.run(engine.confirm_slot(candidate))

        assert slot.property_id == "prop-2"

    def test_non_available_rows_do_not_conflict(self):
        tables = _seed()
        tables["property_schedules"][0]["status"] = "blocked"
        engine = _build_engine(store=MemoryStore(tables=tables))

        slot = asyncio.run(engine.confirm_slot(engine.propose_slot("prop-1", DAY, 10, 11)))

        assert slot.property_id == "prop-1"

    def test_requires_agent(self):
        engine = _build_engine(session=AgentSession())
        store = engine._store

        with pytest.raises(AuthMissing):
            asyncio.run(engine.confirm_slot(engine.propose_slot("prop-1", DAY, 15, 16)))

        assert _schedule_ids(store) == ["sched-1", "sched-2"]

    def test_store_failure_leaves_board_untouched(self):
        engine = _build_engine(store=FailingInsertStore(tables=_seed()))

        with pytest.raises(PersistenceError):
            asyncio.run(engine.confirm_slot(engine.propose_slot("prop-1", DAY, 15, 16)))

        assert engine.board.schedules == []
        assert not engine.is_busy

    def test_second_submit_while_in_flight_is_refused(self):
        store = BlockingStore(tables=_seed())
        engine = _build_engine(store=store)

        async def scenario():
            store.release = asyncio.Event()
            first = asyncio.create_task(
                engine.confirm_slot(engine.propose_slot("prop-1", DAY, 15, 16))
            )
            await asyncio.sleep(0)
            assert engine.is_busy

            with pytest.raises(RequestInFlightError):
                await engine.confirm_slot(engine.propose_slot("prop-1", DAY, 18, 19))

            store.release.set()
            return await first

        slot = asyncio.run(scenario())

        assert slot.start.hour == 15
        assert not engine.is_busy
        assert len(_schedule_ids(store)) == 3


class TestUpdateAndDelete:
    def test_update_without_revalidation(self):
        """Moving a slot onto a sibling is written as given by default."""
        engine = _build_engine()
        store = engine._store
        asyncio.run(engine.refresh(PROPERTIES))
        second = asyncio.run(
            engine.confirm_slot(engine.propose_slot("prop-1", DAY, 15, 16))
        )

        updated = asyncio.run(
            engine.update_slot(
                second,
                pendulum.datetime(2024, 11, 25, 11, tz=TZ),
                pendulum.datetime(2024, 11, 25, 13, tz=TZ),
            )
        )

        assert updated.start.hour == 11
        row = store.tables["property_schedules"][-1]
        assert pendulum.parse(row["start_timestamp"]) == pendulum.datetime(2024, 11, 25, 11, tz=TZ)
        assert engine.board.get(second.id).start.hour == 11
        assert engine.board.pending_ids == [second.id]

    def test_update_with_revalidation_rejects_overlap(self):
        engine = _build_engine(revalidate_on_update=True)
        store = engine._store
        second = asyncio.run(
            engine.confirm_slot(engine.propose_slot("prop-1", DAY, 15, 16))
        )

        with pytest.raises(OverlapError):
            asyncio.run(
                engine.update_slot(
                    second,
                    pendulum.datetime(2024, 11, 25, 11, tz=TZ),
                    pendulum.datetime(2024, 11, 25, 13, tz=TZ),
                )
            )

        row = store.tables["property_schedules"][-1]
        assert pendulum.parse(row["start_timestamp"]).hour == 15

    def test_update_with_revalidation_ignores_itself(self):
        engine = _build_engine(revalidate_on_update=True)
        asyncio.run(engine.refresh(PROPERTIES))
        slot = engine.board.get("sched-1")

        updated = asyncio.run(
            engine.update_slot(
                slot,
                pendulum.datetime(2024, 11, 25, 10, tz=TZ),
                pendulum.datetime(2024, 11, 25, 13, tz=TZ),
            )
        )

        assert updated.end.hour == 13

    def test_update_requires_start_before_end(self):
        engine = _build_engine()
        asyncio.run(engine.refresh(PROPERTIES))
        slot = engine.board.get("sched-1")

        with pytest.raises(ValueError):
            asyncio.run(
                engine.update_slot(
                    slot,
                    pendulum.datetime(2024, 11, 25, 13, tz=TZ),
                    pendulum.datetime(2024, 11, 25, 13, tz=TZ),
                )
            )

    def test_delete_removes_everywhere(self):
        engine = _build_engine()
        store = engine._store
        asyncio.run(engine.refresh(PROPERTIES))
        slot = engine.board.get("sched-1")

        asyncio.run(engine.delete_slot(slot))

        assert "sched-1" not in _schedule_ids(store)
        assert engine.board.get("sched-1") is None
        shown = asyncio.run(engine.merge_for_display(PROPERTIES, ViewMode.AVAILABLE))
        assert [s.id for s in shown] == ["sched-2"]

    def test_delete_requires_agent(self):
        engine = _build_engine(session=AgentSession())
        asyncio.run(engine.refresh(PROPERTIES))

        with pytest.raises(AuthMissing):
            asyncio.run(engine.delete_slot(engine.board.get("sched-1")))


class TestMergeForDisplay:
    """Tests for the merged render list."""

    @pytest.mark.parametrize(
        "view_mode,expected",
        [
            (ViewMode.ALL, ["sched-1", "sched-2", "visit-1"]),
            (ViewMode.AVAILABLE, ["sched-1", "sched-2"]),
            (ViewMode.VISITS, ["visit-1"]),
            ("visits", ["visit-1"]),
        ],
    )
    def test_view_modes(self, view_mode, expected):
        engine = _build_engine()

        shown = asyncio.run(engine.merge_for_display(PROPERTIES, view_mode))

        assert [s.id for s in shown] == expected

    def test_colours_and_labels(self):
        engine = _build_engine()

        shown = {s.id: s for s in asyncio.run(engine.merge_for_display(PROPERTIES))}

        assert shown["sched-1"].color == PALETTE[0]
        assert shown["sched-2"].color == PALETTE[1]
        assert shown["visit-1"].color == PALETTE[1]
        assert shown["sched-1"].label == "Available"
        assert shown["visit-1"].label == "Visit - Lucia Fernandez"
        assert shown["visit-1"].is_visit()
        assert shown["visit-1"].z_index > shown["sched-2"].z_index

    def test_visit_without_client_name(self):
        tables = _seed()
        tables["clients"] = []
        engine = _build_engine(store=MemoryStore(tables=tables))

        shown = asyncio.run(engine.merge_for_display(PROPERTIES, ViewMode.VISITS))

        assert shown[0].label == "Visit - No client name"

    def test_display_shift_applied_once(self):
        """Rendered times move by the shift; stored rows keep their values."""
        engine = _build_engine()
        store = engine._store

        first = asyncio.run(engine.merge_for_display(PROPERTIES, ViewMode.AVAILABLE))
        second = asyncio.run(engine.merge_for_display(PROPERTIES, ViewMode.AVAILABLE))

        assert first[0].start == pendulum.datetime(2024, 11, 25, 13, tz=TZ)
        assert first[0].end == pendulum.datetime(2024, 11, 25, 15, tz=TZ)
        assert second[0].start == first[0].start
        assert engine.board.get("sched-1").start.hour == 10
        assert store.tables["property_schedules"][0]["start_timestamp"] == "2024-11-25T10:00:00+00:00"

    def test_zero_shift(self):
        engine = _build_engine(display_shift_hours=0)

        shown = asyncio.run(engine.merge_for_display(PROPERTIES, ViewMode.AVAILABLE))

        assert shown[0].start.hour == 10

    def test_no_properties(self):
        assert asyncio.run(_build_engine().merge_for_display([])) == []

    def test_pending_flag_carried(self):
        engine = _build_engine()
        slot = asyncio.run(engine.confirm_slot(engine.propose_slot("prop-1", DAY, 15, 16)))

        shown = {s.id: s for s in engine.display_slots(PROPERTIES)}
        assert shown[slot.id].pending

        asyncio.run(engine.refresh(PROPERTIES))
        shown = {s.id: s for s in engine.display_slots(PROPERTIES)}
        assert not shown[slot.id].pending

    def test_filtered_scope_keeps_assigned_colours(self):
        """Slots keep their property's colour when the scope is narrowed."""
        colored = assign_colors(PROPERTIES)
        engine = _build_engine()

        shown = asyncio.run(engine.merge_for_display(colored[1:], ViewMode.AVAILABLE))

        assert [s.id for s in shown] == ["sched-2"]
        assert shown[0].color == colored[1].color == PALETTE[1]

    def test_ninth_property_wraps_colour(self):
        properties = [Property(id=f"prop-{i}", title=f"P{i}") for i in range(1, 10)]
        tables = _seed()
        tables["property_schedules"].append(
            {
                "id": "sched-9",
                "property_id": "prop-9",
                "start_timestamp": "2024-11-28T10:00:00+00:00",
                "end_timestamp": "2024-11-28T11:00:00+00:00",
                "status": "available",
            }
        )
        engine = _build_engine(store=MemoryStore(tables=tables))

        shown = {s.id: s for s in asyncio.run(engine.merge_for_display(properties))}

        assert shown["sched-9"].color == shown["sched-1"].color == PALETTE[0]


def test_watch_refreshes_on_change():
    engine = _build_engine()
    store = engine._store

    async def scenario():
        await engine.refresh(PROPERTIES)
        unsubscribe = engine.watch(store, PROPERTIES)
        await store.insert_schedule(
            property_id="prop-2",
            start=pendulum.datetime(2024, 11, 27, 9, tz=TZ),
            end=pendulum.datetime(2024, 11, 27, 10, tz=TZ),
            status="available",
        )
        await engine.wait_for_refreshes()
        unsubscribe()
        await store.delete_schedule("sched-2")
        await engine.wait_for_refreshes()

    asyncio.run(scenario())

    ids = [entry.id for entry in engine.board.schedules]
    assert len(ids) == 3
    assert "sched-2" in ids


def test_slot_deleted_elsewhere_leaves_display():
    """A pending slot removed by another client is gone after the next merge."""
    store = MemoryStore(tables=_seed(), agent_id="agent-1")
    mine = _build_engine(store=store)
    other = _build_engine(store=store)

    async def scenario():
        await mine.refresh(PROPERTIES)
        created = await mine.confirm_slot(mine.propose_slot("prop-1", DAY, 15, 16))

        await other.refresh(PROPERTIES)
        await other.delete_slot(other.board.get(created.id))

        shown = await mine.merge_for_display(PROPERTIES, ViewMode.AVAILABLE)
        return created, shown

    created, shown = asyncio.run(scenario())

    assert created.id not in _schedule_ids(store)
    assert [s.id for s in shown] == ["sched-1", "sched-2"]
    assert mine.board.pending_ids == []
