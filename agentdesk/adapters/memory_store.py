"""
In-memory store for mock mode and tests.

Implements the same calls as the REST store, plus a synchronous change feed
that notifies subscribers after every write. Seed data can be loaded from a
JSON file shaped like ``mock_store_data.json``.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pendulum
from pendulum import DateTime

from ..domain.exceptions import PersistenceError
from ..domain.models import STATUS_AVAILABLE, AgentSession
from ..services.changes import (
    DELETE,
    INSERT,
    LISTING_IMAGES_TABLE,
    MESSAGES_TABLE,
    POSTINGS_TABLE,
    SCHEDULES_TABLE,
    SESSIONS_TABLE,
    UPDATE,
    VISITS_TABLE,
    ChangeCallback,
    ChangeEvent,
)
from .records import (
    MessageRecord,
    PostingRecord,
    ScheduleRecord,
    SessionRecord,
    VisitRecord,
    parse_record,
    parse_records,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path(__file__).parent / "mock_store_data.json"

TABLES = (
    POSTINGS_TABLE,
    LISTING_IMAGES_TABLE,
    SCHEDULES_TABLE,
    VISITS_TABLE,
    SESSIONS_TABLE,
    MESSAGES_TABLE,
    "clients",
)


def _instant(value: str) -> DateTime:
    return pendulum.parse(value, tz="UTC")


class MemoryStore:
    """
    Dictionary-backed stand-in for the hosted backend.

    Rows are kept as plain dicts in insertion order, which is also the order
    queries return them in unless the real backend orders explicitly.
    """

    def __init__(
        self,
        tables: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        agent_id: Optional[str] = None,
    ) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {name: [] for name in TABLES}
        for name, rows in (tables or {}).items():
            self.tables[name] = [dict(row) for row in rows]
        self.agent_id = agent_id
        self._subscribers: List[Tuple[str, ChangeCallback, Dict[str, Any]]] = []

    @classmethod
    def from_json(cls, data_file: Path = DEFAULT_DATA_FILE) -> "MemoryStore":
        """Load seed tables (and the mock agent id) from a JSON file."""
        if not data_file.exists():
            raise FileNotFoundError(f"Mock data file not found: {data_file}")

        with open(data_file, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError("Mock data file must contain a mapping at the root level.")

        return cls(tables=data.get("tables", {}), agent_id=data.get("agent_id"))

    def session(self) -> AgentSession:
        return AgentSession(agent_id=self.agent_id)

    # Change feed

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        filters: Optional[Dict[str, Any]] = None,
    ) -> Callable[[], None]:
        subscription = (table, callback, dict(filters or {}))
        self._subscribers.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

        return unsubscribe

    def _emit(self, table: str, event_type: str, row: Dict[str, Any]) -> None:
        event = ChangeEvent(table=table, event_type=event_type, row=dict(row))
        for sub_table, callback, filters in list(self._subscribers):
            if sub_table != table:
                continue
            if any(row.get(key) != value for key, value in filters.items()):
                continue
            callback(event)

    # Generic row helpers

    def _insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self.tables[table].append(stored)
        self._emit(table, INSERT, stored)
        return dict(stored)

    def _find(self, table: str, row_id: str) -> Dict[str, Any]:
        for row in self.tables[table]:
            if str(row.get("id")) == str(row_id):
                return row
        raise PersistenceError(f"No row {row_id} in {table}")

    def _update(self, table: str, row_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        row = self._find(table, row_id)
        row.update(changes)
        self._emit(table, UPDATE, row)
        return dict(row)

    def _delete(self, table: str, row_id: str) -> None:
        row = self._find(table, row_id)
        self.tables[table].remove(row)
        self._emit(table, DELETE, row)

    def _rows_for_properties(self, table: str, property_ids: Sequence[str]) -> List[Dict[str, Any]]:
        wanted = {str(property_id) for property_id in property_ids}
        return [dict(row) for row in self.tables[table] if str(row.get("property_id")) in wanted]

    # Schedules and visits

    async def fetch_schedules(self, property_ids: Sequence[str]) -> List[ScheduleRecord]:
        return parse_records(ScheduleRecord, self._rows_for_properties(SCHEDULES_TABLE, property_ids))

    async def fetch_overlapping_schedules(
        self,
        property_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[ScheduleRecord]:
        matches = [
            row for row in self._rows_for_properties(SCHEDULES_TABLE, [property_id])
            if row.get("status") == STATUS_AVAILABLE
            and _instant(row["start_timestamp"]) <= end
            and _instant(row["end_timestamp"]) >= start
        ]
        return parse_records(ScheduleRecord, matches)

    async def insert_schedule(
        self,
        *,
        property_id: str,
        start: DateTime,
        end: DateTime,
        status: str,
    ) -> ScheduleRecord:
        row = self._insert(
            SCHEDULES_TABLE,
            {
                "property_id": property_id,
                "start_timestamp": start.to_iso8601_string(),
                "end_timestamp": end.to_iso8601_string(),
                "status": status,
            },
        )
        return parse_record(ScheduleRecord, row)

    async def update_schedule(
        self,
        schedule_id: str,
        *,
        start: DateTime,
        end: DateTime,
    ) -> ScheduleRecord:
        row = self._update(
            SCHEDULES_TABLE,
            schedule_id,
            {
                "start_timestamp": start.to_iso8601_string(),
                "end_timestamp": end.to_iso8601_string(),
            },
        )
        return parse_record(ScheduleRecord, row)

    async def delete_schedule(self, schedule_id: str) -> None:
        self._delete(SCHEDULES_TABLE, schedule_id)

    async def fetch_visits(self, property_ids: Sequence[str]) -> List[VisitRecord]:
        clients = {str(client["id"]): client for client in self.tables["clients"]}
        rows = []
        for row in self._rows_for_properties(VISITS_TABLE, property_ids):
            client = clients.get(str(row.get("client_id")))
            row["clients"] = {"name": client.get("name")} if client else None
            rows.append(row)
        return parse_records(VisitRecord, rows)

    # Listings

    async def fetch_postings(self, publisher_id: str) -> List[PostingRecord]:
        rows = [row for row in self.tables[POSTINGS_TABLE] if row.get("publisher_id") == publisher_id]
        rows.sort(key=lambda row: row.get("created_date") or "", reverse=True)
        return parse_records(PostingRecord, rows)

    async def find_posting_by_source_id(self, source_id: str) -> Optional[PostingRecord]:
        for row in self.tables[POSTINGS_TABLE]:
            if str(row.get("posting_id_old")) == str(source_id):
                return parse_record(PostingRecord, row)
        return None

    async def insert_posting(self, row: Dict[str, Any]) -> PostingRecord:
        return parse_record(PostingRecord, self._insert(POSTINGS_TABLE, row))

    async def insert_listing_images(self, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            self._insert(LISTING_IMAGES_TABLE, row)

    async def delete_posting(self, posting_id: str) -> None:
        self._delete(POSTINGS_TABLE, posting_id)

    # Chat

    async def fetch_sessions(self) -> List[SessionRecord]:
        clients = {str(client["id"]): client for client in self.tables["clients"]}
        rows = []
        for row in self.tables[SESSIONS_TABLE]:
            if not row.get("active", True):
                continue
            joined = dict(row)
            joined["client"] = clients.get(str(row.get("client_id")))
            rows.append(joined)
        rows.sort(key=lambda row: _instant(row["last_message_at"]), reverse=True)
        return parse_records(SessionRecord, rows)

    async def fetch_messages(
        self,
        session_id: str,
        *,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[MessageRecord]:
        rows = [row for row in self.tables[MESSAGES_TABLE] if row.get("session_id") == session_id]
        rows.sort(key=lambda row: _instant(row["created_at"]), reverse=newest_first)
        if limit is not None:
            rows = rows[:limit]
        return parse_records(MessageRecord, rows)

    async def insert_message(self, row: Dict[str, Any]) -> MessageRecord:
        stored = dict(row)
        stored.setdefault("created_at", pendulum.now("UTC").to_iso8601_string())
        return parse_record(MessageRecord, self._insert(MESSAGES_TABLE, stored))
