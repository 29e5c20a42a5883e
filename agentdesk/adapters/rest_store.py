"""
REST client for the hosted backend (PostgREST tables plus the auth endpoint).
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from pendulum import DateTime

from ..domain.exceptions import PersistenceError
from ..domain.models import STATUS_AVAILABLE, AgentSession
from ..services.changes import (
    LISTING_IMAGES_TABLE,
    MESSAGES_TABLE,
    POSTINGS_TABLE,
    SCHEDULES_TABLE,
    SESSIONS_TABLE,
    VISITS_TABLE,
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

Params = List[Tuple[str, str]]


def _in_list(values: Sequence[str]) -> str:
    return "in.(" + ",".join(str(value) for value in values) + ")"


class RestStore:
    """
    Client for the backend's table API.

    Filters use the PostgREST query syntax (``column=op.value``). Blocking
    HTTP calls run in a worker thread so the async services never block the
    event loop.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: int = 30,
    ):
        """
        Initialize the client.

        Args:
            base_url: Project URL, e.g. https://xyz.example.co
            api_key: Public API key sent with every request
            access_token: The agent's session token; falls back to the API key
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }
        self._has_user_token = bool(access_token)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Params] = None,
        payload: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer

        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                params=params,
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise PersistenceError(f"{method} {path} failed: {e}") from e

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise PersistenceError(f"{method} {path} returned invalid JSON: {e}") from e

    async def _table(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Params] = None,
        payload: Any = None,
        returning: bool = False,
    ) -> List[Dict[str, Any]]:
        logger.debug("%s %s %s", method, table, params)
        data = await asyncio.to_thread(
            self._request,
            method,
            f"/rest/v1/{table}",
            params=params,
            payload=payload,
            prefer="return=representation" if returning else None,
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise PersistenceError(f"{method} {table} returned {type(data).__name__}, expected a list")
        return data

    async def _single(self, method: str, table: str, **kwargs: Any) -> Dict[str, Any]:
        rows = await self._table(method, table, returning=True, **kwargs)
        if not rows:
            raise PersistenceError(f"{method} {table} returned no row")
        return rows[0]

    async def fetch_session(self) -> AgentSession:
        """
        Resolve the agent behind the access token.

        Returns an anonymous session when no user token is configured or the
        backend rejects it.
        """
        if not self._has_user_token:
            return AgentSession()

        try:
            user = await asyncio.to_thread(self._request, "GET", "/auth/v1/user")
        except PersistenceError as exc:
            logger.warning("Could not resolve the signed-in agent: %s", exc)
            return AgentSession()

        if not isinstance(user, dict) or not user.get("id"):
            return AgentSession()
        return AgentSession(agent_id=user["id"], email=user.get("email"))

    # Schedules and visits

    async def fetch_schedules(self, property_ids: Sequence[str]) -> List[ScheduleRecord]:
        rows = await self._table(
            "GET",
            SCHEDULES_TABLE,
            params=[("select", "*"), ("property_id", _in_list(property_ids))],
        )
        return parse_records(ScheduleRecord, rows)

    async def fetch_overlapping_schedules(
        self,
        property_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[ScheduleRecord]:
        rows = await self._table(
            "GET",
            SCHEDULES_TABLE,
            params=[
                ("select", "*"),
                ("property_id", f"eq.{property_id}"),
                ("status", f"eq.{STATUS_AVAILABLE}"),
                ("start_timestamp", f"lte.{end.to_iso8601_string()}"),
                ("end_timestamp", f"gte.{start.to_iso8601_string()}"),
            ],
        )
        return parse_records(ScheduleRecord, rows)

    async def insert_schedule(
        self,
        *,
        property_id: str,
        start: DateTime,
        end: DateTime,
        status: str,
    ) -> ScheduleRecord:
        row = await self._single(
            "POST",
            SCHEDULES_TABLE,
            payload={
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
        row = await self._single(
            "PATCH",
            SCHEDULES_TABLE,
            params=[("id", f"eq.{schedule_id}")],
            payload={
                "start_timestamp": start.to_iso8601_string(),
                "end_timestamp": end.to_iso8601_string(),
            },
        )
        return parse_record(ScheduleRecord, row)

    async def delete_schedule(self, schedule_id: str) -> None:
        await self._table("DELETE", SCHEDULES_TABLE, params=[("id", f"eq.{schedule_id}")])

    async def fetch_visits(self, property_ids: Sequence[str]) -> List[VisitRecord]:
        rows = await self._table(
            "GET",
            VISITS_TABLE,
            params=[("select", "*,clients(name)"), ("property_id", _in_list(property_ids))],
        )
        return parse_records(VisitRecord, rows)

    # Listings

    async def fetch_postings(self, publisher_id: str) -> List[PostingRecord]:
        rows = await self._table(
            "GET",
            POSTINGS_TABLE,
            params=[
                ("select", "*,listing_images(id,url,order_index)"),
                ("publisher_id", f"eq.{publisher_id}"),
                ("order", "created_date.desc"),
            ],
        )
        return parse_records(PostingRecord, rows)

    async def find_posting_by_source_id(self, source_id: str) -> Optional[PostingRecord]:
        rows = await self._table(
            "GET",
            POSTINGS_TABLE,
            params=[("select", "*"), ("posting_id_old", f"eq.{source_id}"), ("limit", "1")],
        )
        return parse_record(PostingRecord, rows[0]) if rows else None

    async def insert_posting(self, row: Dict[str, Any]) -> PostingRecord:
        return parse_record(PostingRecord, await self._single("POST", POSTINGS_TABLE, payload=row))

    async def insert_listing_images(self, rows: List[Dict[str, Any]]) -> None:
        await self._table("POST", LISTING_IMAGES_TABLE, payload=rows)

    async def delete_posting(self, posting_id: str) -> None:
        await self._table("DELETE", POSTINGS_TABLE, params=[("id", f"eq.{posting_id}")])

    # Chat

    async def fetch_sessions(self) -> List[SessionRecord]:
        rows = await self._table(
            "GET",
            SESSIONS_TABLE,
            params=[
                ("select", "*,client:clients(id,first_name,last_name,email,phone)"),
                ("active", "eq.true"),
                ("order", "last_message_at.desc"),
            ],
        )
        return parse_records(SessionRecord, rows)

    async def fetch_messages(
        self,
        session_id: str,
        *,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[MessageRecord]:
        params = [
            ("select", "*"),
            ("session_id", f"eq.{session_id}"),
            ("order", "created_at.desc" if newest_first else "created_at.asc"),
        ]
        if limit is not None:
            params.append(("limit", str(limit)))
        rows = await self._table("GET", MESSAGES_TABLE, params=params)
        return parse_records(MessageRecord, rows)

    async def insert_message(self, row: Dict[str, Any]) -> MessageRecord:
        return parse_record(MessageRecord, await self._single("POST", MESSAGES_TABLE, payload=row))
