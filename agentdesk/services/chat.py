"""
Chat inbox glue: conversation sessions and their messages.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from ..adapters.records import MessageRecord, SessionRecord
from ..domain.models import AgentSession
from .changes import MESSAGES_TABLE, ChangeEvent, ChangeFeedProtocol

logger = logging.getLogger(__name__)

OUTGOING = "outgoing"
DASHBOARD_CHANNEL = "dashboard"


class ChatStoreProtocol(Protocol):
    """Protocol describing the store calls needed by the inbox."""

    async def fetch_sessions(self) -> List[SessionRecord]:
        """Return active sessions, most recent activity first."""

    async def fetch_messages(
        self,
        session_id: str,
        *,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[MessageRecord]:
        """Return a session's messages ordered by creation time."""

    async def insert_message(self, row: Dict[str, Any]) -> MessageRecord:
        """Insert a message and return it."""


class ChatInbox:
    """
    Session list and open conversation for the signed-in agent.

    ``sessions`` and ``messages`` hold the last fetched state; change
    notifications trigger a full refetch of the open conversation.
    """

    def __init__(self, store: ChatStoreProtocol, session: AgentSession) -> None:
        self._store = store
        self._session = session
        self.sessions: List[SessionRecord] = []
        self.messages: List[MessageRecord] = []
        self._refresh_tasks: set = set()

    async def load_sessions(self) -> List[SessionRecord]:
        """Fetch active sessions, each with its latest message attached."""
        self._session.require_agent()
        sessions = await self._store.fetch_sessions()

        with_latest = []
        for chat_session in sessions:
            latest = await self._store.fetch_messages(chat_session.id, newest_first=True, limit=1)
            with_latest.append(chat_session.model_copy(update={"messages": latest}))

        self.sessions = with_latest
        return with_latest

    async def load_messages(self, session_id: str) -> List[MessageRecord]:
        self.messages = await self._store.fetch_messages(session_id)
        return self.messages

    async def send(self, chat_session: SessionRecord, content: str) -> Optional[MessageRecord]:
        """
        Send an outgoing message from the dashboard.

        Blank messages are ignored and return None.
        """
        if not content.strip():
            return None

        agent_id = self._session.require_agent()
        message = await self._store.insert_message(
            {
                "session_id": chat_session.id,
                "client_id": chat_session.client_id,
                "agent_id": agent_id,
                "content": content,
                "direction": OUTGOING,
                "channel": DASHBOARD_CHANNEL,
            }
        )
        logger.info("Sent message %s in session %s", message.id, chat_session.id)
        return message

    def watch(self, feed: ChangeFeedProtocol, session_id: str):
        """
        Refetch the conversation whenever one of its messages changes.

        Must be called with an event loop running.
        """

        def on_change(event: ChangeEvent) -> None:
            logger.debug("%s on %s, refreshing session %s", event.event_type, event.table, session_id)
            task = asyncio.get_running_loop().create_task(self.load_messages(session_id))
            self._refresh_tasks.add(task)
            task.add_done_callback(self._on_refresh_done)

        return feed.subscribe(MESSAGES_TABLE, on_change, filters={"session_id": session_id})

    async def wait_for_refreshes(self) -> None:
        while self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        self._refresh_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Message refresh failed: %s", task.exception())
