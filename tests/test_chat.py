"""
Tests for the chat inbox.
"""

import asyncio

import pytest

from agentdesk.adapters.memory_store import DEFAULT_DATA_FILE, MemoryStore
from agentdesk.domain.exceptions import AuthMissing
from agentdesk.domain.models import AgentSession
from agentdesk.services.chat import ChatInbox


def _inbox(agent_id="agent-1"):
    store = MemoryStore.from_json(DEFAULT_DATA_FILE)
    return ChatInbox(store, AgentSession(agent_id=agent_id)), store


class TestLoad:
    def test_sessions_most_recent_first_with_latest_message(self):
        inbox, _ = _inbox()

        sessions = asyncio.run(inbox.load_sessions())

        assert [s.id for s in sessions] == ["session-1", "session-2"]
        assert sessions[0].latest_message.id == "msg-2"
        assert sessions[0].client.display_name() == "Lucia Fernandez"
        assert inbox.sessions == sessions

    def test_inactive_sessions_hidden(self):
        inbox, store = _inbox()
        store.tables["conversation_sessions"][1]["active"] = False

        sessions = asyncio.run(inbox.load_sessions())

        assert [s.id for s in sessions] == ["session-1"]

    def test_sessions_require_agent(self):
        inbox, _ = _inbox(agent_id=None)

        with pytest.raises(AuthMissing):
            asyncio.run(inbox.load_sessions())

    def test_messages_oldest_first(self):
        inbox, _ = _inbox()

        messages = asyncio.run(inbox.load_messages("session-1"))

        assert [m.id for m in messages] == ["msg-1", "msg-2"]
        assert messages[1].is_outgoing()


class TestSend:
    def test_send_outgoing_message(self):
        inbox, store = _inbox()
        session = asyncio.run(inbox.load_sessions())[0]

        message = asyncio.run(inbox.send(session, "See you Monday"))

        assert message.direction == "outgoing"
        assert message.channel == "dashboard"
        assert message.agent_id == "agent-1"
        assert message.client_id == "client-1"
        assert store.tables["messages"][-1]["content"] == "See you Monday"

    def test_blank_message_ignored(self):
        inbox, store = _inbox()
        session = asyncio.run(inbox.load_sessions())[0]
        count = len(store.tables["messages"])

        assert asyncio.run(inbox.send(session, "   ")) is None
        assert len(store.tables["messages"]) == count


def test_watch_refetches_open_conversation_only():
    inbox, store = _inbox()

    async def scenario():
        session = (await inbox.load_sessions())[0]
        await inbox.load_messages(session.id)
        unsubscribe = inbox.watch(store, session.id)

        await store.insert_message(
            {
                "session_id": "session-2",
                "client_id": "client-2",
                "direction": "incoming",
                "channel": "whatsapp",
                "content": "Other chat",
            }
        )
        await inbox.wait_for_refreshes()
        other_chat_count = len(inbox.messages)

        await store.insert_message(
            {
                "session_id": session.id,
                "client_id": "client-1",
                "direction": "incoming",
                "channel": "whatsapp",
                "content": "Perfecto",
            }
        )
        await inbox.wait_for_refreshes()
        unsubscribe()
        return other_chat_count

    other_chat_count = asyncio.run(scenario())

    assert other_chat_count == 2
    assert [m.content for m in inbox.messages][-1] == "Perfecto"
