"""Streamed chat turn: event sequence, persistence and title derivation."""
import asyncio
import time

import httpx
import pytest
from sqlmodel import Session, select

from app.main import app
from app.models.conversation import NEW_CHAT_TITLE, Conversation, Message
from app.services import message_service
from app.services.chat_service import FALLBACK_REPLY, fallback_title
from app.services.errors import StoreError

from tests.conftest import FakeAIService, auth_headers, parse_events, post_chat, register


def _types(events):
    return [e.event for e in events]


def _rows(engine, model):
    with Session(engine) as session:
        return list(session.exec(select(model)).all())


class TestNewConversationTurn:

    def test_hello_scenario(self, client, engine):
        _, token = register(client)

        events = post_chat(client, token, {"content": "Hello"})

        assert _types(events) == ["initial", "message", "message", "done", "titleUpdate"]
        conversations = _rows(engine, Conversation)
        assert len(conversations) == 1
        conversation_id = conversations[0].id
        assert events[0].data["conversationId"] == conversation_id
        assert events[0].data["userMessage"]["content"] == "Hello"
        assert events[0].data["userMessage"]["role"] == "user"
        assert events[-1].data == {
            "conversationId": conversation_id,
            "newTitle": "Sailing Into Greetings",
        }
        assert events[-1].data["newTitle"] != NEW_CHAT_TITLE
        assert conversations[0].title == "Sailing Into Greetings"

    def test_chunks_concatenate_to_persisted_reply(self, client, engine, ai):
        ai.chunks = ["The ", "sea ", "is ", "wide."]
        _, token = register(client)

        events = post_chat(client, token, {"content": "Write about the sea"})

        chunk_events = [e for e in events if e.event == "message"]
        assistant_ids = {e.data["id"] for e in chunk_events}
        assert len(assistant_ids) == 1
        assistant_id = assistant_ids.pop()

        assistant_rows = [m for m in _rows(engine, Message) if m.role == "assistant"]
        assert len(assistant_rows) == 1
        assert assistant_rows[0].id == assistant_id
        assert assistant_rows[0].content == "".join(e.data["chunk"] for e in chunk_events)
        assert assistant_rows[0].content == "The sea is wide."

        done = events[len(chunk_events) + 1]
        assert done.event == "done"
        assert done.data["assistantMessage"]["id"] == assistant_id
        assert done.data["assistantMessage"]["content"] == "The sea is wide."

    def test_message_events_carry_conversation_id(self, client):
        _, token = register(client)

        events = post_chat(client, token, {"content": "Hello"})

        conversation_id = events[0].data["conversationId"]
        for event in events[1:3]:
            assert event.data["conversationId"] == conversation_id

    def test_empty_provider_reply(self, client, engine, ai):
        ai.chunks = []
        _, token = register(client)

        events = post_chat(client, token, {"content": "Hello"})

        assert _types(events) == ["initial", "done", "titleUpdate"]
        assistant_rows = [m for m in _rows(engine, Message) if m.role == "assistant"]
        assert assistant_rows[0].content == ""

    def test_new_conversation_sends_empty_history(self, client, ai):
        _, token = register(client)

        post_chat(client, token, {"content": "Hello"})

        assert ai.calls == [("Hello", [])]


class TestResumedConversation:

    def test_history_forwarded_in_order(self, client, ai):
        _, token = register(client)
        first = post_chat(client, token, {"content": "Hello"})
        conversation_id = first[0].data["conversationId"]

        post_chat(client, token, {"content": "And again", "conversationId": conversation_id})

        prompt, history = ai.calls[-1]
        assert prompt == "And again"
        assert history == [
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hello"},
        ]

    def test_no_title_update_once_titled(self, client, ai):
        _, token = register(client)
        first = post_chat(client, token, {"content": "Hello"})
        conversation_id = first[0].data["conversationId"]

        events = post_chat(client, token, {"content": "More", "conversationId": conversation_id})

        assert _types(events) == ["initial", "message", "message", "done"]
        assert ai.title_calls == ["Hello"]

    def test_title_update_when_still_sentinel(self, client, engine, ai):
        _, token = register(client)
        ai.fail_after = 0
        failed = post_chat(client, token, {"content": "Hello"})
        conversation_id = failed[0].data["conversationId"]
        assert _rows(engine, Conversation)[0].title == NEW_CHAT_TITLE

        ai.fail_after = None
        events = post_chat(client, token, {"content": "Retry", "conversationId": conversation_id})

        assert events[-1].event == "titleUpdate"
        assert ai.title_calls == ["Retry"]

    def test_foreign_conversation_is_not_found(self, client, engine):
        _, alice_token = register(client, "alice@example.com")
        _, bob_token = register(client, "bob@example.com")
        alice_turn = post_chat(client, alice_token, {"content": "Hello"})
        conversation_id = alice_turn[0].data["conversationId"]
        messages_before = len(_rows(engine, Message))
        conversations_before = len(_rows(engine, Conversation))

        events = post_chat(client, bob_token, {"content": "Hi", "conversationId": conversation_id})

        assert _types(events) == ["error"]
        assert events[0].data == {"content": "Conversation not found"}
        assert len(_rows(engine, Message)) == messages_before
        assert len(_rows(engine, Conversation)) == conversations_before

    def test_unknown_conversation_is_not_found(self, client, engine):
        _, token = register(client)

        events = post_chat(client, token, {"content": "Hi", "conversationId": "does-not-exist"})

        assert _types(events) == ["error"]
        assert events[0].data["content"] == "Conversation not found"
        assert _rows(engine, Message) == []
        assert _rows(engine, Conversation) == []


class TestProviderFailure:

    def test_failure_after_fragments_persists_fallback(self, client, engine, ai):
        ai.chunks = ["Hel", "lo"]
        ai.fail_after = 2
        _, token = register(client)

        events = post_chat(client, token, {"content": "Hello"})

        assert _types(events) == ["initial", "message", "message", "error"]
        assert events[-1].data == {"content": FALLBACK_REPLY}
        assistant_rows = [m for m in _rows(engine, Message) if m.role == "assistant"]
        assert len(assistant_rows) == 1
        assert assistant_rows[0].content == FALLBACK_REPLY
        assert assistant_rows[0].content != "Hello"

    def test_failure_keeps_conversation_and_user_message(self, client, engine, ai):
        ai.fail_after = 0
        _, token = register(client)

        events = post_chat(client, token, {"content": "Hello"})

        assert _types(events) == ["initial", "error"]
        assert len(_rows(engine, Conversation)) == 1
        roles = sorted(m.role for m in _rows(engine, Message))
        assert roles == ["assistant", "user"]

    def test_no_title_derivation_after_failure(self, client, ai):
        ai.fail_after = 1
        _, token = register(client)

        events = post_chat(client, token, {"content": "Hello"})

        assert "titleUpdate" not in _types(events)
        assert ai.title_calls == []

    def test_title_failure_falls_back_to_truncated_content(self, client, engine, ai):
        ai.title_error = True
        content = "x" * 60
        _, token = register(client)

        events = post_chat(client, token, {"content": content})

        assert events[-1].event == "titleUpdate"
        assert events[-1].data["newTitle"] == "x" * 50 + "..."
        assert _rows(engine, Conversation)[0].title == "x" * 50 + "..."

    def test_short_content_title_fallback_has_no_ellipsis(self, client, ai):
        ai.title_error = True
        _, token = register(client)

        events = post_chat(client, token, {"content": "Hello"})

        assert events[-1].data["newTitle"] == "Hello"


class TestInvalidInput:

    def test_empty_content(self, client, engine):
        _, token = register(client)

        events = post_chat(client, token, {"content": ""})

        assert _types(events) == ["error"]
        assert events[0].data == {"content": "Invalid input data"}
        assert _rows(engine, Conversation) == []

    def test_content_too_long(self, client, engine):
        _, token = register(client)

        events = post_chat(client, token, {"content": "a" * 4001})

        assert _types(events) == ["error"]
        assert _rows(engine, Conversation) == []

    def test_max_length_content_accepted(self, client):
        _, token = register(client)

        events = post_chat(client, token, {"content": "a" * 4000})

        assert events[0].event == "initial"

    def test_missing_content(self, client):
        _, token = register(client)

        events = post_chat(client, token, {"conversationId": "abc"})

        assert _types(events) == ["error"]
        assert events[0].data["content"] == "Invalid input data"

    def test_malformed_json(self, client, engine):
        _, token = register(client)
        headers = {**auth_headers(token), "Content-Type": "application/json"}

        response = client.post("/api/chat/messages", content=b"{not json", headers=headers)

        assert response.status_code == 200
        assert "event: error" in response.text
        assert "Invalid input data" in response.text
        assert _rows(engine, Conversation) == []


def test_requires_authentication(client, engine):
    response = client.post("/api/chat/messages", json={"content": "Hello"})

    assert response.status_code == 401
    assert _rows(engine, Conversation) == []


def test_persistence_error_becomes_single_error_event(client, engine, monkeypatch):
    _, token = register(client)

    def broken_create_message(*args, **kwargs):
        raise StoreError("Failed to create message")

    monkeypatch.setattr(message_service, "create_message", broken_create_message)

    events = post_chat(client, token, {"content": "Hello"})

    assert _types(events) == ["error"]
    assert events[0].data == {"content": "Internal server error"}
    # The conversation created before the failure is left in place
    assert len(_rows(engine, Conversation)) == 1


def test_fallback_store_failure_emits_one_error(client, ai, monkeypatch):
    ai.fail_after = 1
    _, token = register(client)
    real_create_message = message_service.create_message

    def create_message(session, conversation_id, content, role, message_id=None):
        if role == "assistant":
            raise StoreError("Failed to create message")
        return real_create_message(session, conversation_id, content, role, message_id=message_id)

    monkeypatch.setattr(message_service, "create_message", create_message)

    events = post_chat(client, token, {"content": "Hello"})

    assert _types(events) == ["initial", "message", "error"]


def test_fresh_service_per_request_uses_injected_provider(client):
    _, token = register(client)
    from app.core.deps import get_ai_service

    app.dependency_overrides[get_ai_service] = lambda: FakeAIService(chunks=["Other"])

    events = post_chat(client, token, {"content": "Hello"})

    assert events[1].data["chunk"] == "Other"


def test_fallback_title_limits():
    assert fallback_title("Hello", limit=0) == "..."
    assert fallback_title("abcdef", limit=3) == "abc..."
    assert fallback_title("abc", limit=3) == "abc"
    assert fallback_title("y" * 51) == "y" * 50 + "..."


@pytest.mark.asyncio
async def test_slow_store_does_not_block_event_loop(client, monkeypatch):
    _, token = register(client)
    real_create_message = message_service.create_message

    def slow_create_message(*args, **kwargs):
        time.sleep(0.4)
        return real_create_message(*args, **kwargs)

    monkeypatch.setattr(message_service, "create_message", slow_create_message)

    gaps = []
    stop = asyncio.Event()

    async def ticker():
        last = time.monotonic()
        while not stop.is_set():
            await asyncio.sleep(0.01)
            now = time.monotonic()
            gaps.append(now - last)
            last = now

    tick_task = asyncio.create_task(ticker())
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            response = await http.post(
                "/api/chat/messages", json={"content": "Hello"}, headers=auth_headers(token)
            )
    finally:
        stop.set()
        await tick_task

    types = [e.event for e in parse_events(response.text)]
    assert types[0] == "initial" and "done" in types
    assert gaps
    assert max(gaps) < 0.2
