"""Client-side consumer of the chat event stream.

Keeps an optimistic transcript for one conversation view: the user's
message is shown immediately under a local id, then reconciled with the
server's events as they arrive. The cache entries touched by a turn are
marked stale afterwards so the next read re-syncs with the server.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import httpx

from app.client.query_cache import CONVERSATIONS_KEY, QueryCache, messages_key
from app.models.conversation import NEW_CHAT_TITLE
from app.streaming.sse import ServerEvent, SSEDecoder, StreamEventType

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "I'm sorry, an unexpected error occurred. Please try again."
PENDING_CONVERSATION_ID = "temp-new-conversation"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ChatMessage:
    id: str
    conversation_id: str
    content: str
    role: str
    created_at: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            content=data["content"],
            role=data["role"],
            created_at=data["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _TurnState:
    temp_message_id: str
    known_conversation_id: Optional[str]
    final_conversation_id: Optional[str] = None


class ChatStreamConsumer:
    """
    Sends chat turns and folds the resulting events into local state.

    At most one streaming response is open per instance: starting a turn
    closes the previous one, and the superseded turn ends without touching
    the transcript.

    Args:
        http: Client with base_url pointing at the API
        token: Bearer token
        cache: Shared cache for conversation list and transcripts
        conversation_id: Conversation currently shown, None for a new chat
        navigate: Called with the new route when a new conversation is
            assigned an id
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        token: str,
        cache: Optional[QueryCache] = None,
        conversation_id: Optional[str] = None,
        navigate: Optional[Callable[[str], None]] = None,
    ):
        self.http = http
        self.token = token
        self.cache = cache or QueryCache()
        self.conversation_id = conversation_id
        self.navigate = navigate
        self.messages: List[ChatMessage] = []
        self.is_ai_typing = False
        self._response: Optional[httpx.Response] = None
        self._turn = 0

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def load_conversations(self) -> List[Dict[str, Any]]:
        """Fetch the conversation list and store it as fresh."""
        response = await self.http.get("/api/chat/conversations", headers=self._headers)
        response.raise_for_status()
        conversations = response.json()["conversations"]
        self.cache.set(CONVERSATIONS_KEY, conversations)
        return conversations

    async def load_messages(self, conversation_id: Optional[str] = None) -> List[ChatMessage]:
        """Fetch the transcript and replace the local message list with it."""
        conversation_id = conversation_id or self.conversation_id
        if not conversation_id:
            self.messages = []
            return []

        response = await self.http.get(
            f"/api/chat/conversations/{conversation_id}/messages", headers=self._headers
        )
        response.raise_for_status()
        messages = [ChatMessage.from_dict(m) for m in response.json()["messages"]]
        self.cache.set(messages_key(conversation_id), messages)
        self.messages = list(messages)
        return messages

    async def _close_inflight(self) -> None:
        response, self._response = self._response, None
        if response is not None:
            await response.aclose()

    async def send_message(self, content: str, conversation_id: Optional[str] = None) -> None:
        """
        Run one turn: optimistic append, stream, reconcile, mark stale.

        Network failures and non-success responses are shown as a generic
        assistant error message; they are not raised.
        """
        self._turn += 1
        turn = self._turn
        self.is_ai_typing = True

        state = _TurnState(temp_message_id=str(uuid4()), known_conversation_id=conversation_id)
        self.messages.append(
            ChatMessage(
                id=state.temp_message_id,
                conversation_id=conversation_id or PENDING_CONVERSATION_ID,
                content=content,
                role="user",
                created_at=_now_iso(),
            )
        )

        await self._close_inflight()

        body: Dict[str, Any] = {"content": content}
        if conversation_id:
            body["conversationId"] = conversation_id

        response: Optional[httpx.Response] = None
        try:
            request = self.http.build_request(
                "POST", "/api/chat/messages", json=body, headers=self._headers
            )
            response = await self.http.send(request, stream=True)
            self._response = response
            response.raise_for_status()

            decoder = SSEDecoder()
            async for text in response.aiter_text():
                for event in decoder.feed(text):
                    self._handle_event(event, state)
        except (httpx.HTTPError, httpx.StreamError) as e:
            if turn != self._turn:
                logger.debug("Turn %d superseded, dropping its stream: %s", turn, e)
            else:
                logger.error("Error during streaming: %s", e)
                self._show_error(state, GENERIC_ERROR_MESSAGE)
        finally:
            if response is not None:
                await response.aclose()
                if self._response is response:
                    self._response = None
            if turn == self._turn:
                self.is_ai_typing = False
            self._mark_stale(state)

    def _handle_event(self, event: ServerEvent, state: _TurnState) -> None:
        data = event.data
        if event.event == StreamEventType.INITIAL.value:
            self._on_initial(data, state)
        elif event.event == StreamEventType.MESSAGE.value:
            self._on_message(data, state)
        elif event.event == StreamEventType.ERROR.value:
            if data.get("content"):
                logger.error("Stream error: %s", data["content"])
                self._show_error(state, data["content"], data.get("conversationId"))
        elif event.event == StreamEventType.DONE.value:
            pass
        elif event.event == StreamEventType.TITLE_UPDATE.value:
            self._on_title_update(data)
        else:
            logger.warning("Unknown stream event %r", event.event)

    def _on_initial(self, data: Dict[str, Any], state: _TurnState) -> None:
        user_message = data.get("userMessage")
        if not user_message:
            return
        self.messages = [m for m in self.messages if m.id != state.temp_message_id]
        self.messages.append(ChatMessage.from_dict(user_message))

        new_id = data.get("conversationId")
        state.final_conversation_id = new_id
        if not state.known_conversation_id and new_id:
            now = _now_iso()
            placeholder = {
                "id": new_id,
                "user_id": "",
                "title": NEW_CHAT_TITLE,
                "created_at": now,
                "updated_at": now,
                "isTitleGenerating": True,
            }
            self.cache.update(
                CONVERSATIONS_KEY,
                lambda old: [placeholder] + [c for c in (old or []) if c["id"] != new_id],
            )
        self.cache.invalidate(CONVERSATIONS_KEY)

        if new_id and self.conversation_id != new_id:
            self.conversation_id = new_id
            if self.navigate is not None:
                self.navigate(f"/chat/{new_id}")

    def _on_message(self, data: Dict[str, Any], state: _TurnState) -> None:
        chunk = data.get("chunk")
        if not chunk:
            return
        self.is_ai_typing = False

        message_id = data.get("id")
        if not message_id:
            logger.warning("Received message chunk without an id, skipping")
            return

        for message in self.messages:
            if message.id == message_id and message.role == "assistant":
                message.content += chunk
                return

        self.messages.append(
            ChatMessage(
                id=message_id,
                conversation_id=(
                    data.get("conversationId")
                    or state.final_conversation_id
                    or self.conversation_id
                    or "unknown"
                ),
                content=chunk,
                role="assistant",
                created_at=_now_iso(),
            )
        )

    def _on_title_update(self, data: Dict[str, Any]) -> None:
        conversation_id = data.get("conversationId")
        new_title = data.get("newTitle")
        if not conversation_id or not new_title:
            return
        self.cache.update(
            CONVERSATIONS_KEY,
            lambda old: [
                {**conv, "title": new_title, "isTitleGenerating": False}
                if conv["id"] == conversation_id else conv
                for conv in (old or [])
            ],
        )

    def _show_error(
        self, state: _TurnState, content: str, conversation_id: Optional[str] = None
    ) -> None:
        """Replace the provisional user message with an inline assistant error."""
        self.is_ai_typing = False
        self.messages = [m for m in self.messages if m.id != state.temp_message_id]
        self.messages.append(
            ChatMessage(
                id=str(uuid4()),
                conversation_id=(
                    conversation_id
                    or state.final_conversation_id
                    or state.known_conversation_id
                    or self.conversation_id
                    or "unknown"
                ),
                content=content,
                role="assistant",
                created_at=_now_iso(),
            )
        )
        self.cache.invalidate(CONVERSATIONS_KEY)

    def _mark_stale(self, state: _TurnState) -> None:
        self.cache.invalidate(CONVERSATIONS_KEY)
        for conversation_id in {
            state.final_conversation_id,
            state.known_conversation_id,
            self.conversation_id,
        }:
            if conversation_id:
                self.cache.invalidate(messages_key(conversation_id))
