"""Chat service layer: one streamed chat turn.

Handles:
- Input validation and conversation resolution (owner-scoped)
- User message storage
- Relaying provider fragments as SSE events
- Final assistant message storage, or fallback reply on provider failure
- Title derivation for conversations still titled "New Chat"

Event order for a turn is initial, message*, done, titleUpdate? or
initial, message*, error or a lone error. Nothing follows an error.
"""
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional
import logging

from pydantic import ValidationError
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.database import SessionFactory
from app.models.conversation import NEW_CHAT_TITLE, Conversation, Message, MessageRole, new_id
from app.schemas.chat import ChatRequest, MessageResponse
from app.services import conversation_service, message_service
from app.services.ai_service import AIService
from app.streaming.sse import StreamEventType, encode_event

logger = logging.getLogger(__name__)

INVALID_INPUT_MESSAGE = "Invalid input data"
NOT_FOUND_MESSAGE = "Conversation not found"
INTERNAL_ERROR_MESSAGE = "Internal server error"
FALLBACK_REPLY = "I'm sorry, I couldn't generate a response at this time. Please try again."


def fallback_title(content: str, limit: Optional[int] = None) -> str:
    """First `limit` characters of the message, with "..." when cut."""
    if limit is None:
        limit = settings.TITLE_FALLBACK_CHARS
    return content[:limit] + ("..." if len(content) > limit else "")


def serialize_message(message: Message) -> Dict[str, Any]:
    return MessageResponse.model_validate(message).model_dump(mode="json")


@dataclass
class StreamTurn:
    """Working state of one request. Never persisted."""
    conversation: Optional[Conversation] = None
    accumulated: str = ""
    assistant_message_id: str = field(default_factory=new_id)
    is_new_conversation: bool = False
    conversation_created: bool = False
    error_emitted: bool = False
    chunk_count: int = 0


class ChatService:
    """Service layer for streamed chat turns."""

    def __init__(self, ai_service: AIService, session_factory: SessionFactory):
        """Initialize chat service."""
        self.ai_service = ai_service
        self.session_factory = session_factory

    def _error(self, turn: StreamTurn, content: str) -> str:
        turn.error_emitted = True
        return encode_event(StreamEventType.ERROR, {"content": content})

    def _resolve_conversation(
        self, session: Session, user_id: str, request: ChatRequest, turn: StreamTurn
    ) -> tuple[Optional[Conversation], list[Dict[str, str]]]:
        """
        Load the requested conversation with its history, or create a new one.

        Returns:
            (conversation, history). Conversation is None when the id is
            unknown or owned by another user; nothing is written in that case.
        """
        if request.conversation_id:
            conversation = conversation_service.get_conversation(
                session, request.conversation_id, user_id
            )
            if conversation is None:
                return None, []
            history = [
                {"role": msg.role, "content": msg.content}
                for msg in message_service.list_conversation_messages(session, conversation.id)
            ]
            return conversation, history

        turn.is_new_conversation = True
        conversation = conversation_service.create_conversation(session, user_id, NEW_CHAT_TITLE)
        turn.conversation_created = True
        return conversation, []

    async def _derive_title(self, session: Session, conversation_id: str, content: str) -> str:
        """Generate and store a title. Falls back to truncated content on provider failure."""
        try:
            title = await self.ai_service.generate_chat_title(content)
        except Exception as e:
            logger.warning(
                "Title generation failed for conversation %s, using fallback: %s",
                conversation_id, e,
            )
            title = fallback_title(content)

        await run_in_threadpool(
            conversation_service.update_conversation_title, session, conversation_id, title
        )
        logger.info("Conversation %s title updated to %r", conversation_id, title)
        return title

    async def stream_turn(self, user_id: str, payload: Any) -> AsyncIterator[str]:
        """
        Run one chat turn and yield encoded SSE blocks.

        Args:
            user_id: Authenticated user
            payload: Decoded JSON body, validated here so that invalid input
                is reported as an event on the stream

        Yields:
            Framed events. The generator returns when the turn is over; the
            caller closes the channel.
        """
        turn = StreamTurn()
        with self.session_factory() as session:
            try:
                try:
                    request = ChatRequest.model_validate(payload)
                except ValidationError:
                    yield self._error(turn, INVALID_INPUT_MESSAGE)
                    return

                conversation, history = await run_in_threadpool(
                    self._resolve_conversation, session, user_id, request, turn
                )
                if conversation is None:
                    logger.info(
                        "Conversation %s not found for user %s", request.conversation_id, user_id
                    )
                    yield self._error(turn, NOT_FOUND_MESSAGE)
                    return

                turn.conversation = conversation
                conversation_id = conversation.id
                needs_title = conversation.title == NEW_CHAT_TITLE
                content = request.content

                user_message = await run_in_threadpool(
                    message_service.create_message, session, conversation_id, content, MessageRole.USER
                )
                yield encode_event(
                    StreamEventType.INITIAL,
                    {"conversationId": conversation_id, "userMessage": serialize_message(user_message)},
                )

                try:
                    async for chunk in self.ai_service.generate_response(content, history):
                        if not chunk:
                            continue
                        turn.accumulated += chunk
                        turn.chunk_count += 1
                        yield encode_event(
                            StreamEventType.MESSAGE,
                            {
                                "id": turn.assistant_message_id,
                                "chunk": chunk,
                                "conversationId": conversation_id,
                            },
                        )
                except Exception as e:
                    logger.error(
                        "AI stream failed for conversation %s after %d chunks: %s",
                        conversation_id, turn.chunk_count, e,
                    )
                    # Store what the user is shown, not the partial fragments
                    await run_in_threadpool(
                        message_service.create_message,
                        session,
                        conversation_id,
                        FALLBACK_REPLY,
                        MessageRole.ASSISTANT,
                        message_id=turn.assistant_message_id,
                    )
                    yield self._error(turn, FALLBACK_REPLY)
                    return

                assistant_message = await run_in_threadpool(
                    message_service.create_message,
                    session,
                    conversation_id,
                    turn.accumulated,
                    MessageRole.ASSISTANT,
                    message_id=turn.assistant_message_id,
                )
                yield encode_event(
                    StreamEventType.DONE,
                    {
                        "conversationId": conversation_id,
                        "assistantMessage": serialize_message(assistant_message),
                    },
                )

                if needs_title:
                    new_title = await self._derive_title(session, conversation_id, content)
                    yield encode_event(
                        StreamEventType.TITLE_UPDATE,
                        {"conversationId": conversation_id, "newTitle": new_title},
                    )

                logger.info(
                    "Chat turn completed: user=%s, conversation=%s, new=%s, chunks=%d, chars=%d",
                    user_id, conversation_id, turn.is_new_conversation,
                    turn.chunk_count, len(turn.accumulated),
                )

            except Exception as e:
                logger.exception("Send message error for user %s: %s", user_id, e)
                if not turn.error_emitted:
                    yield self._error(turn, INTERNAL_ERROR_MESSAGE)
