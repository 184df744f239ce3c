"""Chat endpoint routes.

Provides:
- POST /api/chat/messages - Send message, reply streamed as Server-Sent Events
- GET /api/chat/conversations - List user's conversations
- GET /api/chat/conversations/{id}/messages - Get conversation transcript
- DELETE /api/chat/conversations/{id} - Delete conversation
"""
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from app.core.deps import get_ai_service, get_current_user, get_db, get_session_factory
from app.database import SessionFactory
from app.models.user import User
from app.schemas.chat import (
    ConversationList,
    ConversationResponse,
    MessageList,
    MessageResponse,
)
from app.services import conversation_service, message_service
from app.services.ai_service import AIService
from app.services.chat_service import ChatService
from app.services.errors import StoreError
from app.streaming.sse import SSE_HEADERS, SSE_MEDIA_TYPE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


def _require_conversation(session: Session, conversation_id: str, user_id: str):
    try:
        conversation = conversation_service.get_conversation(session, conversation_id, user_id)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch conversation",
        )
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return conversation


@router.post("/messages")
async def send_message(
    request: Request,
    current_user: User = Depends(get_current_user),
    ai_service: AIService = Depends(get_ai_service),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> StreamingResponse:
    """
    Send a message and stream the assistant reply.

    Flow:
    1. Authenticate (401 before any stream is opened)
    2. Read the raw JSON body; validation happens inside the stream so
       malformed input is reported as an `error` event
    3. Stream events produced by ChatService.stream_turn

    Returns:
        text/event-stream response, closed once the turn is over
    """
    try:
        payload: Any = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None

    chat_service = ChatService(ai_service, session_factory)
    return StreamingResponse(
        chat_service.stream_turn(current_user.id, payload),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )


@router.get("/conversations", response_model=ConversationList)
def list_conversations(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> ConversationList:
    """List the caller's conversations, most recently updated first."""
    try:
        conversations = conversation_service.list_user_conversations(session, current_user.id)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch conversations",
        )

    return ConversationList(
        conversations=[ConversationResponse.model_validate(conv) for conv in conversations]
    )


@router.get("/conversations/{conversation_id}/messages", response_model=MessageList)
def get_conversation_messages(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> MessageList:
    """
    Get the full transcript of a conversation in creation order.

    Raises:
        HTTPException: 404 if conversation not found or not owned
    """
    _require_conversation(session, conversation_id, current_user.id)

    try:
        messages = message_service.list_conversation_messages(session, conversation_id)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch messages",
        )

    return MessageList(messages=[MessageResponse.model_validate(msg) for msg in messages])


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_conversation(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> Response:
    """
    Delete conversation and all messages.

    Raises:
        HTTPException: 404 if conversation not found or not owned
    """
    _require_conversation(session, conversation_id, current_user.id)

    try:
        conversation_service.delete_conversation(session, conversation_id)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete conversation",
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)
