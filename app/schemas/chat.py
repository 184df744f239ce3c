"""Request and response schemas for chat endpoints."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings


class ChatRequest(BaseModel):
    """Body of POST /api/chat/messages."""
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(min_length=1, max_length=settings.MESSAGE_MAX_CHARS)
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


class MessageResponse(BaseModel):
    """A stored message as sent to clients."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    content: str
    role: str
    created_at: datetime


class ConversationResponse(BaseModel):
    """A stored conversation as sent to clients."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime


class ConversationList(BaseModel):
    conversations: list[ConversationResponse]


class MessageList(BaseModel):
    messages: list[MessageResponse]
