"""Conversation and Message SQLModel definitions.

Models:
- Conversation: Chat conversation owned by one user
- Message: Individual immutable message in a conversation
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel

NEW_CHAT_TITLE = "New Chat"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class MessageRole(str, Enum):
    """Message sender role."""
    USER = "user"
    ASSISTANT = "assistant"


class Conversation(SQLModel, table=True):
    """
    Conversation entity.

    Ownership: Each conversation belongs to exactly one user via user_id.
    All reads MUST filter by user_id.

    The title starts as NEW_CHAT_TITLE and is replaced once after the
    first successful assistant reply.
    """
    __tablename__ = "conversations"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, nullable=False)
    title: str = Field(max_length=255, default=NEW_CHAT_TITLE)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, index=True)


class Message(SQLModel, table=True):
    """
    Message entity for conversations.

    Role: "user" or "assistant". Rows are written once and never updated;
    transcript order is created_at ascending.
    """
    __tablename__ = "messages"

    id: str = Field(default_factory=new_id, primary_key=True)
    conversation_id: str = Field(foreign_key="conversations.id", index=True, nullable=False)
    content: str = Field(sa_column=Column(Text, nullable=False))
    role: str = Field(default=MessageRole.USER.value, max_length=20)
    created_at: datetime = Field(default_factory=utcnow, index=True)
