"""Message store. Messages are inserted once and never updated."""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.conversation import Message, MessageRole
from app.services.errors import StoreError

logger = logging.getLogger(__name__)


def create_message(
    session: Session,
    conversation_id: str,
    content: str,
    role: MessageRole,
    message_id: Optional[str] = None,
) -> Message:
    """
    Store a message in a conversation.

    Args:
        session: Database session
        conversation_id: Owning conversation
        content: Full message text
        role: MessageRole.USER or MessageRole.ASSISTANT
        message_id: Use this id instead of generating one

    Returns:
        Stored Message instance
    """
    message = Message(
        conversation_id=conversation_id,
        content=content,
        role=MessageRole(role).value,
    )
    if message_id is not None:
        message.id = message_id
    try:
        session.add(message)
        session.commit()
        session.refresh(message)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to create message in %s: %s", conversation_id, e)
        raise StoreError("Failed to create message") from e
    return message


def list_conversation_messages(session: Session, conversation_id: str) -> list[Message]:
    """All messages of a conversation in creation order. Not paginated."""
    statement = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at)
    )
    try:
        return list(session.exec(statement).all())
    except SQLAlchemyError as e:
        logger.error("Failed to fetch messages of %s: %s", conversation_id, e)
        raise StoreError("Failed to fetch messages") from e
