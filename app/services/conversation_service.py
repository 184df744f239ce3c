"""Conversation store.

All lookups are scoped by owning user. Database failures are rolled back
and surfaced as StoreError.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.conversation import NEW_CHAT_TITLE, Conversation, Message, utcnow
from app.services.errors import StoreError

logger = logging.getLogger(__name__)


def create_conversation(
    session: Session, user_id: str, title: str = NEW_CHAT_TITLE
) -> Conversation:
    """Create a conversation owned by user_id."""
    conversation = Conversation(user_id=user_id, title=title or NEW_CHAT_TITLE)
    try:
        session.add(conversation)
        session.commit()
        session.refresh(conversation)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to create conversation for user %s: %s", user_id, e)
        raise StoreError("Failed to create conversation") from e
    return conversation


def get_conversation(
    session: Session, conversation_id: str, user_id: str
) -> Optional[Conversation]:
    """
    Get a conversation by id if it belongs to user_id.

    Returns:
        Conversation, or None when missing or owned by someone else
    """
    statement = select(Conversation).where(
        Conversation.id == conversation_id,
        Conversation.user_id == user_id,
    )
    try:
        return session.exec(statement).first()
    except SQLAlchemyError as e:
        logger.error("Failed to fetch conversation %s: %s", conversation_id, e)
        raise StoreError("Failed to fetch conversation") from e


def list_user_conversations(session: Session, user_id: str) -> list[Conversation]:
    """All conversations of user_id, most recently updated first."""
    statement = (
        select(Conversation)
        .where(Conversation.user_id == user_id)
        .order_by(Conversation.updated_at.desc())
    )
    try:
        return list(session.exec(statement).all())
    except SQLAlchemyError as e:
        logger.error("Failed to list conversations for user %s: %s", user_id, e)
        raise StoreError("Failed to fetch conversations") from e


def update_conversation_title(
    session: Session, conversation_id: str, title: str
) -> Optional[Conversation]:
    """Set the title and refresh updated_at, which moves it to the top of the list."""
    try:
        conversation = session.get(Conversation, conversation_id)
        if conversation is None:
            return None
        conversation.title = title
        conversation.updated_at = utcnow()
        session.add(conversation)
        session.commit()
        session.refresh(conversation)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to update title of conversation %s: %s", conversation_id, e)
        raise StoreError("Failed to update conversation title") from e
    return conversation


def delete_conversation(session: Session, conversation_id: str) -> None:
    """Delete a conversation and its messages."""
    try:
        messages = session.exec(
            select(Message).where(Message.conversation_id == conversation_id)
        ).all()
        for message in messages:
            session.delete(message)
        conversation = session.get(Conversation, conversation_id)
        if conversation is not None:
            session.delete(conversation)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to delete conversation %s: %s", conversation_id, e)
        raise StoreError(f"Failed to delete conversation {conversation_id}") from e
