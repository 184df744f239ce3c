"""Database engine and session helpers."""
import logging
from typing import Callable, Iterator

from sqlmodel import Session, SQLModel, create_engine

from app.config import settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _build_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Streaming responses touch the session from the event loop thread
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=False, connect_args=connect_args)


engine = _build_engine(settings.DATABASE_URL)


def init_db() -> None:
    """Create all tables registered on SQLModel metadata."""
    from app.models import conversation, user  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database initialized: %s", settings.DATABASE_URL.split("@")[-1])


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""
    with Session(engine) as session:
        yield session


def get_session_factory() -> SessionFactory:
    """
    FastAPI dependency returning a session factory.

    Streaming handlers open their own session because request-scoped
    dependencies may be closed before the response body is sent.
    """
    return lambda: Session(engine)
