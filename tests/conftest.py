import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.core.deps import get_ai_service
from app.database import get_db, get_session_factory
from app.main import app
from app.models import conversation as _conversation_models  # noqa: F401
from app.models import user as _user_models  # noqa: F401
from app.services.errors import AIServiceError
from app.streaming.sse import SSEDecoder


class FakeAIService:
    """Scripted provider. fail_after=N raises after yielding N chunks."""

    def __init__(self, chunks=("Hel", "lo"), fail_after=None, title="Sailing Into Greetings",
                 title_error=False):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.title = title
        self.title_error = title_error
        self.calls = []
        self.title_calls = []

    async def generate_response(self, prompt, history=None):
        self.calls.append((prompt, list(history or [])))
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise AIServiceError("Failed to generate AI response")
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise AIServiceError("Failed to generate AI response")

    async def generate_chat_title(self, first_user_message):
        self.title_calls.append(first_user_message)
        if self.title_error:
            raise AIServiceError("Failed to generate AI chat title")
        return self.title


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def ai():
    return FakeAIService()


@pytest.fixture
def client(engine, ai):
    def override_get_db():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: (lambda: Session(engine))
    app.dependency_overrides[get_ai_service] = lambda: ai
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, email="alice@example.com", password="secret123"):
    """Register a user and return (user_id, token)."""
    response = client.post("/api/auth/register", json={"email": email, "password": password})
    assert response.status_code == 201, response.text
    body = response.json()
    return body["user"]["id"], body["token"]


def parse_events(body):
    decoder = SSEDecoder()
    events = decoder.feed(body)
    assert decoder.pending == ""
    return events


def post_chat(client, token, payload):
    """POST a chat turn and return the decoded events."""
    response = client.post("/api/chat/messages", json=payload, headers=auth_headers(token))
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    return parse_events(response.text)
