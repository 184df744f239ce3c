"""User SQLModel definition."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.conversation import new_id, utcnow


class User(SQLModel, table=True):
    """Registered account. The password is only stored as a bcrypt hash."""
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(index=True, unique=True, nullable=False, max_length=320)
    password_hash: str = Field(nullable=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
