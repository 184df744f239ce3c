"""Request and response schemas for auth endpoints."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserPublic(BaseModel):
    """User fields safe to return to clients."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    created_at: datetime


class AuthResponse(BaseModel):
    user: UserPublic
    token: str


class MeResponse(BaseModel):
    user: UserPublic
