"""Shared FastAPI dependencies."""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.security import decode_access_token
from app.database import get_db, get_session_factory  # noqa: F401
from app.models.user import User
from app.services.ai_service import AIService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """Process-wide generative provider client."""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_db),
) -> User:
    """
    Resolve the authenticated user from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing, invalid, expired, or
            refers to a user that no longer exists
    """
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise unauthorized

    user = session.get(User, user_id)
    if user is None:
        logger.warning("Token for unknown user %s", user_id)
        raise unauthorized
    return user
