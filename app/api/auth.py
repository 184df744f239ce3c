"""Authentication routes.

Provides:
- POST /api/auth/register - Create account, returns bearer token
- POST /api/auth/login - Exchange credentials for bearer token
- GET /api/auth/me - Echo the authenticated user
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.deps import get_current_user, get_db
from app.core.security import create_access_token, hash_password, verify_password
from app.models.user import User
from app.schemas.auth import AuthResponse, LoginRequest, MeResponse, RegisterRequest, UserPublic

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, session: Session = Depends(get_db)) -> AuthResponse:
    """
    Register a new user.

    Raises:
        HTTPException: 400 if the email is already registered
    """
    email = request.email.lower()
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists",
        )

    user = User(email=email, password_hash=hash_password(request.password))
    try:
        session.add(user)
        session.commit()
        session.refresh(user)
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists",
        )

    logger.info("User registered: %s", user.id)
    return AuthResponse(
        user=UserPublic.model_validate(user),
        token=create_access_token(user.id),
    )


@router.post("/login", response_model=AuthResponse)
def login(request: LoginRequest, session: Session = Depends(get_db)) -> AuthResponse:
    """
    Log in with email and password.

    Raises:
        HTTPException: 401 on unknown email or wrong password
    """
    user = session.exec(select(User).where(User.email == request.email.lower())).first()
    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    return AuthResponse(
        user=UserPublic.model_validate(user),
        token=create_access_token(user.id),
    )


@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the authenticated user."""
    return MeResponse(user=UserPublic.model_validate(current_user))
