"""Authentication router for the calendar API."""
from fastapi import APIRouter, Depends, HTTPException, status
import logging
import uuid

from app.schemas.auth import SignUpRequest, SignInRequest, TokenResponse
from app.db.config import get_session
from app.middleware.auth import create_jwt_token
from app.models.user import User
from sqlmodel import Session, select

router = APIRouter(tags=["Authentication"])  # main.py mounts this under /auth

logger = logging.getLogger(__name__)


@router.post("/sign-up", response_model=TokenResponse)
async def sign_up(request: SignUpRequest, session: Session = Depends(get_session)):
    # Check if user already exists
    existing_statement = select(User).where(User.email == request.email)
    existing = session.exec(existing_statement).first()

    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User with this email already exists"
        )

    user = User(
        id=str(uuid.uuid4()),
        email=request.email,
        name=request.name,
        phone_number=request.phone_number,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info(f"Registered user {user.id}")

    token = create_jwt_token(user.id, user.email)
    return TokenResponse(
        token=token,
        user_id=user.id,
        email=user.email
    )


@router.post("/sign-in", response_model=TokenResponse)
async def sign_in(request: SignInRequest, session: Session = Depends(get_session)):
    statement = select(User).where(User.email == request.email)
    user = session.exec(statement).first()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    token = create_jwt_token(user.id, user.email)
    return TokenResponse(
        token=token,
        user_id=user.id,
        email=user.email
    )
