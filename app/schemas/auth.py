"""Authentication schemas for the calendar API."""
from pydantic import BaseModel, EmailStr, Field


class TokenResponse(BaseModel):
    """Response containing JWT token after sign in."""
    token: str
    user_id: str
    email: str


class SignUpRequest(BaseModel):
    """Sign up request body."""
    email: EmailStr
    password: str
    name: str | None = None
    phone_number: str | None = Field(default=None, pattern=r"^[0-9+\-]{8,20}$")


class SignInRequest(BaseModel):
    """Sign in request body."""
    email: EmailStr
    password: str
