from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field

from app.models.user import Role
from app.schemas.base import BaseSchema


class UserLogin(BaseSchema):
    """Schema for user login. Students may sign in with their username."""

    login: str = Field(..., min_length=1, description="Email address or username")
    password: str


class UserResponse(BaseSchema):
    """Schema for user response."""

    id: str
    email: str
    username: Optional[str] = None
    first_name: str
    last_name: str
    phone: Optional[str]
    role: Role
    location_id: Optional[str] = None
    parent_id: Optional[str] = None
    is_active: bool
    created_at: datetime


class UserCreate(BaseSchema):
    """Staff or parent account created by an owner/admin."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    role: Role
    location_id: Optional[str] = None
    parent_id: Optional[str] = None


class TokenResponse(BaseSchema):
    """Schema for authentication token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class RefreshTokenRequest(BaseSchema):
    """Schema for token refresh request."""

    refresh_token: str


class StudentCreate(BaseSchema):
    """
    Student account added by a parent, or by an admin for a parent.

    Without an email the student gets one on the student domain, built from the
    generated username.
    """

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=8, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)
    parent_id: Optional[str] = None


class ForgotPasswordRequest(BaseSchema):
    email: EmailStr


class VerifyResetCodeRequest(BaseSchema):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class VerifyResetCodeResponse(BaseSchema):
    message: str
    reset_token: str


class ResetPasswordRequest(BaseSchema):
    """Schema for reset password request."""

    reset_token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=100)
