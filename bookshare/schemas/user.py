"""
User and Token Pydantic Schemas

Schemas:
- UserCreate: Registration data (email, password, username)
- LoginRequest: Email/password credentials
- UserResponse: Sanitized user view (never exposes the password hash
  or the refresh-token fingerprint)
- TokenResponse: Access/refresh token pair
- AuthResponse: User + token pair (register, login, OAuth callbacks)
- RefreshTokenRequest: Body for /auth/refresh and /auth/logout
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class UserBase(BaseModel):
    """Fields shared by user schemas."""

    email: EmailStr = Field(
        ...,
        description="User's email address",
        examples=["reader@example.com"],
    )

    username: str = Field(
        ...,
        min_length=3,
        max_length=30,
        description="Unique handle (3-30 characters, letters, numbers, underscores)",
        examples=["bookworm", "jane_reads"],
    )

    @field_validator("username")
    @classmethod
    def username_must_be_valid(cls, v: str) -> str:
        """
        Validate username format.

        Rules:
        - Only letters, numbers and underscores
        - Must start with a letter
        """
        if not re.match(r"^[a-zA-Z][a-zA-Z0-9_]*$", v):
            raise ValueError(
                "Username must start with a letter and contain only "
                "letters, numbers, and underscores"
            )
        return v.lower()


class UserCreate(UserBase):
    """Schema for user registration."""

    password: str = Field(
        ...,
        min_length=8,
        max_length=72,
        description="Password (min 8 chars, must include uppercase and number)",
        examples=["SecurePass123"],
    )

    full_name: str | None = Field(
        default=None,
        max_length=255,
        examples=["Jane Doe"],
    )

    @field_validator("password")
    @classmethod
    def password_must_be_strong(cls, v: str) -> str:
        """
        Validate password strength.

        Requirements:
        - At least 1 uppercase letter
        - At least 1 lowercase letter
        - At least 1 number
        """
        if not re.search(r"[A-Z]", v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[a-z]", v):
            raise ValueError("Password must contain at least one lowercase letter")
        if not re.search(r"\d", v):
            raise ValueError("Password must contain at least one number")
        return v


class LoginRequest(BaseModel):
    """Email/password credentials for /auth/login."""

    email: EmailStr = Field(..., examples=["reader@example.com"])
    password: str = Field(..., min_length=1, max_length=72)


class UserResponse(BaseModel):
    """
    Sanitized user view returned by the API.

    SECURITY: Never includes hashed_password or refresh_token_fingerprint.
    """

    id: int
    email: EmailStr
    username: str
    full_name: str | None = None
    avatar_url: str | None = None
    is_active: bool
    auth_provider: str = Field(
        ...,
        description="Provider of the linked identity (local, google, github)",
    )
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    """
    Token pair response.

    Send the access token as "Authorization: Bearer <access_token>".
    Exchange the refresh token at /auth/refresh; each refresh token works
    exactly once.
    """

    access_token: str = Field(..., description="Short-lived JWT access token")
    refresh_token: str = Field(..., description="Single-use JWT refresh token")
    token_type: str = Field(default="bearer")
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class AuthResponse(BaseModel):
    """User plus a freshly issued token pair."""

    user: UserResponse
    tokens: TokenResponse


class RefreshTokenRequest(BaseModel):
    """Body carrying a refresh token (falls back to the cookie if omitted)."""

    refresh_token: str | None = Field(
        default=None,
        description="Refresh token from login or the last refresh",
    )
