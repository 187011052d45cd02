"""Authentication schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Login request."""

    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=200)
    remember: bool = False


class RegisterRequest(BaseModel):
    """User registration request."""

    username: str = Field(min_length=3, max_length=32, pattern=r"^[A-Za-z0-9_\-]+$")
    password: str = Field(min_length=8, max_length=72)


class PasswordChangeRequest(BaseModel):
    """Password change request for the signed-in user."""

    current_password: str = Field(min_length=1, max_length=200)
    new_password: str = Field(min_length=8, max_length=72)


class UserResponse(BaseModel):
    """User info response.

    ``uid`` is serialized as a string; snowflakes exceed JavaScript's safe
    integer range.
    """

    uid: str
    username: str
    display_name: str
    created_at: str
    last_login: str
