"""
Pydantic schemas for authentication requests and responses.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    """Authenticated user profile as returned by the backend."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., description="User ID")
    username: str = Field(..., description="Login name")
    email: str = Field(default="", description="Email address")
    first_name: Optional[str] = Field(None, description="First name")
    last_name: Optional[str] = Field(None, description="Last name")
    is_staff: bool = Field(default=False, description="Whether the user is an admin")


class LoginRequest(BaseModel):
    """Credentials posted to the login endpoint."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    """Login response carrying the token and the user profile."""

    token: str
    user: User
