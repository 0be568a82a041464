"""Schemas for back-office login."""
from datetime import datetime
from typing import Optional

from portfolio_guard.schemas.common import CamelModel


class UserResponse(CamelModel):
    """Public user fields (never the password hash)."""
    id: str
    username: str
    role: str
    last_login: Optional[datetime] = None


class LoginResponse(CamelModel):
    success: bool = True
    user: UserResponse


class SessionUserResponse(CamelModel):
    """Response schema for the current session."""
    success: bool = True
    user: UserResponse
    expires_at: datetime
