"""Schemas for the public contact form."""
import re
from typing import Dict, Optional

from pydantic import Field, field_validator

from portfolio_guard.schemas.common import CamelModel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ContactFormRequest(CamelModel):
    """Request schema for a contact form submission."""
    name: str = Field(..., min_length=2, max_length=100)
    email: str = Field(..., max_length=254)
    message: str = Field(..., min_length=10, max_length=1000)
    turnstile_token: str = Field(..., min_length=1)

    @field_validator("name", "message")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address")
        return v


class ContactFormResponse(CamelModel):
    success: bool
    message: Optional[str] = None
    errors: Optional[Dict[str, str]] = None
    turnstile_failed: Optional[bool] = None
