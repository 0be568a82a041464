"""
Encrypted cookie sessions.

There is no server-side session store: the cookie value is the session. A
session is valid iff it decrypts under the current key and its expiresAt is in
the future.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.responses import Response

from portfolio_guard.core.config import settings
from portfolio_guard.core.crypto import PayloadCodec, get_codec
from portfolio_guard.core.errors import DecryptionError

logger = logging.getLogger(__name__)


class SessionUser(BaseModel):
    """Public user fields carried inside the session."""
    id: str
    username: str
    role: str


class SessionData(BaseModel):
    """Decrypted session payload."""
    model_config = ConfigDict(populate_by_name=True)

    user: SessionUser
    expires_at: datetime = Field(alias="expiresAt")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now


class SessionManager:
    """Mints and reads encrypted session cookie values."""

    def __init__(self, codec: Optional[PayloadCodec] = None, ttl_seconds: Optional[int] = None):
        self.codec = codec or get_codec()
        self.ttl = timedelta(seconds=ttl_seconds or settings.SESSION_TTL_SECONDS)

    def create_session(self, user, now: Optional[datetime] = None) -> str:
        """
        Build and encrypt a session for a user.

        Args:
            user: Object with id, username and role attributes
            now: Override for the current time

        Returns:
            Encrypted cookie value
        """
        now = now or datetime.now(timezone.utc)
        role = getattr(user.role, "value", user.role)
        data = SessionData(
            user=SessionUser(id=str(user.id), username=user.username, role=role),
            expires_at=now + self.ttl,
        )
        return self.codec.encrypt(data.model_dump_json(by_alias=True))

    def read_session(self, value: Optional[str], now: Optional[datetime] = None) -> Optional[SessionData]:
        """
        Decrypt and validate a session cookie value.

        Returns None when the value is missing, cannot be decrypted, does not
        parse, or has expired. Callers must clear the cookie on None.
        """
        if not value:
            return None
        try:
            data = SessionData.model_validate_json(self.codec.decrypt(value))
        except DecryptionError as e:
            logger.warning(f"Rejected session cookie: {e.message}")
            return None
        except PydanticValidationError:
            logger.warning("Rejected session cookie: payload has unexpected shape")
            return None

        if data.is_expired(now):
            logger.info(f"Session for '{data.user.username}' expired at {data.expires_at.isoformat()}")
            return None
        return data


def set_session_cookie(response: Response, value: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=value,
        max_age=settings.SESSION_TTL_SECONDS,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )
