"""
Credential store and authenticator for back-office users.
"""
import logging
from functools import lru_cache
from typing import Optional

import bcrypt
from sqlalchemy.orm import Session

from portfolio_guard.core.config import settings
from portfolio_guard.core.errors import ValidationError
from portfolio_guard.core.roles import Role, normalize_role
from portfolio_guard.models.user import User
from portfolio_guard.utils.datetime import utcnow

logger = logging.getLogger(__name__)

# bcrypt only reads the first 72 bytes of a password; newer releases raise beyond that
BCRYPT_MAX_PASSWORD_BYTES = 72


@lru_cache
def _dummy_password_hash(rounds: int) -> str:
    """Digest compared against when the username is unknown, so both failure paths cost one bcrypt check."""
    return bcrypt.hashpw(b"portfolio-guard-dummy-password", bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Hashed password string

    Raises:
        ValidationError: If the password is longer than bcrypt accepts
    """
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValidationError(
            errors={"password": f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes"}
        )
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(encoded, salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its bcrypt hash in constant time.

    Over-long passwords and malformed stored hashes count as a mismatch.
    """
    encoded = plain_password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        logger.info(f"Rejected password longer than {BCRYPT_MAX_PASSWORD_BYTES} bytes")
        return False
    try:
        return bcrypt.checkpw(encoded, hashed_password.encode("utf-8"))
    except ValueError:
        logger.error("Stored password hash is malformed")
        return False


class AuthService:
    """Service for back-office authentication."""

    def __init__(self, db: Session):
        """
        Initialize auth service.

        Args:
            db: Database session
        """
        self.db = db

    def authenticate(self, username: str, password: str) -> Optional[User]:
        """
        Authenticate a user by username and password.

        Unknown usernames, inactive accounts and wrong passwords all return None
        after the same amount of bcrypt work. On success, last_login is updated.

        Args:
            username: Account username
            password: Plain text password (never logged)

        Returns:
            The User on success, otherwise None
        """
        user = self.db.query(User).filter(User.username == username).first()

        if user is None or not user.is_active:
            verify_password(password, _dummy_password_hash(settings.BCRYPT_ROUNDS))
            logger.info("Failed login attempt")
            return None

        if not verify_password(password, user.password_hash):
            logger.info("Failed login attempt")
            return None

        user.last_login = utcnow()
        self.db.commit()
        logger.info(f"User '{user.username}' logged in (role: {user.role})")
        return user

    def get_user(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def create_user(
        self,
        username: str,
        password: Optional[str] = None,
        role: str = Role.USER.value,
        password_hash: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        """
        Provision a user.

        Args:
            username: Unique username
            password: Plain text password (hashed here), or
            password_hash: An existing bcrypt hash
            role: admin, manager or user

        Raises:
            ValidationError: On missing username/password, unknown role, or duplicate username
        """
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username is required", errors={"username": "Username is required"})
        if not password and not password_hash:
            raise ValidationError("Password is required", errors={"password": "Password is required"})
        normalized = normalize_role(role)
        if not normalized:
            raise ValidationError(f"Unknown role: {role}", errors={"role": "Unknown role"})
        if self.get_user(username) is not None:
            raise ValidationError("Username already exists", errors={"username": "Username already exists"})

        user = User(
            username=username,
            password_hash=password_hash or hash_password(password),
            role=normalized,
            is_active=is_active,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Provisioned user '{username}' with role '{normalized}'")
        return user


def ensure_admin_user(db: Session) -> Optional[User]:
    """
    Provision the bootstrap administrator from settings if it does not exist yet.

    Uses ADMIN_USERNAME plus ADMIN_PASSWORD_HASH (preferred) or ADMIN_PASSWORD.
    """
    if not settings.ADMIN_USERNAME:
        logger.info("ADMIN_USERNAME not set, skipping admin bootstrap")
        return None
    if not settings.ADMIN_PASSWORD_HASH and not settings.ADMIN_PASSWORD:
        logger.warning("ADMIN_USERNAME set without ADMIN_PASSWORD or ADMIN_PASSWORD_HASH, skipping admin bootstrap")
        return None

    service = AuthService(db)
    existing = service.get_user(settings.ADMIN_USERNAME)
    if existing is not None:
        logger.info(f"Admin user '{existing.username}' already exists. Skipping bootstrap.")
        return existing

    return service.create_user(
        username=settings.ADMIN_USERNAME,
        password=settings.ADMIN_PASSWORD,
        password_hash=settings.ADMIN_PASSWORD_HASH,
        role=Role.ADMIN.value,
    )
