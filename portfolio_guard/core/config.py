"""
Application configuration settings.

Central configuration module using Pydantic BaseSettings with environment variable support.
Loads from .env file and environment variables.
"""
import json
import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if it exists (python-dotenv)
env_path = Path(".env")
if env_path.exists():
    load_dotenv(dotenv_path=env_path)

# Development-only key, rejected when APP_ENV=production
DEV_ENCRYPTION_KEY = "dev-only-encryption-key-32-bytes"

# Cloudflare's documented "always passes" test keys
TURNSTILE_TEST_SITE_KEY = "1x00000000000000000000AA"
TURNSTILE_TEST_SECRET_KEY = "1x0000000000000000000000000000000AA"


def decode_encryption_key(value: str) -> bytes:
    """
    Turn the configured ENCRYPTION_KEY into raw AES-256 key bytes.

    Accepts either exactly 32 bytes of UTF-8 text or 64 hex characters.
    Anything else is rejected rather than stretched or truncated.
    """
    if len(value) == 64:
        try:
            return bytes.fromhex(value)
        except ValueError:
            pass
    raw = value.encode("utf-8")
    if len(raw) != 32:
        raise ValueError(
            f"ENCRYPTION_KEY must be exactly 32 bytes (or 64 hex chars), got {len(raw)} bytes"
        )
    return raw


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App settings
    APP_NAME: str = "Portfolio Guard"
    APP_ENV: str = Field(default="local", description="local, development, staging or production")
    DEBUG: bool = Field(default=False)

    # Database settings - generic connection string (highest priority)
    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="Database connection URL",
    )

    # Managed Postgres raw vars (PG*)
    PGUSER: Optional[str] = Field(default=None)
    PGPASSWORD: Optional[str] = Field(default=None)
    PGHOST: Optional[str] = Field(default=None)
    PGPORT: Optional[str] = Field(default=None)
    PGDATABASE: Optional[str] = Field(default=None)

    # Local docker-compose Postgres settings (fallback for local dev)
    POSTGRES_USER: Optional[str] = Field(default=None)
    POSTGRES_PASSWORD: Optional[str] = Field(default=None)
    POSTGRES_HOST: Optional[str] = Field(default=None)
    POSTGRES_PORT: str = Field(default="5432")
    POSTGRES_DB: str = Field(default="portfolio_guard")

    @property
    def sqlalchemy_database_uri(self) -> str:
        """
        Build SQLAlchemy database URI with priority:
        1. DATABASE_URL (full URL)
        2. PG* vars (managed Postgres plugin)
        3. Local docker-compose Postgres (POSTGRES_*)
        4. SQLite (local development without Docker)
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.PGUSER and self.PGHOST and self.PGDATABASE:
            password = quote_plus(self.PGPASSWORD or "")
            port = self.PGPORT or "5432"
            return f"postgresql+psycopg2://{self.PGUSER}:{password}@{self.PGHOST}:{port}/{self.PGDATABASE}"

        if os.getenv("POSTGRES_HOST") and self.POSTGRES_USER and self.POSTGRES_PASSWORD:
            password = quote_plus(self.POSTGRES_PASSWORD)
            return (
                f"postgresql+psycopg2://"
                f"{self.POSTGRES_USER}:{password}@"
                f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )

        return "sqlite:///./portfolio_guard.db"

    # CORS settings
    CORS_ORIGINS: Union[str, List[str]] = Field(
        default='["http://localhost:3000", "http://localhost:8000"]',
    )

    @field_validator("CORS_ORIGINS")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from string or list."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    LOG_DIR: str = Field(default="logs")

    # Payload encryption (sessions, download tokens, stored secrets)
    ENCRYPTION_KEY: str = Field(
        default=DEV_ENCRYPTION_KEY,
        description="AES-256-GCM key: exactly 32 bytes or 64 hex characters",
    )

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        """Fail fast on a key of the wrong length."""
        decode_encryption_key(v)
        return v

    # Session cookie
    SESSION_COOKIE_NAME: str = Field(default="session")
    SESSION_TTL_SECONDS: int = Field(default=24 * 60 * 60, gt=0)

    # Turnstile configuration cookie
    CONFIG_COOKIE_NAME: str = Field(default="turnstile_config")
    CONFIG_COOKIE_MAX_AGE: int = Field(default=365 * 24 * 60 * 60, gt=0)

    # Credentials
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=31)
    ADMIN_USERNAME: Optional[str] = Field(default=None, description="Bootstrap admin username")
    ADMIN_PASSWORD: Optional[str] = Field(default=None, description="Bootstrap admin password (hashed at startup)")
    ADMIN_PASSWORD_HASH: Optional[str] = Field(default=None, description="Bootstrap admin bcrypt hash")

    # Turnstile bot verification
    TURNSTILE_SITE_KEY: str = Field(default=TURNSTILE_TEST_SITE_KEY)
    TURNSTILE_SECRET_KEY: str = Field(default=TURNSTILE_TEST_SECRET_KEY)
    TURNSTILE_VERIFY_URL: str = Field(
        default="https://challenges.cloudflare.com/turnstile/v0/siteverify",
    )
    TURNSTILE_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    TURNSTILE_MAX_TOKEN_LENGTH: int = Field(default=2048, gt=0)
    TURNSTILE_MODE: Optional[str] = Field(
        default=None,
        description="'real' or 'simulated'; defaults to real in production, simulated elsewhere",
    )
    TURNSTILE_DOMAIN: str = Field(default="localhost")

    # Resume download
    RESUME_FILE_URL: str = Field(
        default="https://drive.google.com/file/d/1M05jV9pIqmFjEnTgmdqh-ZxyeoHE4nSN/view?usp=sharing",
    )
    RESUME_FILENAME: str = Field(default="resume.pdf")
    DOWNLOAD_TOKEN_TTL_SECONDS: int = Field(default=60, gt=0)

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_REQUESTS: int = Field(default=20, gt=0)
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0, gt=0)
    RATE_LIMIT_MAX_CLIENTS: int = Field(default=500, gt=0)
    CONTACT_RATE_LIMIT_REQUESTS: int = Field(default=5, gt=0)
    CONTACT_RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0 * 60, gt=0)
    SENSITIVE_READ_LIMIT: int = Field(default=5, gt=0)
    SENSITIVE_READ_WINDOW_SECONDS: float = Field(default=300.0, gt=0)

    @field_validator("TURNSTILE_MODE")
    @classmethod
    def validate_turnstile_mode(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        mode = v.lower().strip()
        if mode not in ("real", "simulated"):
            raise ValueError("TURNSTILE_MODE must be 'real' or 'simulated'")
        return mode

    @model_validator(mode="after")
    def apply_environment_policy(self) -> "Settings":
        """Resolve environment-dependent defaults and refuse unsafe production setups."""
        if self.TURNSTILE_MODE is None:
            self.TURNSTILE_MODE = "real" if self.is_production else "simulated"

        if self.is_production:
            if self.TURNSTILE_MODE == "simulated":
                raise ValueError("Simulated Turnstile verification cannot be enabled in production")
            if self.ENCRYPTION_KEY == DEV_ENCRYPTION_KEY:
                raise ValueError("ENCRYPTION_KEY must be set explicitly in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"

    def has_turnstile_site_key(self) -> bool:
        """Check if a site key was supplied explicitly rather than defaulted."""
        return "TURNSTILE_SITE_KEY" in self.model_fields_set

    def has_turnstile_secret_key(self) -> bool:
        """Check if a secret key was supplied explicitly rather than defaulted."""
        return "TURNSTILE_SECRET_KEY" in self.model_fields_set

    @property
    def encryption_key_bytes(self) -> bytes:
        return decode_encryption_key(self.ENCRYPTION_KEY)

    @property
    def turnstile_environment(self) -> str:
        """Map APP_ENV onto the site-key environments (development, staging, production)."""
        env = self.APP_ENV.lower()
        if env in ("production", "staging"):
            return env
        return "development"


# Create global settings instance
@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
