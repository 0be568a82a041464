"""
Turnstile configuration stored in an encrypted cookie, and key resolution.

The cookie carries {"siteKey", "secretKey", "updatedAt"} sealed with the payload
codec, so an administrator can override the deployed keys from the browser.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
from starlette.responses import Response

from portfolio_guard.core.config import settings
from portfolio_guard.core.crypto import PayloadCodec, get_codec
from portfolio_guard.core.errors import DecryptionError, ValidationError
from portfolio_guard.services.turnstile_service import TurnstileService
from portfolio_guard.utils.datetime import utcnow

logger = logging.getLogger(__name__)

# Placeholder the admin form shows instead of the stored secret
MASKED_SECRET = "•" * 32


@dataclass(frozen=True)
class TurnstileKeys:
    site_key: str
    secret_key: str
    source: str  # cookie, site_key, settings


class TurnstileConfigStore:
    """Reads and writes the encrypted Turnstile configuration cookie value."""

    def __init__(self, codec: Optional[PayloadCodec] = None):
        self.codec = codec or get_codec()

    def load(self, cookie_value: Optional[str]) -> Optional[Dict[str, Any]]:
        """Decrypt a cookie value. Undecryptable or malformed values read as no configuration."""
        if not cookie_value:
            return None
        try:
            config = self.codec.decrypt_json(cookie_value)
        except DecryptionError as e:
            logger.warning(f"Failed to decrypt Turnstile configuration: {e.message}")
            return None
        if not isinstance(config, dict):
            return None
        return config

    def build(self, site_key: Optional[str], secret_key: Optional[str], current_value: Optional[str] = None) -> str:
        """
        Produce a new encrypted cookie value.

        Submitting the masked placeholder keeps the currently stored secret.

        Raises:
            ValidationError: If the site key is missing, or the secret is missing
                and cannot be taken from the current configuration
        """
        site_key = (site_key or "").strip()
        if not site_key:
            raise ValidationError("Site key is required", errors={"siteKey": "Site key is required"})

        if secret_key == MASKED_SECRET:
            existing = self.load(current_value) or {}
            secret_key = existing.get("secretKey")
        secret_key = (secret_key or "").strip()
        if not secret_key:
            raise ValidationError("Secret key is required", errors={"secretKey": "Secret key is required"})

        return self.codec.encrypt_json(
            {
                "siteKey": site_key,
                "secretKey": secret_key,
                "updatedAt": utcnow().isoformat() + "Z",
            }
        )

    def public_view(self, cookie_value: Optional[str]) -> Dict[str, Any]:
        """Configuration as shown to the admin: the secret is reduced to whether it exists."""
        config = self.load(cookie_value)
        if not config:
            return {"siteKey": "", "secretKey": False, "updatedAt": None}
        return {
            "siteKey": config.get("siteKey") or "",
            "secretKey": bool(config.get("secretKey")),
            "updatedAt": config.get("updatedAt"),
        }


def set_config_cookie(response: Response, value: str) -> None:
    response.set_cookie(
        key=settings.CONFIG_COOKIE_NAME,
        value=value,
        max_age=settings.CONFIG_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def env_status() -> Dict[str, bool]:
    """Whether Turnstile keys were configured through the environment (values are never exposed)."""
    return {
        "hasSiteKey": settings.has_turnstile_site_key(),
        "hasSecretKey": settings.has_turnstile_secret_key(),
    }


def resolve_turnstile_keys(
    db: Session,
    cookie_value: Optional[str] = None,
    codec: Optional[PayloadCodec] = None,
) -> TurnstileKeys:
    """
    Work out which Turnstile key pair to use.

    Order: configuration cookie, then the active site key record for the
    current environment and domain, then settings.
    """
    config = TurnstileConfigStore(codec).load(cookie_value)
    if config and config.get("siteKey") and config.get("secretKey"):
        return TurnstileKeys(config["siteKey"], config["secretKey"], "cookie")

    active = TurnstileService(db, codec=codec).get_active_site_key(
        environment=settings.turnstile_environment,
        domain=settings.TURNSTILE_DOMAIN,
    )
    if active is not None:
        return TurnstileKeys(active[0], active[1], "site_key")

    return TurnstileKeys(settings.TURNSTILE_SITE_KEY, settings.TURNSTILE_SECRET_KEY, "settings")
