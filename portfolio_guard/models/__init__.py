"""Database models."""
from portfolio_guard.models.user import User
from portfolio_guard.models.api_key import ApiKey
from portfolio_guard.models.api_key_log import ApiKeyLog
from portfolio_guard.models.turnstile import TurnstileAnalytics, TurnstileLog, TurnstileSiteKey

__all__ = [
    "User",
    "ApiKey",
    "ApiKeyLog",
    "TurnstileSiteKey",
    "TurnstileLog",
    "TurnstileAnalytics",
]
