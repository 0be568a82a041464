"""
Application exception taxonomy.

Services raise these; the handlers registered in main.py turn them into the
uniform {"success": false, "message": ...} response shape.
"""
from typing import Dict, Optional


class PortfolioGuardError(Exception):
    """Base class for all application errors."""

    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(PortfolioGuardError):
    """Misconfiguration detected at startup (bad key length, unsafe mode)."""
    default_message = "Server misconfiguration"


class ValidationError(PortfolioGuardError):
    """Bad or missing input fields."""
    status_code = 422
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class AuthenticationError(PortfolioGuardError):
    """No session, expired session, or undecryptable session cookie."""
    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(PortfolioGuardError):
    """Valid session whose role is below the required role."""
    status_code = 403
    default_message = "Access denied"


class NotFoundError(PortfolioGuardError):
    status_code = 404
    default_message = "Not found"


class ConflictError(PortfolioGuardError):
    """A concurrent modification was detected (lost update)."""
    status_code = 409
    default_message = "The record was modified concurrently, please retry"


class DecryptionError(PortfolioGuardError):
    """Ciphertext malformed, tampered with, or encrypted under another key."""
    status_code = 401
    default_message = "Failed to decrypt data"


class VerificationFailed(PortfolioGuardError):
    """The bot-verification service declined the token."""
    status_code = 400
    default_message = "Security verification failed. Please try again."


class ExternalServiceError(PortfolioGuardError):
    """Network failure or non-2xx answer from the verification service."""
    status_code = 400
    default_message = "Security verification failed. Please try again."


class RateLimitExceeded(PortfolioGuardError):
    status_code = 429
    default_message = "Too many requests. Please try again later."


class CsrfError(PortfolioGuardError):
    status_code = 403
    default_message = "CSRF validation failed"
