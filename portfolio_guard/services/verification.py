"""
Bot verification (Cloudflare Turnstile).

One VerificationProvider is chosen at startup from settings: the real provider
posts to the siteverify endpoint, the simulated one answers locally and can only
be selected outside production. TurnstileGateway wraps the provider with the
token shape check and the daily analytics bookkeeping.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_guard.core.config import settings
from portfolio_guard.core.errors import ConfigurationError, ExternalServiceError
from portfolio_guard.services.turnstile_service import TurnstileService
from portfolio_guard.utils.datetime import utcnow

logger = logging.getLogger(__name__)

INVALID_INPUT_RESPONSE = "invalid-input-response"
INTERNAL_ERROR = "internal-error"


class VerificationOutcome(str, Enum):
    """States of a single verification attempt."""
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class VerificationResult:
    outcome: VerificationOutcome
    error_codes: List[str] = field(default_factory=list)
    challenge_ts: Optional[str] = None
    hostname: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome == VerificationOutcome.VERIFIED

    def to_public_dict(self) -> Dict[str, Any]:
        """Caller-facing view. Provider error codes are kept server-side."""
        return {
            "success": self.success,
            "challenge_ts": self.challenge_ts,
            "hostname": self.hostname,
        }


class VerificationProvider(ABC):
    """Strategy for answering a siteverify request."""

    name = "base"

    @abstractmethod
    async def siteverify(
        self,
        secret: str,
        token: str,
        remote_ip: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> VerificationResult:
        """
        Ask the verification service about a token.

        Returns:
            VERIFIED or FAILED result

        Raises:
            ExternalServiceError: Network failure, timeout, non-2xx or unparseable answer
        """


class RealVerificationProvider(VerificationProvider):
    """Posts form-encoded requests to the Turnstile siteverify endpoint."""

    name = "real"

    def __init__(
        self,
        verify_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            verify_url: siteverify URL (defaults to TURNSTILE_VERIFY_URL)
            timeout: Request timeout in seconds (defaults to TURNSTILE_TIMEOUT_SECONDS)
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests
        """
        self.verify_url = verify_url or settings.TURNSTILE_VERIFY_URL
        self.timeout = timeout or settings.TURNSTILE_TIMEOUT_SECONDS
        self.transport = transport

    async def siteverify(
        self,
        secret: str,
        token: str,
        remote_ip: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> VerificationResult:
        form = {"secret": secret, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip
        if idempotency_key:
            form["idempotency_key"] = idempotency_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.verify_url, data=form)
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"Turnstile verification timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"Turnstile verification returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Turnstile verification request failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError("Turnstile verification returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise ExternalServiceError("Turnstile verification returned an unexpected payload")

        error_codes = payload.get("error-codes") or []
        if not isinstance(error_codes, list) or not all(isinstance(code, str) for code in error_codes):
            raise ExternalServiceError("Turnstile verification returned malformed error codes")

        return VerificationResult(
            outcome=VerificationOutcome.VERIFIED if payload.get("success") is True else VerificationOutcome.FAILED,
            error_codes=error_codes,
            challenge_ts=payload.get("challenge_ts"),
            hostname=payload.get("hostname"),
        )


class SimulatedVerificationProvider(VerificationProvider):
    """Accepts every token without a network call. Local development only."""

    name = "simulated"

    def __init__(self, hostname: Optional[str] = None):
        self.hostname = hostname or settings.TURNSTILE_DOMAIN

    async def siteverify(
        self,
        secret: str,
        token: str,
        remote_ip: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> VerificationResult:
        logger.debug("Simulating Turnstile verification")
        return VerificationResult(
            outcome=VerificationOutcome.VERIFIED,
            challenge_ts=utcnow().isoformat() + "Z",
            hostname=self.hostname,
        )


def build_verification_provider(mode: Optional[str] = None) -> VerificationProvider:
    """
    Build the provider for the configured TURNSTILE_MODE.

    Raises:
        ConfigurationError: If simulated verification is requested in production
    """
    mode = (mode or settings.TURNSTILE_MODE or "real").lower()
    if mode == "simulated":
        if settings.is_production:
            raise ConfigurationError("Simulated Turnstile verification cannot be enabled in production")
        logger.warning("Turnstile verification is SIMULATED: every token will be accepted")
        return SimulatedVerificationProvider()
    if mode != "real":
        raise ConfigurationError(f"Unknown TURNSTILE_MODE: {mode}")
    return RealVerificationProvider()


@lru_cache
def get_verification_provider() -> VerificationProvider:
    """Process-wide provider, selected once."""
    provider = build_verification_provider()
    logger.info(f"Turnstile verification provider: {provider.name}")
    return provider


class TurnstileGateway:
    """Verifies tokens through a provider and records daily analytics."""

    def __init__(
        self,
        provider: VerificationProvider,
        db: Session,
        secret_resolver: Optional[Callable[[], str]] = None,
        max_token_length: Optional[int] = None,
    ):
        """
        Args:
            provider: Verification strategy
            db: Database session used for the analytics bucket
            secret_resolver: Called for the secret when verify() is not given one
            max_token_length: Longest token accepted (defaults to TURNSTILE_MAX_TOKEN_LENGTH)
        """
        self.provider = provider
        self.db = db
        self.secret_resolver = secret_resolver or (lambda: settings.TURNSTILE_SECRET_KEY)
        self.max_token_length = max_token_length or settings.TURNSTILE_MAX_TOKEN_LENGTH

    def _record(self, result: VerificationResult) -> None:
        try:
            TurnstileService(self.db).record_verification(result.success)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Failed to record Turnstile analytics", exc_info=True)

    async def verify(
        self,
        token: Optional[str],
        secret_key: Optional[str] = None,
        remote_ip: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> VerificationResult:
        """
        Verify a client token.

        Empty or oversized tokens fail immediately with invalid-input-response
        and no network call. Service errors are logged with detail and come
        back as an ERROR result, which callers treat like FAILED.

        Args:
            token: Token from the Turnstile widget
            secret_key: Secret to verify with (resolved if omitted)
            remote_ip: Client IP forwarded to the service
            idempotency_key: Optional key allowing safe retries

        Returns:
            VerificationResult with outcome VERIFIED, FAILED or ERROR
        """
        if not token or not isinstance(token, str) or len(token) > self.max_token_length:
            logger.info("Rejected Turnstile token: empty or oversized")
            result = VerificationResult(VerificationOutcome.FAILED, error_codes=[INVALID_INPUT_RESPONSE])
            self._record(result)
            return result

        secret = secret_key or self.secret_resolver()
        try:
            result = await self.provider.siteverify(
                secret=secret,
                token=token,
                remote_ip=remote_ip,
                idempotency_key=idempotency_key,
            )
        except ExternalServiceError as e:
            logger.error(f"Turnstile verification error: {e.message}", exc_info=True)
            result = VerificationResult(VerificationOutcome.ERROR, error_codes=[INTERNAL_ERROR])

        if result.outcome == VerificationOutcome.FAILED:
            logger.warning(f"Turnstile verification failed: error codes {result.error_codes}")

        self._record(result)
        return result
