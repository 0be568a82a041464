"""
Shared FastAPI dependencies building request-scoped services.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from portfolio_guard.core.config import settings
from portfolio_guard.core.database import get_db
from portfolio_guard.services.activity_service import RequestMeta
from portfolio_guard.services.api_key_service import ApiKeyService
from portfolio_guard.services.config_service import resolve_turnstile_keys
from portfolio_guard.services.turnstile_service import TurnstileService
from portfolio_guard.services.verification import TurnstileGateway, VerificationProvider, get_verification_provider


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta.from_request(request)


def get_api_key_service(
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
) -> ApiKeyService:
    return ApiKeyService(db, meta=meta)


def get_turnstile_service(
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
) -> TurnstileService:
    return TurnstileService(db, meta=meta)


def get_turnstile_gateway(
    request: Request,
    db: Session = Depends(get_db),
    provider: VerificationProvider = Depends(get_verification_provider),
) -> TurnstileGateway:
    """
    Gateway for this request. The secret comes from the config cookie, the
    active site key, or settings, in that order, and is only resolved when needed.
    """
    config_cookie = request.cookies.get(settings.CONFIG_COOKIE_NAME)
    return TurnstileGateway(
        provider,
        db,
        secret_resolver=lambda: resolve_turnstile_keys(db, config_cookie).secret_key,
    )
