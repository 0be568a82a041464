"""
Turnstile endpoints: site key administration, logs, analytics and public verification.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Request, status
from sqlalchemy.orm import Session

from portfolio_guard.api.deps import get_turnstile_gateway, get_turnstile_service
from portfolio_guard.core.auth import require_role
from portfolio_guard.core.config import settings
from portfolio_guard.core.csrf import verify_same_origin
from portfolio_guard.core.database import get_db
from portfolio_guard.core.errors import NotFoundError, ValidationError, VerificationFailed
from portfolio_guard.core.rate_limit import enforce_rate_limit, get_sensitive_read_limiter
from portfolio_guard.core.roles import Role
from portfolio_guard.core.session import SessionUser
from portfolio_guard.schemas.common import ActionResponse
from portfolio_guard.schemas.turnstile import (
    AnalyticsDayResponse,
    AnalyticsResponse,
    PublicSiteKeyResponse,
    SiteKeyEnvelope,
    SiteKeyListResponse,
    SiteKeyResponse,
    SiteKeySecretResponse,
    TurnstileLogListResponse,
    TurnstileLogResponse,
    VerifyTokenRequest,
    VerifyTokenResponse,
)
from portfolio_guard.services.activity_service import ActivityAction, client_ip
from portfolio_guard.services.config_service import resolve_turnstile_keys
from portfolio_guard.services.turnstile_service import TurnstileService
from portfolio_guard.services.verification import TurnstileGateway
from portfolio_guard.utils.forms import parse_optional_bool, parse_optional_date, parse_optional_datetime

logger = logging.getLogger(__name__)

# Mounted at /admin/turnstile
admin_router = APIRouter()

# Mounted at /turnstile
public_router = APIRouter()

SITE_KEY_NOT_FOUND = "Turnstile site key not found"
SAME_ORIGIN = [Depends(verify_same_origin)]


def _require_id(site_key_id: Optional[str]) -> str:
    if not site_key_id:
        raise ValidationError("Site key ID is required", errors={"id": "Site key ID is required"})
    return site_key_id


@admin_router.post(
    "/site-keys",
    response_model=SiteKeyEnvelope,
    status_code=status.HTTP_201_CREATED,
    dependencies=SAME_ORIGIN,
)
async def create_site_key(
    name: Optional[str] = Form(None),
    environment: Optional[str] = Form(None),
    site_key: Optional[str] = Form(None, alias="siteKey"),
    secret_key: Optional[str] = Form(None, alias="secretKey"),
    domain: Optional[str] = Form(None),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    turnstile: TurnstileService = Depends(get_turnstile_service),
):
    """Register a Turnstile key pair (admin only). The secret is stored encrypted."""
    record = turnstile.create_site_key(
        name=name,
        environment=environment,
        site_key=site_key,
        secret_key=secret_key,
        domain=domain,
        created_by=user.username,
    )
    return SiteKeyEnvelope(site_key=SiteKeyResponse.model_validate(record))


@admin_router.post("/site-keys/update", response_model=SiteKeyEnvelope, dependencies=SAME_ORIGIN)
async def update_site_key(
    site_key_id: Optional[str] = Form(None, alias="id"),
    name: Optional[str] = Form(None),
    environment: Optional[str] = Form(None),
    site_key: Optional[str] = Form(None, alias="siteKey"),
    secret_key: Optional[str] = Form(None, alias="secretKey"),
    domain: Optional[str] = Form(None),
    is_active: Optional[str] = Form(None, alias="isActive"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    turnstile: TurnstileService = Depends(get_turnstile_service),
):
    """Update a site key (admin only). An empty secret keeps the stored one."""
    updates = {
        "name": name,
        "environment": environment,
        "site_key": site_key,
        "secret_key": secret_key,
        "domain": domain,
        "is_active": parse_optional_bool(is_active, "isActive"),
    }
    record = turnstile.update_site_key(
        _require_id(site_key_id),
        {k: v for k, v in updates.items() if v is not None},
        updated_by=user.username,
    )
    if record is None:
        raise NotFoundError(SITE_KEY_NOT_FOUND)
    return SiteKeyEnvelope(site_key=SiteKeyResponse.model_validate(record))


@admin_router.post("/site-keys/delete", response_model=ActionResponse, dependencies=SAME_ORIGIN)
async def delete_site_key(
    site_key_id: Optional[str] = Form(None, alias="id"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    turnstile: TurnstileService = Depends(get_turnstile_service),
):
    if not turnstile.delete_site_key(_require_id(site_key_id), deleted_by=user.username):
        raise NotFoundError(SITE_KEY_NOT_FOUND)
    return ActionResponse(message="Turnstile site key deactivated")


@admin_router.post("/site-keys/reveal", response_model=SiteKeySecretResponse, dependencies=SAME_ORIGIN)
async def reveal_site_key_secret(
    site_key_id: Optional[str] = Form(None, alias="id"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    turnstile: TurnstileService = Depends(get_turnstile_service),
):
    """Recover a site key's secret (admin only, logged, rate-limited per user)."""
    site_key_id = _require_id(site_key_id)
    enforce_rate_limit(get_sensitive_read_limiter(), f"reveal:{user.username}")
    secret = turnstile.get_decrypted_secret(site_key_id, requested_by=user.username)
    if secret is None:
        raise NotFoundError(SITE_KEY_NOT_FOUND)
    return SiteKeySecretResponse(secret_key=secret)


@admin_router.get("/site-keys", response_model=SiteKeyListResponse)
async def list_site_keys(
    user: SessionUser = Depends(require_role(Role.MANAGER.value)),
    turnstile: TurnstileService = Depends(get_turnstile_service),
):
    items = [SiteKeyResponse.model_validate(k) for k in turnstile.list_site_keys(viewed_by=user.username)]
    return SiteKeyListResponse(site_keys=items, total=len(items))


@admin_router.get("/site-keys/{site_key_id}", response_model=SiteKeyEnvelope)
async def get_site_key(
    site_key_id: str,
    user: SessionUser = Depends(require_role(Role.MANAGER.value)),
    turnstile: TurnstileService = Depends(get_turnstile_service),
):
    record = turnstile.get_site_key(site_key_id, viewed_by=user.username)
    if record is None:
        raise NotFoundError(SITE_KEY_NOT_FOUND)
    return SiteKeyEnvelope(site_key=SiteKeyResponse.model_validate(record))


@admin_router.get("/logs", response_model=TurnstileLogListResponse)
async def get_turnstile_logs(
    site_key_id: Optional[str] = Query(None, alias="siteKeyId"),
    action: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    limit: int = Query(200, ge=1, le=1000),
    _user: SessionUser = Depends(require_role(Role.MANAGER.value)),
    turnstile: TurnstileService = Depends(get_turnstile_service),
):
    """Site key audit trail, newest first (manager or above)."""
    if action and action not in ActivityAction.ALL:
        raise ValidationError(f"Unknown action: {action}", errors={"action": "Unknown action"})

    logs = turnstile.get_logs(
        site_key_id=site_key_id,
        action=action,
        date_from=parse_optional_datetime(date_from, "from"),
        date_to=parse_optional_datetime(date_to, "to"),
        limit=limit,
    )
    return TurnstileLogListResponse(
        logs=[TurnstileLogResponse.model_validate(entry) for entry in logs],
        total=len(logs),
    )


@admin_router.get("/analytics", response_model=AnalyticsResponse)
async def get_turnstile_analytics(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    _user: SessionUser = Depends(require_role(Role.MANAGER.value)),
    turnstile: TurnstileService = Depends(get_turnstile_service),
):
    """Daily verification counts, newest first, with totals for the range."""
    days = turnstile.get_analytics(
        date_from=parse_optional_date(date_from, "from"),
        date_to=parse_optional_date(date_to, "to"),
    )
    return AnalyticsResponse(
        analytics=[AnalyticsDayResponse.model_validate(day) for day in days],
        total_verifications=sum(d.total_verifications for d in days),
        successful_verifications=sum(d.successful_verifications for d in days),
        failed_verifications=sum(d.failed_verifications for d in days),
    )


@public_router.get("/site-key", response_model=PublicSiteKeyResponse)
async def get_public_site_key(request: Request, db: Session = Depends(get_db)):
    """Public site key for rendering the widget. The secret never leaves the server."""
    keys = resolve_turnstile_keys(db, request.cookies.get(settings.CONFIG_COOKIE_NAME))
    return PublicSiteKeyResponse(site_key=keys.site_key)


@public_router.post("/verify", response_model=VerifyTokenResponse)
async def verify_token(
    body: VerifyTokenRequest,
    request: Request,
    gateway: TurnstileGateway = Depends(get_turnstile_gateway),
):
    """Verify a widget token. Failures return a generic message only."""
    result = await gateway.verify(
        body.token,
        remote_ip=client_ip(request),
        idempotency_key=body.idempotency_key,
    )
    if not result.success:
        raise VerificationFailed()
    return VerifyTokenResponse(**result.to_public_dict())
