"""
API key management endpoints.

Mutations and secret recovery require admin; listing, viewing and logs require
manager. Key verification is public.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, status
from fastapi.responses import JSONResponse

from portfolio_guard.api.deps import get_api_key_service
from portfolio_guard.core.auth import require_role
from portfolio_guard.core.csrf import verify_same_origin
from portfolio_guard.core.errors import NotFoundError, ValidationError
from portfolio_guard.core.rate_limit import enforce_rate_limit, get_sensitive_read_limiter
from portfolio_guard.core.roles import Role
from portfolio_guard.core.session import SessionUser
from portfolio_guard.schemas.api_key import (
    ApiKeyCreateResponse,
    ApiKeyEnvelope,
    ApiKeyListResponse,
    ApiKeyLogListResponse,
    ApiKeyLogResponse,
    ApiKeyResponse,
    ApiKeyRevealResponse,
)
from portfolio_guard.schemas.common import ActionResponse
from portfolio_guard.services.activity_service import ActivityAction
from portfolio_guard.services.api_key_service import ApiKeyService
from portfolio_guard.utils.forms import parse_optional_bool, parse_optional_datetime

logger = logging.getLogger(__name__)

router = APIRouter()

# Public verification endpoint, no session and no Origin requirement
verify_router = APIRouter()

API_KEY_NOT_FOUND = "API key not found"
SAME_ORIGIN = [Depends(verify_same_origin)]


@router.post("", response_model=ApiKeyCreateResponse, status_code=status.HTTP_201_CREATED, dependencies=SAME_ORIGIN)
async def create_api_key(
    name: Optional[str] = Form(None),
    service: Optional[str] = Form(None),
    expires_at: Optional[str] = Form(None, alias="expiresAt"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    """
    Create a new API key (admin only).

    Returns the raw key once; only its digest and an encrypted copy are stored.
    """
    record, raw_key = api_keys.create(
        name=name,
        service=service,
        created_by=user.username,
        expires_at=parse_optional_datetime(expires_at, "expiresAt"),
    )
    return ApiKeyCreateResponse(
        api_key=ApiKeyResponse.from_model(record),
        raw_key=raw_key,
        message="Store this key now. It will not be shown again.",
    )


@router.post("/update", response_model=ApiKeyEnvelope, dependencies=SAME_ORIGIN)
async def update_api_key(
    key_id: Optional[str] = Form(None, alias="id"),
    name: Optional[str] = Form(None),
    service: Optional[str] = Form(None),
    is_active: Optional[str] = Form(None, alias="isActive"),
    expires_at: Optional[str] = Form(None, alias="expiresAt"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    """Update an API key's name, service, status or expiry (admin only)."""
    if not key_id:
        raise ValidationError("API key ID is required", errors={"id": "API key ID is required"})

    updates = {}
    if name is not None:
        updates["name"] = name
    if service is not None:
        updates["service"] = service
    active = parse_optional_bool(is_active, "isActive")
    if active is not None:
        updates["is_active"] = active
    if expires_at is not None:
        updates["expires_at"] = parse_optional_datetime(expires_at, "expiresAt")

    record = api_keys.update(key_id, updates, updated_by=user.username)
    if record is None:
        raise NotFoundError(API_KEY_NOT_FOUND)
    return ApiKeyEnvelope(api_key=ApiKeyResponse.from_model(record))


@router.post("/rotate", response_model=ApiKeyCreateResponse, dependencies=SAME_ORIGIN)
async def rotate_api_key(
    key_id: Optional[str] = Form(None, alias="id"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    """Replace an API key's value, keeping its ID (admin only)."""
    if not key_id:
        raise ValidationError("API key ID is required", errors={"id": "API key ID is required"})

    rotated = api_keys.rotate(key_id, updated_by=user.username)
    if rotated is None:
        raise NotFoundError(API_KEY_NOT_FOUND)
    record, raw_key = rotated
    return ApiKeyCreateResponse(
        api_key=ApiKeyResponse.from_model(record),
        raw_key=raw_key,
        message="API key rotated. The previous value no longer works.",
    )


@router.post("/delete", response_model=ActionResponse, dependencies=SAME_ORIGIN)
async def delete_api_key(
    key_id: Optional[str] = Form(None, alias="id"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    """Revoke an API key (admin only). Revoking twice succeeds."""
    if not key_id:
        raise ValidationError("API key ID is required", errors={"id": "API key ID is required"})

    if not api_keys.delete(key_id, deleted_by=user.username):
        raise NotFoundError(API_KEY_NOT_FOUND)
    return ActionResponse(message="API key revoked")


@router.post("/reveal", response_model=ApiKeyRevealResponse, dependencies=SAME_ORIGIN)
async def reveal_api_key(
    key_id: Optional[str] = Form(None, alias="id"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    """
    Recover the raw value of an API key (admin only).

    Sensitive: logged and rate-limited per user.
    """
    if not key_id:
        raise ValidationError("API key ID is required", errors={"id": "API key ID is required"})

    enforce_rate_limit(get_sensitive_read_limiter(), f"reveal:{user.username}")
    raw_key = api_keys.get_decrypted(key_id, requested_by=user.username)
    if raw_key is None:
        raise NotFoundError(API_KEY_NOT_FOUND)
    return ApiKeyRevealResponse(raw_key=raw_key)


@router.get("", response_model=ApiKeyListResponse)
async def list_api_keys(
    user: SessionUser = Depends(require_role(Role.MANAGER.value)),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    """List active API keys (manager or above). Raw and encrypted values are never included."""
    items = [ApiKeyResponse.from_model(k) for k in api_keys.list_all(viewed_by=user.username)]
    logger.info(f"Listed {len(items)} API keys for '{user.username}'")
    return ApiKeyListResponse(api_keys=items, total=len(items))


@router.get("/logs", response_model=ApiKeyLogListResponse)
async def get_api_key_logs(
    api_key_id: Optional[str] = Query(None, alias="apiKeyId"),
    service: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    limit: int = Query(200, ge=1, le=1000),
    _user: SessionUser = Depends(require_role(Role.MANAGER.value)),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    """API key audit trail, newest first (manager or above)."""
    if action and action not in ActivityAction.ALL:
        raise ValidationError(f"Unknown action: {action}", errors={"action": "Unknown action"})

    logs = api_keys.get_logs(
        api_key_id=api_key_id,
        service=service,
        action=action,
        date_from=parse_optional_datetime(date_from, "from"),
        date_to=parse_optional_datetime(date_to, "to"),
        limit=limit,
    )
    return ApiKeyLogListResponse(
        logs=[ApiKeyLogResponse.model_validate(entry) for entry in logs],
        total=len(logs),
    )


@router.get("/{key_id}", response_model=ApiKeyEnvelope)
async def get_api_key(
    key_id: str,
    user: SessionUser = Depends(require_role(Role.MANAGER.value)),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    record = api_keys.get_by_id(key_id, viewed_by=user.username)
    if record is None:
        raise NotFoundError(API_KEY_NOT_FOUND)
    return ApiKeyEnvelope(api_key=ApiKeyResponse.from_model(record))


@verify_router.post("/verify", response_model=ApiKeyEnvelope)
async def verify_api_key(
    key: Optional[str] = Form(None),
    service: Optional[str] = Form(None),
    api_keys: ApiKeyService = Depends(get_api_key_service),
):
    """Check a raw API key, optionally for a specific service."""
    record = api_keys.verify(key or "", service=service or None)
    if record is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"success": False, "message": "Invalid API key"},
        )
    return ApiKeyEnvelope(api_key=ApiKeyResponse.from_model(record))
