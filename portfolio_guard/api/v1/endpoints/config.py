"""
Turnstile configuration cookie and environment status endpoints (admin only).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse

from portfolio_guard.core.auth import require_role
from portfolio_guard.core.config import settings
from portfolio_guard.core.crypto import obfuscate_key
from portfolio_guard.core.csrf import verify_same_origin
from portfolio_guard.core.roles import Role
from portfolio_guard.core.session import SessionUser
from portfolio_guard.schemas.common import ActionResponse
from portfolio_guard.schemas.turnstile import EnvStatusResponse, TurnstileConfigResponse
from portfolio_guard.services.config_service import TurnstileConfigStore, env_status, set_config_cookie

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/turnstile/config", response_model=ActionResponse, dependencies=[Depends(verify_same_origin)])
async def save_turnstile_config(
    request: Request,
    site_key: Optional[str] = Form(None, alias="siteKey"),
    secret_key: Optional[str] = Form(None, alias="secretKey"),
    user: SessionUser = Depends(require_role(Role.ADMIN.value)),
):
    """
    Store Turnstile keys in the encrypted configuration cookie.

    Submitting the masked placeholder as the secret keeps the stored secret.
    """
    value = TurnstileConfigStore().build(
        site_key,
        secret_key,
        current_value=request.cookies.get(settings.CONFIG_COOKIE_NAME),
    )
    response = JSONResponse(content={"success": True, "message": "Turnstile configuration saved"})
    set_config_cookie(response, value)
    logger.info(f"Turnstile configuration updated by '{user.username}' (site key {obfuscate_key(site_key or '')})")
    return response


@router.get("/turnstile/config", response_model=TurnstileConfigResponse)
async def get_turnstile_config(
    request: Request,
    _user: SessionUser = Depends(require_role(Role.ADMIN.value)),
):
    view = TurnstileConfigStore().public_view(request.cookies.get(settings.CONFIG_COOKIE_NAME))
    return TurnstileConfigResponse(**view)


@router.get("/env-status", response_model=EnvStatusResponse)
async def get_env_status(_user: SessionUser = Depends(require_role(Role.ADMIN.value))):
    """Whether Turnstile keys come from the environment. Values are never returned."""
    return EnvStatusResponse(**env_status())
