"""
Public contact form endpoint, gated on Turnstile verification.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from portfolio_guard.api.deps import get_turnstile_gateway
from portfolio_guard.core.csrf import verify_same_origin
from portfolio_guard.core.errors import VerificationFailed
from portfolio_guard.core.rate_limit import enforce_rate_limit, get_contact_limiter
from portfolio_guard.schemas.contact import ContactFormRequest, ContactFormResponse
from portfolio_guard.services.activity_service import client_ip
from portfolio_guard.services.verification import TurnstileGateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ContactFormResponse, dependencies=[Depends(verify_same_origin)])
async def submit_contact_form(
    form: ContactFormRequest,
    request: Request,
    gateway: TurnstileGateway = Depends(get_turnstile_gateway),
):
    """
    Accept a contact form submission.

    Rate-limited per client IP. Each submission gets a fresh idempotency key
    for the verification call.
    """
    ip = client_ip(request) or "anonymous"
    enforce_rate_limit(get_contact_limiter(), f"contact:{ip}")

    result = await gateway.verify(
        form.turnstile_token,
        remote_ip=client_ip(request),
        idempotency_key=str(uuid.uuid4()),
    )
    if not result.success:
        body = ContactFormResponse(
            success=False,
            message=VerificationFailed.default_message,
            turnstile_failed=True,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    logger.info(
        f"Contact form submitted: name={form.name!r}, email={form.email!r}, "
        f"message_length={len(form.message)}, turnstile_hostname={result.hostname}"
    )
    return ContactFormResponse(
        success=True,
        message="Thank you for your message! I'll get back to you soon.",
    )
