"""
Gated resume download: verify a Turnstile token, issue a short-lived download
token, then redeem it for a redirect to the file.
"""
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, Query, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse

from portfolio_guard.api.deps import get_turnstile_gateway
from portfolio_guard.core.config import settings
from portfolio_guard.core.errors import VerificationFailed
from portfolio_guard.schemas.download import SecureDownloadResponse
from portfolio_guard.services.activity_service import client_ip
from portfolio_guard.services.download_service import (
    DownloadTokenIssuer,
    RedeemStatus,
    get_download_issuer,
    google_drive_download_url,
)
from portfolio_guard.services.verification import TurnstileGateway

logger = logging.getLogger(__name__)

router = APIRouter()

REDEEM_PATH = "/api/secure-download"


@router.post("/secure-download-url", response_model=SecureDownloadResponse)
async def get_secure_download_url(
    request: Request,
    turnstile_token: Optional[str] = Form(None, alias="turnstileToken"),
    gateway: TurnstileGateway = Depends(get_turnstile_gateway),
    issuer: DownloadTokenIssuer = Depends(get_download_issuer),
):
    """
    Exchange a verified Turnstile token for a download link valid for a short time.

    The file URL itself stays server-side inside the encrypted token.
    """
    result = await gateway.verify(turnstile_token, remote_ip=client_ip(request))
    if not result.success:
        raise VerificationFailed()

    token = issuer.issue(settings.RESUME_FILE_URL)
    return SecureDownloadResponse(
        url=f"{REDEEM_PATH}?token={quote(token, safe='')}",
        direct_url=google_drive_download_url(settings.RESUME_FILE_URL),
    )


@router.get("/secure-download")
async def secure_download(
    token: Optional[str] = Query(None),
    issuer: DownloadTokenIssuer = Depends(get_download_issuer),
):
    """
    Redeem a download token.

    Returns:
        302 redirect to the file with Content-Disposition: attachment, or 401
    """
    if not token:
        return PlainTextResponse("Unauthorized: Missing token", status_code=status.HTTP_401_UNAUTHORIZED)

    redeemed = issuer.redeem(token)
    if redeemed.status == RedeemStatus.EXPIRED:
        return PlainTextResponse("Unauthorized: Token expired", status_code=status.HTTP_401_UNAUTHORIZED)
    if not redeemed.ok:
        return PlainTextResponse("Unauthorized: Invalid token", status_code=status.HTTP_401_UNAUTHORIZED)

    download_url = google_drive_download_url(redeemed.url)
    logger.info("Redeemed download token")
    return RedirectResponse(
        url=download_url,
        status_code=status.HTTP_302_FOUND,
        headers={
            "Content-Disposition": f'attachment; filename="{settings.RESUME_FILENAME}"',
            "Content-Type": "application/pdf",
        },
    )
