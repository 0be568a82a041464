"""Schemas for the secure download flow."""
from typing import Optional

from portfolio_guard.schemas.common import CamelModel


class SecureDownloadResponse(CamelModel):
    """Redeem URL for the issued token, plus the direct link as a fallback."""
    success: bool = True
    url: str
    direct_url: Optional[str] = None
