"""
Short-lived download tokens for the resume download flow.

A token is the encrypted JSON {"exp": <epoch ms>, "url": <target>}. Tokens are
stateless: any copy of a token redeems until it expires.
"""
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from portfolio_guard.core.config import settings
from portfolio_guard.core.crypto import PayloadCodec, get_codec
from portfolio_guard.core.errors import DecryptionError

logger = logging.getLogger(__name__)

_DRIVE_FILE_PATTERN = re.compile(r"/file/d/([a-zA-Z0-9_-]+)")
_DRIVE_OPEN_PATTERN = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")


def extract_google_drive_file_id(url: str) -> Optional[str]:
    """Get the file ID from a /file/d/<id> or ?id=<id> Google Drive link."""
    match = _DRIVE_FILE_PATTERN.search(url) or _DRIVE_OPEN_PATTERN.search(url)
    return match.group(1) if match else None


def google_drive_download_url(url: str) -> str:
    """
    Convert a Google Drive sharing link into a direct download link.

    Args:
        url: Any URL

    Returns:
        https://drive.google.com/uc?export=download&id=<id> for Drive links, otherwise url unchanged
    """
    file_id = extract_google_drive_file_id(url)
    if file_id:
        return f"https://drive.google.com/uc?export=download&id={file_id}"
    return url


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedeemStatus(str, Enum):
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True)
class RedeemResult:
    status: RedeemStatus
    url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == RedeemStatus.REDEEMED


class DownloadTokenIssuer:
    """Mints and redeems download tokens."""

    def __init__(self, codec: Optional[PayloadCodec] = None, ttl_seconds: Optional[int] = None):
        self.codec = codec or get_codec()
        self.ttl_ms = (ttl_seconds or settings.DOWNLOAD_TOKEN_TTL_SECONDS) * 1000

    def issue(self, target_url: str, now_ms: Optional[int] = None) -> str:
        """
        Mint a token binding a target URL to an expiry.

        Args:
            target_url: URL the token redeems to
            now_ms: Override for the current time in epoch milliseconds

        Returns:
            Opaque token
        """
        now_ms = _now_ms() if now_ms is None else now_ms
        return self.codec.encrypt_json({"exp": now_ms + self.ttl_ms, "url": target_url})

    def redeem(self, token: Optional[str], now_ms: Optional[int] = None) -> RedeemResult:
        """
        Check a token.

        Returns:
            REDEEMED with the URL, EXPIRED once exp <= now, or INVALID if the
            token is missing, cannot be decrypted or has the wrong shape
        """
        if not token:
            return RedeemResult(RedeemStatus.INVALID)

        try:
            payload = self.codec.decrypt_json(token)
        except DecryptionError as e:
            logger.warning(f"Rejected download token: {e.message}")
            return RedeemResult(RedeemStatus.INVALID)

        if not isinstance(payload, dict):
            return RedeemResult(RedeemStatus.INVALID)
        exp = payload.get("exp")
        url = payload.get("url")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool) or not isinstance(url, str) or not url:
            logger.warning("Rejected download token: payload has unexpected shape")
            return RedeemResult(RedeemStatus.INVALID)

        now_ms = _now_ms() if now_ms is None else now_ms
        if exp <= now_ms:
            logger.info("Rejected download token: expired")
            return RedeemResult(RedeemStatus.EXPIRED)

        return RedeemResult(RedeemStatus.REDEEMED, url=url)


def get_download_issuer() -> DownloadTokenIssuer:
    """Dependency returning the download token issuer (overridable in tests)."""
    return DownloadTokenIssuer()
