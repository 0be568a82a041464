"""
Same-origin check for state-changing form posts.
"""
import logging
from urllib.parse import urlsplit

from fastapi import Request

from portfolio_guard.core.errors import CsrfError

logger = logging.getLogger(__name__)


def verify_same_origin(request: Request) -> None:
    """
    Dependency rejecting cross-site form posts.

    The Origin header must be present and its hostname must equal the
    hostname of the Host header (the scheme is ignored).

    Raises:
        CsrfError: If the Origin header is missing or belongs to another host
    """
    origin = request.headers.get("origin")
    if not origin:
        logger.warning(f"Rejected {request.method} {request.url.path}: missing Origin header")
        raise CsrfError("Origin header is required")

    host = request.headers.get("host", "")
    origin_host = urlsplit(origin).hostname
    request_host = urlsplit(f"https://{host}").hostname

    if not origin_host or origin_host != request_host:
        logger.warning(f"Rejected {request.method} {request.url.path}: origin {origin} does not match host {host}")
        raise CsrfError()
