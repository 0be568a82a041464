"""
Global rate limiting middleware.
"""
import logging
import math
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from portfolio_guard.core.config import settings
from portfolio_guard.core.errors import RateLimitExceeded
from portfolio_guard.core.rate_limit import get_global_limiter
from portfolio_guard.services.activity_service import client_ip

logger = logging.getLogger(__name__)


def is_rate_limited_path(request: Request) -> bool:
    """API routes and every POST are limited."""
    return request.url.path.startswith("/api/") or request.method == "POST"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject clients exceeding RATE_LIMIT_REQUESTS per window with 429."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not settings.RATE_LIMIT_ENABLED or not is_rate_limited_path(request):
            return await call_next(request)

        identity = client_ip(request) or "anonymous"
        if not get_global_limiter().hit(identity):
            logger.warning(f"Rate limit exceeded for {identity} on {request.method} {request.url.path}")
            return JSONResponse(
                status_code=RateLimitExceeded.status_code,
                content={"success": False, "message": RateLimitExceeded.default_message},
                headers={"Retry-After": str(math.ceil(settings.RATE_LIMIT_WINDOW_SECONDS))},
            )

        return await call_next(request)
