"""
Activity logging service for the API key and Turnstile audit trails.

Log rows are added to the caller's session and committed together with the
change they describe, so an operation and its audit entry land atomically.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import Session

from portfolio_guard.models.api_key_log import ApiKeyLog
from portfolio_guard.models.turnstile import TurnstileLog

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
BULK_SUBJECT = "all"


class ActivityAction:
    """Constants for audit actions."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    VIEWED = "viewed"
    USED = "used"

    ALL = (CREATED, UPDATED, DELETED, VIEWED, USED)


@dataclass(frozen=True)
class RequestMeta:
    """Client metadata attached to audit rows."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Optional[Request]) -> "RequestMeta":
        """
        Extract IP and user agent from a request.

        Args:
            request: FastAPI request object (may be None outside HTTP handling)

        Returns:
            RequestMeta with whatever could be determined
        """
        if request is None:
            return cls()
        return cls(ip_address=client_ip(request), user_agent=(request.headers.get("User-Agent") or "")[:255] or None)


def client_ip(request: Request) -> Optional[str]:
    """Get client IP, preferring the first X-Forwarded-For hop (proxies)."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return None


def log_api_key_action(
    db: Session,
    action: str,
    api_key_id: str,
    api_key_name: str,
    service: str,
    performed_by: str,
    details: Optional[str] = None,
    meta: Optional[RequestMeta] = None,
) -> ApiKeyLog:
    """
    Stage an API key audit row in the current transaction.

    Args:
        db: Database session (the caller commits)
        action: One of ActivityAction
        api_key_id: Affected key ID, or "all" for bulk views
        api_key_name: Key name at the time of the action
        service: Key service at the time of the action
        performed_by: Username, or "system"
        details: Free-text description
        meta: Request metadata

    Returns:
        The pending ApiKeyLog row
    """
    meta = meta or RequestMeta()
    entry = ApiKeyLog(
        action=action,
        api_key_id=api_key_id,
        api_key_name=api_key_name,
        service=service,
        performed_by=performed_by,
        details=details,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    db.add(entry)
    logger.debug(f"Audit: api_key {action} {api_key_id} by {performed_by}")
    return entry


def log_turnstile_action(
    db: Session,
    action: str,
    site_key_id: str,
    performed_by: str,
    details: Optional[str] = None,
    success: bool = True,
    meta: Optional[RequestMeta] = None,
) -> TurnstileLog:
    """Stage a Turnstile site key audit row in the current transaction."""
    meta = meta or RequestMeta()
    entry = TurnstileLog(
        action=action,
        site_key_id=site_key_id,
        performed_by=performed_by,
        details=details,
        success=success,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    db.add(entry)
    logger.debug(f"Audit: turnstile {action} {site_key_id} by {performed_by}")
    return entry
