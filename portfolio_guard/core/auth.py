"""
Session authentication and RBAC for back-office endpoints.
"""
import logging
from typing import Optional

from fastapi import Depends, Request

from portfolio_guard.core.config import settings
from portfolio_guard.core.errors import AuthenticationError, AuthorizationError
from portfolio_guard.core.roles import Role, has_permission, normalize_role
from portfolio_guard.core.session import SessionData, SessionManager, SessionUser

logger = logging.getLogger(__name__)


def get_session_manager() -> SessionManager:
    """Dependency returning the session manager (overridable in tests)."""
    return SessionManager()


def get_current_session(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
) -> Optional[SessionData]:
    """
    Dependency reading the session cookie.

    Returns:
        SessionData if the cookie is present, decrypts and has not expired; otherwise None
    """
    return manager.read_session(request.cookies.get(settings.SESSION_COOKIE_NAME))


def authorize(session: Optional[SessionData], required_role: str) -> SessionUser:
    """
    Check a session against a minimum role.

    Args:
        session: Session from get_current_session (None if not logged in)
        required_role: Minimum role (user, manager, admin)

    Returns:
        The session user if authorized

    Raises:
        AuthenticationError: No valid session (caller redirects to the login page)
        AuthorizationError: Valid session but role rank is too low (access denied)
    """
    if session is None:
        raise AuthenticationError()

    if not has_permission(session.user.role, required_role):
        logger.warning(
            f"Access denied: '{session.user.username}' has role '{session.user.role}', "
            f"requires '{normalize_role(required_role)}'"
        )
        raise AuthorizationError(f"Insufficient permissions. Required role: {normalize_role(required_role)}")

    return session.user


def require_role(min_role: str = Role.USER.value):
    """
    Dependency factory for role-based access control.

    Args:
        min_role: Minimum required role (user, manager, admin)

    Returns:
        Dependency function that checks role permissions
    """
    def check_role(session: Optional[SessionData] = Depends(get_current_session)) -> SessionUser:
        return authorize(session, min_role)

    return check_role
