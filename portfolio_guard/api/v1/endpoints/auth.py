"""
Back-office login, logout and session endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from portfolio_guard.core.auth import authorize, get_current_session, get_session_manager
from portfolio_guard.core.csrf import verify_same_origin
from portfolio_guard.core.database import get_db
from portfolio_guard.core.errors import AuthorizationError, ValidationError
from portfolio_guard.core.roles import Role
from portfolio_guard.core.session import SessionData, SessionManager, clear_session_cookie, set_session_cookie
from portfolio_guard.schemas.auth import LoginResponse, SessionUserResponse, UserResponse
from portfolio_guard.services.auth_service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter()

# Landing pages targeted by redirects (mounted without the /api prefix)
pages_router = APIRouter()

LOGIN_PAGE = "/admin/login"
UNAUTHORIZED_PAGE = "/admin/unauthorized"


@router.post("/login", response_model=LoginResponse, dependencies=[Depends(verify_same_origin)])
async def login(
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Log in with username and password.

    On success the encrypted session cookie is set. On failure no cookie is set
    and the response does not say which part of the credentials was wrong.
    """
    errors = {}
    if not username:
        errors["username"] = "Username is required"
    if not password:
        errors["password"] = "Password is required"
    if errors:
        raise ValidationError("Username and password are required", errors=errors)

    user = AuthService(db).authenticate(username, password)
    if user is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"success": False, "message": "Invalid username or password"},
        )

    body = LoginResponse(user=UserResponse.model_validate(user))
    response = JSONResponse(content=body.model_dump(mode="json", by_alias=True))
    set_session_cookie(response, manager.create_session(user))
    return response


@router.post("/logout")
async def logout():
    """Clear the session cookie and go back to the login page."""
    response = RedirectResponse(url=LOGIN_PAGE, status_code=status.HTTP_303_SEE_OTHER)
    clear_session_cookie(response)
    return response


@router.get("/me", response_model=SessionUserResponse)
async def me(
    session: Optional[SessionData] = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Current session user."""
    user = authorize(session, Role.USER.value)
    record = AuthService(db).get_user(user.username)
    return SessionUserResponse(
        user=UserResponse(
            id=user.id,
            username=user.username,
            role=user.role,
            last_login=record.last_login if record else None,
        ),
        expires_at=session.expires_at,
    )


@pages_router.get(LOGIN_PAGE)
async def login_page():
    """Landing target for unauthenticated back-office requests."""
    return {
        "success": False,
        "message": "Authentication required",
        "loginUrl": "/api/auth/login",
    }


@pages_router.get(UNAUTHORIZED_PAGE)
async def unauthorized_page():
    raise AuthorizationError()
