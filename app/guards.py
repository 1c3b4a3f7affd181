"""Session authentication and the route guards built on it."""
from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Depends, Request
from fastapi.responses import Response

from .database import Database
from .exceptions import (
    SESSION_INTENDED_KEY,
    AuthenticationRequired,
    EmailNotVerified,
    GuestOnly,
    PasswordConfirmationRequired,
)
from .models import User
from .security import URLSigner

logger = logging.getLogger("starter.auth")

SESSION_USER_KEY = "user_id"
SESSION_PASSWORD_CONFIRMED_KEY = "auth.password_confirmed_at"
SESSION_LOGIN_ID_KEY = "login.id"
SESSION_LOGIN_REMEMBER_KEY = "login.remember"

REMEMBER_COOKIE_NAME = "remember_web"
REMEMBER_COOKIE_SALT = "remember-web"
REMEMBER_COOKIE_MAX_AGE = 60 * 60 * 24 * 400

_UNRESOLVED = object()


def _database(request: Request) -> Database:
    return request.app.state.database


def _signer(request: Request) -> URLSigner:
    return request.app.state.signer


def _fetch_user(database: Database, user_id: object) -> Optional[User]:
    try:
        numeric_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return database.get_user(numeric_id)


def _user_from_remember_cookie(request: Request) -> Optional[User]:
    cookie = request.cookies.get(REMEMBER_COOKIE_NAME)
    if not cookie:
        return None
    payload, _ = _signer(request).unsign(cookie, salt=REMEMBER_COOKIE_SALT, max_age=REMEMBER_COOKIE_MAX_AGE)
    if not isinstance(payload, list) or len(payload) != 2:
        return None
    user_id, token = payload
    try:
        numeric_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return _database(request).get_user_by_remember_token(numeric_id, str(token))


def current_user(request: Request) -> Optional[User]:
    """Resolve the signed-in user from the session or the remember-me cookie."""

    cached = getattr(request.state, "user", _UNRESOLVED)
    if cached is not _UNRESOLVED:
        return cached

    user: Optional[User] = None
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id:
        user = _fetch_user(_database(request), user_id)
        if user is None:
            request.session.pop(SESSION_USER_KEY, None)

    if user is None:
        user = _user_from_remember_cookie(request)
        if user is not None:
            request.session[SESSION_USER_KEY] = user.id
            logger.info("User %s re-authenticated from remember cookie", user.id)

    request.state.user = user
    return user


def login(request: Request, user: User, *, remember: bool = False) -> Optional[str]:
    """Start an authenticated session for ``user``.

    Returns the remember-me cookie value when ``remember`` is set; the caller
    attaches it to its response with :func:`attach_remember_cookie`.
    """

    intended = request.session.get(SESSION_INTENDED_KEY)
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id
    if intended:
        request.session[SESSION_INTENDED_KEY] = intended
    request.state.user = user

    if not remember:
        return None
    token = _database(request).rotate_remember_token(user.id)
    return _signer(request).sign([user.id, token], salt=REMEMBER_COOKIE_SALT)


def logout(request: Request, response: Response) -> None:
    user = current_user(request)
    if user is not None:
        _database(request).clear_remember_token(user.id)
    request.session.clear()
    request.state.user = None
    response.delete_cookie(REMEMBER_COOKIE_NAME, path="/")


def attach_remember_cookie(request: Request, response: Response, value: Optional[str]) -> None:
    if not value:
        return
    response.set_cookie(
        REMEMBER_COOKIE_NAME,
        value,
        max_age=REMEMBER_COOKIE_MAX_AGE,
        httponly=True,
        secure=request.app.state.settings.secure_cookies,
        samesite="lax",
        path="/",
    )


def pop_intended_url(request: Request, default: str) -> str:
    intended = request.session.pop(SESSION_INTENDED_KEY, None)
    return str(intended) if intended else default


def mark_password_confirmed(request: Request) -> None:
    request.session[SESSION_PASSWORD_CONFIRMED_KEY] = int(time.time())


def password_recently_confirmed(request: Request) -> bool:
    confirmed_at = request.session.get(SESSION_PASSWORD_CONFIRMED_KEY)
    if not confirmed_at:
        return False
    timeout = request.app.state.settings.password_timeout
    return time.time() - float(confirmed_at) < timeout


# ----------------------------------------------------------------------
# Route dependencies
# ----------------------------------------------------------------------
def require_user(request: Request) -> User:
    user = current_user(request)
    if user is None:
        raise AuthenticationRequired()
    return user


def require_guest(request: Request) -> None:
    if current_user(request) is not None:
        raise GuestOnly()


def require_verified(user: User = Depends(require_user)) -> User:
    if not user.has_verified_email:
        raise EmailNotVerified()
    return user


def require_password_confirmation(request: Request, user: User = Depends(require_user)) -> User:
    if not password_recently_confirmed(request):
        raise PasswordConfirmationRequired()
    return user


__all__ = [
    "REMEMBER_COOKIE_NAME",
    "SESSION_LOGIN_ID_KEY",
    "SESSION_LOGIN_REMEMBER_KEY",
    "SESSION_USER_KEY",
    "attach_remember_cookie",
    "current_user",
    "login",
    "logout",
    "mark_password_confirmed",
    "password_recently_confirmed",
    "pop_intended_url",
    "require_guest",
    "require_password_confirmation",
    "require_user",
    "require_verified",
]
