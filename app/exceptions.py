"""Exceptions raised by guards and handlers, and their HTTP translations."""
from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .http import previous_url, redirect, wants_json

logger = logging.getLogger("starter.errors")

SESSION_ERRORS_KEY = "_errors"
SESSION_OLD_INPUT_KEY = "_old"
SESSION_INTENDED_KEY = "url.intended"

# Never echoed back to the browser after a failed submission.
_SENSITIVE_FIELDS = {"password", "password_confirmation", "current_password", "code", "recovery_code"}


class AuthenticationRequired(HTTPException):
    def __init__(self, detail: str = "Unauthenticated.") -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class GuestOnly(HTTPException):
    def __init__(self, detail: str = "Already authenticated.") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class EmailNotVerified(HTTPException):
    def __init__(self, detail: str = "Your email address is not verified.") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class PasswordConfirmationRequired(HTTPException):
    def __init__(self, detail: str = "Password confirmation required.") -> None:
        super().__init__(status_code=status.HTTP_423_LOCKED, detail=detail)


class TooManyAttempts(HTTPException):
    def __init__(self, retry_after: int, detail: str = "Too Many Attempts.") -> None:
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


class FormValidationError(Exception):
    """Field-level validation failure for a submitted form."""

    def __init__(
        self,
        errors: Mapping[str, str],
        *,
        redirect_to: Optional[str] = None,
        old_input: Optional[Mapping[str, object]] = None,
    ) -> None:
        super().__init__(next(iter(errors.values()), "The given data was invalid."))
        self.errors: Dict[str, str] = dict(errors)
        self.redirect_to = redirect_to
        self.old_input = dict(old_input or {})


def remember_intended_url(request: Request) -> None:
    if request.method == "GET":
        request.session[SESSION_INTENDED_KEY] = str(request.url)


def register_exception_handlers(app: FastAPI) -> None:
    """Translate guard and validation failures into redirects or JSON."""

    @app.exception_handler(AuthenticationRequired)
    async def _unauthenticated(request: Request, exc: AuthenticationRequired) -> Response:
        if wants_json(request):
            return JSONResponse({"message": exc.detail}, status_code=exc.status_code)
        remember_intended_url(request)
        return redirect(request.url_for("login"))

    @app.exception_handler(GuestOnly)
    async def _guest_only(request: Request, exc: GuestOnly) -> Response:
        if wants_json(request):
            return JSONResponse({"message": exc.detail}, status_code=exc.status_code)
        return redirect(request.url_for("dashboard"))

    @app.exception_handler(EmailNotVerified)
    async def _unverified(request: Request, exc: EmailNotVerified) -> Response:
        if wants_json(request):
            return JSONResponse({"message": exc.detail}, status_code=exc.status_code)
        return redirect(request.url_for("verification.notice"))

    @app.exception_handler(PasswordConfirmationRequired)
    async def _password_confirm(request: Request, exc: PasswordConfirmationRequired) -> Response:
        if wants_json(request):
            return JSONResponse({"message": exc.detail}, status_code=exc.status_code)
        remember_intended_url(request)
        return redirect(request.url_for("password.confirm"))

    @app.exception_handler(TooManyAttempts)
    async def _throttled(request: Request, exc: TooManyAttempts) -> Response:
        logger.warning("Rate limit exceeded for %s %s", request.method, request.url.path)
        if wants_json(request):
            return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=exc.headers)
        return PlainTextResponse(exc.detail, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(FormValidationError)
    async def _invalid_form(request: Request, exc: FormValidationError) -> Response:
        if wants_json(request):
            return JSONResponse(
                {"message": str(exc), "errors": {field: [message] for field, message in exc.errors.items()}},
                status_code=422,
            )
        request.session[SESSION_ERRORS_KEY] = exc.errors
        request.session[SESSION_OLD_INPUT_KEY] = {
            key: value
            for key, value in exc.old_input.items()
            if key not in _SENSITIVE_FIELDS and isinstance(value, (str, int, float, bool))
        }
        target = exc.redirect_to or previous_url(request, str(request.url))
        return redirect(target)


__all__ = [
    "AuthenticationRequired",
    "EmailNotVerified",
    "FormValidationError",
    "GuestOnly",
    "PasswordConfirmationRequired",
    "SESSION_ERRORS_KEY",
    "SESSION_INTENDED_KEY",
    "SESSION_OLD_INPUT_KEY",
    "TooManyAttempts",
    "register_exception_handlers",
    "remember_intended_url",
]
