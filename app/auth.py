"""Registration, login, two-factor challenge, password reset and email verification."""
from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from .exceptions import FormValidationError, TooManyAttempts
from .guards import (
    SESSION_LOGIN_ID_KEY,
    SESSION_LOGIN_REMEMBER_KEY,
    attach_remember_cookie,
    current_user,
    login,
    logout,
    mark_password_confirmed,
    pop_intended_url,
    require_guest,
    require_user,
)
from .http import flash_status, previous_url, read_input, redirect, wants_json
from .mail import deliver, password_reset_message, verification_message
from .models import User
from .security import email_hash
from .two_factor import generate_recovery_code
from .validation import (
    CurrentPasswordForm,
    ForgotPasswordForm,
    LoginForm,
    RegisterForm,
    ResetPasswordForm,
    TwoFactorChallengeForm,
    validate_form,
)

logger = logging.getLogger("starter.auth")

LOGIN_MAX_ATTEMPTS = 5
TWO_FACTOR_MAX_ATTEMPTS = 5
VERIFICATION_MAX_ATTEMPTS = 6
VERIFY_EMAIL_SALT = "verify-email"

RESET_LINK_SENT = "A reset link will be sent if the account exists."
PASSWORD_RESET_DONE = "Your password has been reset."
VERIFICATION_LINK_SENT = "verification-link-sent"

INVALID_CREDENTIALS = "These credentials do not match our records."
INVALID_TWO_FACTOR_CODE = "The provided two factor authentication code was invalid."
INVALID_RECOVERY_CODE = "The provided two factor recovery code was invalid."
INVALID_RESET_TOKEN = "This password reset token is invalid."
INCORRECT_PASSWORD = "The provided password was incorrect."


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def verification_url(request: Request, user: User) -> str:
    """Build a signed, expiring link that verifies ``user``'s current email."""

    digest = email_hash(user.email)
    signature = request.app.state.signer.sign([user.id, digest], salt=VERIFY_EMAIL_SALT)
    url = request.url_for("verification.verify", id=str(user.id), hash=digest)
    return f"{url}?{urlencode({'signature': signature})}"


def send_verification_notification(request: Request, user: User, background_tasks: BackgroundTasks) -> None:
    """Queue the verification link to be mailed once the response is sent."""

    settings = request.app.state.settings
    message = verification_message(
        settings.app_name,
        user.email,
        verification_url(request, user),
        settings.verification_expire,
    )
    background_tasks.add_task(deliver, request.app.state.mailer, message)
    logger.info("Queued email verification link for user %s", user.id)


def register_auth_routes(app: FastAPI) -> None:
    """Expose the authentication pages and actions on ``app``."""

    router = APIRouter(include_in_schema=False)

    def _inertia(request: Request):
        return request.app.state.inertia

    def _settings(request: Request):
        return request.app.state.settings

    def _database(request: Request):
        return request.app.state.database

    def _limiter(request: Request):
        return request.app.state.limiter

    def _require_registration(request: Request) -> None:
        if not _settings(request).registration_enabled:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    @router.get("/register", name="register", dependencies=[Depends(require_guest)])
    async def show_register(request: Request):
        _require_registration(request)
        return _inertia(request).render(request, "auth/register")

    @router.post("/register", name="register.store", dependencies=[Depends(require_guest)])
    async def register(request: Request, background_tasks: BackgroundTasks):
        _require_registration(request)
        data = await read_input(request)
        back = str(request.url_for("register"))
        form, errors = validate_form(
            RegisterForm,
            data,
            password_min_length=_settings(request).password_min_length,
        )
        if form is None:
            raise FormValidationError(errors, redirect_to=back, old_input=data)

        try:
            user = _database(request).create_user(form.name, form.email, form.password)
        except ValueError as exc:
            raise FormValidationError({"email": str(exc)}, redirect_to=back, old_input=data) from exc

        logger.info("Registered user %s", user.id)
        send_verification_notification(request, user, background_tasks)
        login(request, user)
        return redirect(request.url_for("dashboard"))

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------
    @router.get("/login", name="login", dependencies=[Depends(require_guest)])
    async def show_login(request: Request):
        return _inertia(request).render(
            request,
            "auth/login",
            {
                "canResetPassword": True,
                "canRegister": _settings(request).registration_enabled,
            },
        )

    @router.post("/login", name="login.store", dependencies=[Depends(require_guest)])
    async def process_login(request: Request):
        data = await read_input(request)
        back = str(request.url_for("login"))
        form, errors = validate_form(LoginForm, data)
        if form is None:
            raise FormValidationError(errors, redirect_to=back, old_input=data)

        limiter = _limiter(request)
        throttle_key = f"login|{form.email.lower()}|{_client_ip(request)}"
        if limiter.too_many_attempts(throttle_key, LOGIN_MAX_ATTEMPTS):
            seconds = limiter.available_in(throttle_key)
            logger.warning("Login locked out for %s from %s", form.email, _client_ip(request))
            raise FormValidationError(
                {"email": f"Too many login attempts. Please try again in {seconds} seconds."},
                redirect_to=back,
                old_input=data,
            )

        user = _database(request).authenticate_user(form.email, form.password)
        if user is None:
            limiter.hit(throttle_key, decay_seconds=60)
            logger.warning("Failed login attempt for %s", form.email)
            raise FormValidationError({"email": INVALID_CREDENTIALS}, redirect_to=back, old_input=data)

        limiter.clear(throttle_key)

        if user.two_factor_enabled:
            request.session[SESSION_LOGIN_ID_KEY] = user.id
            request.session[SESSION_LOGIN_REMEMBER_KEY] = form.remember
            logger.info("User %s passed password check; awaiting two-factor challenge", user.id)
            return redirect(request.url_for("two-factor.login"))

        remember_cookie = login(request, user, remember=form.remember)
        logger.info("User %s signed in", user.id)
        response = redirect(pop_intended_url(request, str(request.url_for("dashboard"))))
        attach_remember_cookie(request, response, remember_cookie)
        return response

    @router.post("/logout", name="logout")
    async def process_logout(request: Request):
        user = current_user(request)
        response = redirect(request.url_for("home"))
        logout(request, response)
        if user is not None:
            logger.info("User %s signed out", user.id)
        return response

    # ------------------------------------------------------------------
    # Two-factor challenge
    # ------------------------------------------------------------------
    def _challenged_user(request: Request) -> User | None:
        login_id = request.session.get(SESSION_LOGIN_ID_KEY)
        if not login_id:
            return None
        try:
            return _database(request).get_user(int(login_id))
        except (TypeError, ValueError):
            return None

    @router.get("/two-factor-challenge", name="two-factor.login", dependencies=[Depends(require_guest)])
    async def show_two_factor_challenge(request: Request):
        if _challenged_user(request) is None:
            return redirect(request.url_for("login"))
        return _inertia(request).render(request, "auth/two-factor-challenge")

    @router.post("/two-factor-challenge", name="two-factor.login.store", dependencies=[Depends(require_guest)])
    async def process_two_factor_challenge(request: Request):
        user = _challenged_user(request)
        if user is None:
            request.session.pop(SESSION_LOGIN_ID_KEY, None)
            return redirect(request.url_for("login"))

        limiter = _limiter(request)
        throttle_key = f"two-factor|{user.id}"
        if limiter.too_many_attempts(throttle_key, TWO_FACTOR_MAX_ATTEMPTS):
            raise TooManyAttempts(limiter.available_in(throttle_key))

        data = await read_input(request)
        back = str(request.url_for("two-factor.login"))
        form, errors = validate_form(TwoFactorChallengeForm, data)
        if form is None:
            raise FormValidationError(errors, redirect_to=back)

        database = _database(request)
        provider = request.app.state.two_factor

        if form.recovery_code:
            replacement = generate_recovery_code()
            if not database.replace_recovery_code(user.id, form.recovery_code, replacement):
                limiter.hit(throttle_key, decay_seconds=60)
                logger.warning("Invalid recovery code submitted for user %s", user.id)
                raise FormValidationError({"recovery_code": INVALID_RECOVERY_CODE}, redirect_to=back)
            logger.info("User %s signed in with a recovery code", user.id)
        else:
            secret = database.get_two_factor_secret(user.id)
            if not form.code or not secret or not provider.verify(secret, form.code, user_id=user.id):
                limiter.hit(throttle_key, decay_seconds=60)
                logger.warning("Invalid two-factor code submitted for user %s", user.id)
                raise FormValidationError({"code": INVALID_TWO_FACTOR_CODE}, redirect_to=back)

        limiter.clear(throttle_key)
        remember = bool(request.session.get(SESSION_LOGIN_REMEMBER_KEY))
        remember_cookie = login(request, user, remember=remember)
        logger.info("User %s completed two-factor challenge", user.id)
        response = redirect(pop_intended_url(request, str(request.url_for("dashboard"))))
        attach_remember_cookie(request, response, remember_cookie)
        return response

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------
    @router.get("/forgot-password", name="password.request", dependencies=[Depends(require_guest)])
    async def show_forgot_password(request: Request):
        return _inertia(request).render(request, "auth/forgot-password")

    @router.post("/forgot-password", name="password.email", dependencies=[Depends(require_guest)])
    async def send_reset_link(request: Request, background_tasks: BackgroundTasks):
        data = await read_input(request)
        back = str(request.url_for("password.request"))
        form, errors = validate_form(ForgotPasswordForm, data)
        if form is None:
            raise FormValidationError(errors, redirect_to=back, old_input=data)

        settings = _settings(request)
        database = _database(request)
        user = database.get_user_by_email(form.email)
        if user is None:
            logger.info("Password reset requested for unknown address %s", form.email)
        elif database.recently_issued_reset_token(user.email, settings.reset_throttle):
            logger.info("Password reset for user %s throttled", user.id)
        else:
            token = database.create_password_reset_token(user.email)
            url = request.url_for("password.reset", token=token)
            link = f"{url}?{urlencode({'email': user.email})}"
            message = password_reset_message(settings.app_name, user.email, link, settings.reset_expire)
            background_tasks.add_task(deliver, request.app.state.mailer, message)
            logger.info("Queued password reset link for user %s", user.id)

        flash_status(request, RESET_LINK_SENT)
        return redirect(back)

    @router.get("/reset-password/{token}", name="password.reset", dependencies=[Depends(require_guest)])
    async def show_reset_password(request: Request, token: str):
        return _inertia(request).render(
            request,
            "auth/reset-password",
            {"email": request.query_params.get("email", ""), "token": token},
        )

    @router.post("/reset-password", name="password.store", dependencies=[Depends(require_guest)])
    async def reset_password(request: Request):
        data = await read_input(request)
        token = str(data.get("token") or "")
        if token:
            back = f"{request.url_for('password.reset', token=token)}?{urlencode({'email': data.get('email', '')})}"
        else:
            back = str(request.url_for("password.request"))

        settings = _settings(request)
        form, errors = validate_form(
            ResetPasswordForm,
            data,
            password_min_length=settings.password_min_length,
        )
        if form is None:
            raise FormValidationError(errors, redirect_to=back, old_input=data)

        database = _database(request)
        user = database.get_user_by_email(form.email)
        if user is None or not database.verify_password_reset_token(
            form.email, form.token, expire_minutes=settings.reset_expire
        ):
            logger.warning("Rejected password reset for %s", form.email)
            raise FormValidationError({"email": INVALID_RESET_TOKEN}, redirect_to=back, old_input=data)

        database.set_user_password(user.id, form.password)
        database.clear_remember_token(user.id)
        database.delete_password_reset_token(user.email)
        logger.info("Password reset completed for user %s", user.id)

        flash_status(request, PASSWORD_RESET_DONE)
        return redirect(request.url_for("login"))

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------
    @router.get("/verify-email", name="verification.notice")
    async def show_verification_notice(request: Request, user: User = Depends(require_user)):
        if user.has_verified_email:
            return redirect(request.url_for("dashboard"))
        return _inertia(request).render(request, "auth/verify-email")

    @router.get("/verify-email/{id}/{hash}", name="verification.verify")
    async def verify_email(request: Request, id: int, hash: str, user: User = Depends(require_user)):
        signature = request.query_params.get("signature", "")
        payload, expired = request.app.state.signer.unsign(
            signature,
            salt=VERIFY_EMAIL_SALT,
            max_age=_settings(request).verification_expire * 60,
        )
        if payload != [id, hash]:
            detail = "Link expired." if expired else "Invalid signature."
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        if id != user.id or hash != email_hash(user.email):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This action is unauthorized.")

        if _database(request).mark_email_verified(user.id):
            logger.info("User %s verified their email address", user.id)
        return redirect(f"{request.url_for('dashboard')}?verified=1")

    @router.post("/email/verification-notification", name="verification.send")
    async def resend_verification(
        request: Request, background_tasks: BackgroundTasks, user: User = Depends(require_user)
    ):
        limiter = _limiter(request)
        throttle_key = f"verification|{user.id}"
        if limiter.too_many_attempts(throttle_key, VERIFICATION_MAX_ATTEMPTS):
            raise TooManyAttempts(limiter.available_in(throttle_key))
        limiter.hit(throttle_key, decay_seconds=60)

        if user.has_verified_email:
            return redirect(request.url_for("dashboard"))

        send_verification_notification(request, user, background_tasks)
        flash_status(request, VERIFICATION_LINK_SENT)
        return redirect(previous_url(request, str(request.url_for("verification.notice"))))

    # ------------------------------------------------------------------
    # Password confirmation
    # ------------------------------------------------------------------
    @router.get("/user/confirm-password", name="password.confirm", dependencies=[Depends(require_user)])
    async def show_confirm_password(request: Request):
        return _inertia(request).render(request, "auth/confirm-password")

    @router.post("/user/confirm-password", name="password.confirm.store")
    async def confirm_password(request: Request, user: User = Depends(require_user)):
        data = await read_input(request)
        back = str(request.url_for("password.confirm"))
        form, errors = validate_form(CurrentPasswordForm, data)
        if form is None:
            raise FormValidationError(errors, redirect_to=back)
        if not _database(request).verify_user_password(user.id, form.password):
            logger.warning("Password confirmation failed for user %s", user.id)
            raise FormValidationError({"password": INCORRECT_PASSWORD}, redirect_to=back)

        mark_password_confirmed(request)
        if wants_json(request):
            return JSONResponse({}, status_code=status.HTTP_201_CREATED)
        return redirect(pop_intended_url(request, str(request.url_for("dashboard"))))

    app.include_router(router)


__all__ = ["register_auth_routes", "send_verification_notification", "verification_url"]
