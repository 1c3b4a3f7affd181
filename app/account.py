"""Settings pages: profile, password, appearance and two-factor authentication."""
from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from .exceptions import FormValidationError, TooManyAttempts
from .guards import logout, require_password_confirmation, require_user
from .http import flash_status, previous_url, read_input, redirect, wants_json
from .models import User
from .two_factor import generate_recovery_codes
from .validation import (
    AppearanceForm,
    CurrentPasswordForm,
    PasswordUpdateForm,
    ProfileForm,
    TwoFactorCodeForm,
    validate_form,
)

logger = logging.getLogger("starter.settings")

APPEARANCE_COOKIE_NAME = "appearance"
APPEARANCE_COOKIE_MAX_AGE = 60 * 60 * 24 * 365
PASSWORD_UPDATE_MAX_ATTEMPTS = 6

INCORRECT_PASSWORD = "The password is incorrect."
INVALID_TWO_FACTOR_CODE = "The provided two factor authentication code was invalid."
TWO_FACTOR_NOT_ENABLED = "Two factor authentication has not been enabled."


def register_account_routes(app: FastAPI) -> None:
    """Expose the settings area and the two-factor management endpoints."""

    router = APIRouter(include_in_schema=False)

    def _inertia(request: Request):
        return request.app.state.inertia

    def _database(request: Request):
        return request.app.state.database

    def _back(request: Request, route_name: str) -> str:
        return previous_url(request, str(request.url_for(route_name)))

    def _done(request: Request, route_name: str, message: str):
        """Finish a two-factor action with a status flash or an empty JSON body."""

        if wants_json(request):
            return JSONResponse({}, status_code=status.HTTP_200_OK)
        flash_status(request, message)
        return redirect(_back(request, route_name))

    @router.get("/settings", name="settings")
    async def settings_index(request: Request, user: User = Depends(require_user)):
        return redirect(request.url_for("profile.edit"))

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------
    @router.get("/settings/profile", name="profile.edit")
    async def edit_profile(request: Request, user: User = Depends(require_user)):
        return _inertia(request).render(
            request,
            "settings/profile",
            {"mustVerifyEmail": True},
        )

    @router.patch("/settings/profile", name="profile.update")
    async def update_profile(request: Request, user: User = Depends(require_user)):
        data = await read_input(request)
        back = str(request.url_for("profile.edit"))
        form, errors = validate_form(ProfileForm, data)
        if form is None:
            raise FormValidationError(errors, redirect_to=back, old_input=data)

        try:
            updated = _database(request).update_user_profile(user.id, name=form.name, email=form.email)
        except ValueError as exc:
            raise FormValidationError({"email": str(exc)}, redirect_to=back, old_input=data) from exc

        if updated.email != user.email:
            logger.info("User %s changed their email address; verification reset", user.id)
        flash_status(request, "profile-updated")
        return redirect(back)

    @router.delete("/settings/profile", name="profile.destroy")
    async def destroy_profile(request: Request, user: User = Depends(require_user)):
        data = await read_input(request)
        back = str(request.url_for("profile.edit"))
        form, errors = validate_form(CurrentPasswordForm, data)
        if form is None:
            raise FormValidationError(errors, redirect_to=back)

        database = _database(request)
        if not database.verify_user_password(user.id, form.password):
            raise FormValidationError({"password": INCORRECT_PASSWORD}, redirect_to=back)

        response = redirect(request.url_for("home"))
        logout(request, response)
        database.delete_user(user.id)
        request.app.state.two_factor.forget(user.id)
        logger.info("User %s deleted their account", user.id)
        return response

    # ------------------------------------------------------------------
    # Password
    # ------------------------------------------------------------------
    @router.get("/settings/password", name="password.edit")
    async def edit_password(request: Request, user: User = Depends(require_user)):
        return _inertia(request).render(request, "settings/password")

    @router.put("/settings/password", name="password.update")
    async def update_password(request: Request, user: User = Depends(require_user)):
        limiter = request.app.state.limiter
        throttle_key = f"password-update|{user.id}"
        if limiter.too_many_attempts(throttle_key, PASSWORD_UPDATE_MAX_ATTEMPTS):
            raise TooManyAttempts(limiter.available_in(throttle_key))
        limiter.hit(throttle_key, decay_seconds=60)

        data = await read_input(request)
        back = str(request.url_for("password.edit"))
        form, errors = validate_form(
            PasswordUpdateForm,
            data,
            password_min_length=request.app.state.settings.password_min_length,
        )
        if form is None:
            raise FormValidationError(errors, redirect_to=back)

        database = _database(request)
        if not database.verify_user_password(user.id, form.current_password):
            raise FormValidationError({"current_password": INCORRECT_PASSWORD}, redirect_to=back)

        database.set_user_password(user.id, form.password)
        logger.info("User %s changed their password", user.id)
        flash_status(request, "password-updated")
        return redirect(back)

    # ------------------------------------------------------------------
    # Appearance
    # ------------------------------------------------------------------
    @router.get("/settings/appearance", name="appearance.edit")
    async def edit_appearance(request: Request, user: User = Depends(require_user)):
        return _inertia(request).render(request, "settings/appearance")

    @router.post("/settings/appearance", name="appearance.update")
    async def update_appearance(request: Request, user: User = Depends(require_user)):
        data = await read_input(request)
        back = str(request.url_for("appearance.edit"))
        form, errors = validate_form(AppearanceForm, data)
        if form is None:
            raise FormValidationError(errors, redirect_to=back)

        response = redirect(back)
        response.set_cookie(
            APPEARANCE_COOKIE_NAME,
            form.appearance,
            max_age=APPEARANCE_COOKIE_MAX_AGE,
            samesite="lax",
            path="/",
        )
        return response

    # ------------------------------------------------------------------
    # Two-factor authentication
    # ------------------------------------------------------------------
    @router.get("/settings/two-factor", name="two-factor.show")
    async def show_two_factor(request: Request, user: User = Depends(require_password_confirmation)):
        database = _database(request)
        provider = request.app.state.two_factor
        props: Dict[str, object] = {
            "twoFactorEnabled": user.two_factor_enabled,
            "requiresConfirmation": True,
        }
        if user.has_two_factor_secret:
            secret = database.get_two_factor_secret(user.id)
            if not user.two_factor_enabled and secret:
                props["qrCodeSvg"] = lambda: provider.qr_code_svg(secret, user.email)[0]
                props["manualSetupKey"] = secret
            props["recoveryCodes"] = lambda: database.get_recovery_codes(user.id)
        return _inertia(request).render(request, "settings/two-factor", props)

    @router.post("/user/two-factor-authentication", name="two-factor.enable")
    async def enable_two_factor(request: Request, user: User = Depends(require_password_confirmation)):
        data = await read_input(request)
        force = str(data.get("force", "")).lower() in {"1", "true", "on", "yes"}
        if not user.has_two_factor_secret or force:
            provider = request.app.state.two_factor
            _database(request).enable_two_factor(
                user.id,
                provider.generate_secret(),
                generate_recovery_codes(),
            )
            provider.forget(user.id)
            logger.info("User %s started two-factor enrolment", user.id)
        return _done(request, "two-factor.show", "two-factor-authentication-enabled")

    @router.delete("/user/two-factor-authentication", name="two-factor.disable")
    async def disable_two_factor(request: Request, user: User = Depends(require_password_confirmation)):
        _database(request).disable_two_factor(user.id)
        request.app.state.two_factor.forget(user.id)
        logger.info("User %s disabled two-factor authentication", user.id)
        return _done(request, "two-factor.show", "two-factor-authentication-disabled")

    @router.post("/user/confirmed-two-factor-authentication", name="two-factor.confirm")
    async def confirm_two_factor(request: Request, user: User = Depends(require_password_confirmation)):
        data = await read_input(request)
        back = _back(request, "two-factor.show")
        form, errors = validate_form(TwoFactorCodeForm, data)
        if form is None:
            raise FormValidationError(errors, redirect_to=back)

        database = _database(request)
        secret = database.get_two_factor_secret(user.id)
        provider = request.app.state.two_factor
        if not secret or not provider.verify(secret, form.code, user_id=user.id):
            logger.warning("Two-factor confirmation failed for user %s", user.id)
            raise FormValidationError({"code": INVALID_TWO_FACTOR_CODE}, redirect_to=back)

        database.confirm_two_factor(user.id)
        logger.info("User %s confirmed two-factor authentication", user.id)
        return _done(request, "two-factor.show", "two-factor-authentication-confirmed")

    @router.get("/user/two-factor-qr-code", name="two-factor.qr-code")
    async def two_factor_qr_code(request: Request, user: User = Depends(require_password_confirmation)):
        secret = _database(request).get_two_factor_secret(user.id)
        if not secret:
            return JSONResponse([])
        svg, url = request.app.state.two_factor.qr_code_svg(secret, user.email)
        return JSONResponse({"svg": svg, "url": url})

    @router.get("/user/two-factor-secret-key", name="two-factor.secret-key")
    async def two_factor_secret_key(request: Request, user: User = Depends(require_password_confirmation)):
        secret = _database(request).get_two_factor_secret(user.id)
        if not secret:
            return JSONResponse({"message": TWO_FACTOR_NOT_ENABLED}, status_code=status.HTTP_404_NOT_FOUND)
        return JSONResponse({"secretKey": secret})

    @router.get("/user/two-factor-recovery-codes", name="two-factor.recovery-codes")
    async def two_factor_recovery_codes(request: Request, user: User = Depends(require_password_confirmation)):
        return JSONResponse(_database(request).get_recovery_codes(user.id))

    @router.post("/user/two-factor-recovery-codes", name="two-factor.regenerate-recovery-codes")
    async def regenerate_recovery_codes(request: Request, user: User = Depends(require_password_confirmation)):
        try:
            _database(request).set_recovery_codes(user.id, generate_recovery_codes())
        except ValueError as exc:
            raise FormValidationError(
                {"two_factor": TWO_FACTOR_NOT_ENABLED},
                redirect_to=_back(request, "two-factor.show"),
            ) from exc
        logger.info("User %s regenerated recovery codes", user.id)
        return _done(request, "two-factor.show", "recovery-codes-generated")

    app.include_router(router)


__all__ = ["APPEARANCE_COOKIE_NAME", "register_account_routes"]
