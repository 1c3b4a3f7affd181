"""Form validation rules shared between authentication and settings handlers."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Dict, Literal, Mapping, Optional, Tuple, Type, TypeVar

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

DEFAULT_PASSWORD_MIN_LENGTH = 8
MAX_STRING_LENGTH = 255

NameField = Annotated[str, Field(min_length=1, max_length=MAX_STRING_LENGTH)]
EmailField = Annotated[str, Field(min_length=1, max_length=MAX_STRING_LENGTH)]
PasswordField = Annotated[str, Field(min_length=1)]


def _label(field: str) -> str:
    return field.replace("_", " ")


def _check_email(value: str) -> str:
    try:
        result = validate_email(value, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError("The email field must be a valid email address.") from exc
    return result.normalized.lower()


def _check_password(value: str, info: ValidationInfo) -> str:
    context = info.context or {}
    minimum = int(context.get("password_min_length", DEFAULT_PASSWORD_MIN_LENGTH))
    if len(value) < minimum:
        raise ValueError(f"The password field must be at least {minimum} characters.")
    return value


class FormModel(BaseModel):
    """Base class for submitted forms."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=False)

    # Errors raised on these fields are reported against another field.
    error_fields: ClassVar[Dict[str, str]] = {}


class _NameRules(FormModel):
    name: NameField

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class _EmailRules(FormModel):
    email: EmailField

    @field_validator("email", mode="before")
    @classmethod
    def _strip_email(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        return _check_email(value)


class _PasswordRules(FormModel):
    password: PasswordField
    password_confirmation: str = ""

    error_fields: ClassVar[Dict[str, str]] = {"password_confirmation": "password"}

    @field_validator("password")
    @classmethod
    def _password_strength(cls, value: str, info: ValidationInfo) -> str:
        return _check_password(value, info)

    @field_validator("password_confirmation")
    @classmethod
    def _password_confirmed(cls, value: str, info: ValidationInfo) -> str:
        password = info.data.get("password")
        if password is not None and value != password:
            raise ValueError("The password field confirmation does not match.")
        return value


class ProfileForm(_NameRules, _EmailRules):
    pass


class RegisterForm(_NameRules, _EmailRules, _PasswordRules):
    pass


class PasswordUpdateForm(_PasswordRules):
    current_password: PasswordField


class ResetPasswordForm(_EmailRules, _PasswordRules):
    token: Annotated[str, Field(min_length=1)]


class ForgotPasswordForm(_EmailRules):
    pass


class LoginForm(FormModel):
    email: EmailField
    password: PasswordField
    remember: bool = False

    @field_validator("email", mode="before")
    @classmethod
    def _strip_email(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("remember", mode="before")
    @classmethod
    def _checkbox(cls, value: Any) -> Any:
        if value in (None, ""):
            return False
        return value


class CurrentPasswordForm(FormModel):
    password: PasswordField


class TwoFactorCodeForm(FormModel):
    code: Annotated[str, Field(min_length=1)]


class TwoFactorChallengeForm(FormModel):
    code: Optional[str] = None
    recovery_code: Optional[str] = None

    @field_validator("code", "recovery_code", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class AppearanceForm(FormModel):
    appearance: Literal["light", "dark", "system"]


def _message_for(error: Mapping[str, Any], field: str) -> str:
    kind = error.get("type")
    ctx = error.get("ctx") or {}
    label = _label(field)
    if kind == "missing":
        return f"The {label} field is required."
    if kind == "string_too_short":
        minimum = ctx.get("min_length", 1)
        if minimum <= 1:
            return f"The {label} field is required."
        return f"The {label} field must be at least {minimum} characters."
    if kind == "string_too_long":
        return f"The {label} field must not be greater than {ctx.get('max_length')} characters."
    if kind == "string_type":
        return f"The {label} field must be a string."
    if kind == "bool_parsing":
        return f"The {label} field must be true or false."
    if kind == "literal_error":
        return f"The selected {label} is invalid."
    if kind == "value_error" and "error" in ctx:
        return str(ctx["error"])
    return str(error.get("msg", f"The {label} field is invalid."))


FormT = TypeVar("FormT", bound=FormModel)


def validate_form(
    form_cls: Type[FormT],
    data: Mapping[str, Any],
    **context: Any,
) -> Tuple[Optional[FormT], Dict[str, str]]:
    """Validate ``data`` and return ``(form, {})`` or ``(None, errors)``.

    ``errors`` maps a field name to the first message reported for it.
    """

    try:
        return form_cls.model_validate(dict(data), context=context), {}
    except ValidationError as exc:
        errors: Dict[str, str] = {}
        for error in exc.errors():
            loc = error.get("loc") or ("form",)
            field = str(loc[0])
            field = form_cls.error_fields.get(field, field)
            errors.setdefault(field, _message_for(error, field))
        return None, errors


__all__ = [
    "AppearanceForm",
    "CurrentPasswordForm",
    "DEFAULT_PASSWORD_MIN_LENGTH",
    "ForgotPasswordForm",
    "FormModel",
    "LoginForm",
    "PasswordUpdateForm",
    "ProfileForm",
    "RegisterForm",
    "ResetPasswordForm",
    "TwoFactorChallengeForm",
    "TwoFactorCodeForm",
    "validate_form",
]
