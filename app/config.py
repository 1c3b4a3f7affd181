"""Configuration management for the starter kit application."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def _env_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class MailSettings:
    """Outgoing mail transport configuration."""

    mailer: str = "log"
    host: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: str = "hello@example.com"
    from_name: str = "Starter Kit"
    use_tls: bool = True


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the web application."""

    app_name: str = "Starter Kit"
    app_url: str = "http://localhost:8000"
    session_secret: Optional[str] = None
    database_path: Optional[Path] = None
    password_min_length: int = 8
    password_timeout: int = 10800
    verification_expire: int = 60
    reset_expire: int = 60
    reset_throttle: int = 60
    registration_enabled: bool = True
    secure_cookies: bool = False
    trusted_proxies: List[str] = field(default_factory=list)
    asset_version: str = "1"
    two_factor_issuer: Optional[str] = None
    mail: MailSettings = field(default_factory=MailSettings)

    @property
    def issuer(self) -> str:
        return self.two_factor_issuer or self.app_name

    @staticmethod
    def from_dict(data: Mapping[str, object], base: "Settings | None" = None) -> "Settings":
        """Overlay raw mapping data (usually parsed YAML) on top of ``base``."""

        base = base or Settings()
        known = {item.name for item in fields(Settings)}
        unknown = set(data.keys()) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        updates: Dict[str, object] = {}
        for key, value in data.items():
            if key == "mail":
                if not isinstance(value, Mapping):
                    raise ValueError("The 'mail' configuration section must be a mapping")
                mail_keys = {item.name for item in fields(MailSettings)}
                bad = set(value.keys()) - mail_keys
                if bad:
                    raise ValueError(f"Unknown mail configuration keys: {', '.join(sorted(bad))}")
                updates["mail"] = replace(base.mail, **dict(value))
            elif key == "database_path":
                updates[key] = Path(str(value)).expanduser().resolve(strict=False) if value else None
            elif key == "trusted_proxies":
                if isinstance(value, str):
                    updates[key] = _env_list(value)
                else:
                    updates[key] = [str(item) for item in (value or [])]
            else:
                updates[key] = value
        return replace(base, **updates)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``STARTER_*`` environment variables.

        When ``STARTER_CONFIG`` points at a YAML file its values are applied
        first and the environment overrides them.
        """

        env = os.environ if environ is None else environ
        settings = cls()

        config_path = env.get("STARTER_CONFIG")
        if config_path:
            settings = load_settings_file(Path(config_path).expanduser(), base=settings)

        mail = settings.mail
        mail = replace(
            mail,
            mailer=env.get("STARTER_MAIL_MAILER", mail.mailer),
            host=env.get("STARTER_MAIL_HOST", mail.host),
            port=int(env.get("STARTER_MAIL_PORT", mail.port)),
            username=env.get("STARTER_MAIL_USERNAME", mail.username),
            password=env.get("STARTER_MAIL_PASSWORD", mail.password),
            from_address=env.get("STARTER_MAIL_FROM_ADDRESS", mail.from_address),
            from_name=env.get("STARTER_MAIL_FROM_NAME", mail.from_name),
            use_tls=_env_flag(env.get("STARTER_MAIL_TLS"), mail.use_tls),
        )

        database_path = settings.database_path
        if env.get("STARTER_DB_PATH"):
            database_path = Path(env["STARTER_DB_PATH"]).expanduser().resolve(strict=False)

        trusted = settings.trusted_proxies
        if env.get("STARTER_TRUSTED_PROXIES"):
            trusted = _env_list(env.get("STARTER_TRUSTED_PROXIES"))

        return replace(
            settings,
            app_name=env.get("STARTER_APP_NAME", settings.app_name),
            app_url=env.get("STARTER_APP_URL", settings.app_url).rstrip("/"),
            session_secret=env.get("STARTER_SESSION_SECRET", settings.session_secret),
            database_path=database_path,
            password_min_length=int(env.get("STARTER_PASSWORD_MIN_LENGTH", settings.password_min_length)),
            password_timeout=int(env.get("STARTER_PASSWORD_TIMEOUT", settings.password_timeout)),
            verification_expire=int(env.get("STARTER_VERIFICATION_EXPIRE", settings.verification_expire)),
            reset_expire=int(env.get("STARTER_RESET_EXPIRE", settings.reset_expire)),
            reset_throttle=int(env.get("STARTER_RESET_THROTTLE", settings.reset_throttle)),
            registration_enabled=_env_flag(
                env.get("STARTER_REGISTRATION_ENABLED"), settings.registration_enabled
            ),
            secure_cookies=_env_flag(env.get("STARTER_SESSION_SECURE"), settings.secure_cookies),
            trusted_proxies=trusted,
            asset_version=env.get("STARTER_ASSET_VERSION", settings.asset_version),
            two_factor_issuer=env.get("STARTER_TWO_FACTOR_ISSUER", settings.two_factor_issuer),
            mail=mail,
        )


def load_settings_file(config_path: Path, base: Settings | None = None) -> Settings:
    """Load settings overrides from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, Mapping):
        raise ValueError("Configuration file must contain a mapping at the top level")

    return Settings.from_dict(raw, base=base)


__all__ = ["MailSettings", "Settings", "load_settings_file"]
