from __future__ import annotations

from pathlib import Path

import pytest

from app.config import Settings, load_settings_file


def test_defaults() -> None:
    settings = Settings()
    assert settings.password_min_length == 8
    assert settings.password_timeout == 10800
    assert settings.mail.mailer == "log"
    assert settings.issuer == "Starter Kit"


def test_from_env_reads_prefixed_variables(tmp_path: Path) -> None:
    settings = Settings.from_env(
        {
            "STARTER_APP_NAME": "Acme",
            "STARTER_APP_URL": "https://acme.test/",
            "STARTER_SESSION_SECRET": "s3cret",
            "STARTER_DB_PATH": str(tmp_path / "acme.sqlite3"),
            "STARTER_PASSWORD_MIN_LENGTH": "12",
            "STARTER_REGISTRATION_ENABLED": "false",
            "STARTER_SESSION_SECURE": "yes",
            "STARTER_TRUSTED_PROXIES": "10.0.0.1, 10.0.0.2",
            "STARTER_MAIL_MAILER": "smtp",
            "STARTER_MAIL_PORT": "2525",
        }
    )

    assert settings.app_name == "Acme"
    assert settings.app_url == "https://acme.test"
    assert settings.session_secret == "s3cret"
    assert settings.database_path == (tmp_path / "acme.sqlite3").resolve()
    assert settings.password_min_length == 12
    assert settings.registration_enabled is False
    assert settings.secure_cookies is True
    assert settings.trusted_proxies == ["10.0.0.1", "10.0.0.2"]
    assert settings.mail.mailer == "smtp"
    assert settings.mail.port == 2525
    assert settings.issuer == "Acme"


def test_yaml_file_is_overridden_by_environment(tmp_path: Path) -> None:
    config = tmp_path / "starter.yaml"
    config.write_text(
        "app_name: From File\n"
        "password_timeout: 600\n"
        "two_factor_issuer: Acme Security\n"
        "mail:\n"
        "  from_address: noreply@acme.test\n",
        encoding="utf-8",
    )

    settings = Settings.from_env({"STARTER_CONFIG": str(config), "STARTER_APP_NAME": "From Env"})

    assert settings.app_name == "From Env"
    assert settings.password_timeout == 600
    assert settings.issuer == "Acme Security"
    assert settings.mail.from_address == "noreply@acme.test"


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    config = tmp_path / "bad.yaml"
    config.write_text("not_a_setting: 1\n", encoding="utf-8")

    with pytest.raises(ValueError, match="not_a_setting"):
        load_settings_file(config)


def test_unknown_mail_keys_are_rejected() -> None:
    with pytest.raises(ValueError, match="smtp_host"):
        Settings.from_dict({"mail": {"smtp_host": "x"}})
