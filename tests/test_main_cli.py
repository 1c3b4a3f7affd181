from __future__ import annotations

from pathlib import Path

import pytest

import main
from main import _parse_args
from app.database import Database


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "0.0.0.0", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "0.0.0.0"
    assert args.port == 8080
    assert args.reload is False


def test_create_user_arguments() -> None:
    args = _parse_args(["create-user", "Ada Lovelace", "ada@example.com", "--verified"])
    assert args.command == "create-user"
    assert args.name == "Ada Lovelace"
    assert args.email == "ada@example.com"
    assert args.verified is True


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "cli.sqlite3"
    monkeypatch.setenv("STARTER_DB_PATH", str(db_path))
    monkeypatch.setenv("STARTER_SESSION_SECRET", "cli-secret")
    monkeypatch.delenv("STARTER_CONFIG", raising=False)
    return db_path


def test_init_db_creates_database(cli_env: Path) -> None:
    assert main.main(["init-db"]) == 0
    assert cli_env.exists()


def test_create_list_and_delete_user(
    cli_env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(main, "getpass", lambda prompt="": "password-123")

    assert main.main(["create-user", "Ada Lovelace", "Ada@Example.com", "--verified"]) == 0
    user = Database(cli_env, encryption_secret="cli-secret").get_user_by_email("ada@example.com")
    assert user is not None
    assert user.has_verified_email

    assert main.main(["list-users"]) == 0
    output = capsys.readouterr().out
    assert "ada@example.com" in output
    assert "1 user(s) found" in output

    assert main.main(["create-user", "Again", "ada@example.com"]) == 1
    assert "already been taken" in capsys.readouterr().err

    assert main.main(["delete-user", "ada@example.com"]) == 0
    assert main.main(["delete-user", "ada@example.com"]) == 1


def test_create_user_rejects_short_password(cli_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main, "getpass", lambda prompt="": "short")
    assert main.main(["create-user", "Short", "short@example.com"]) == 1
    assert Database(cli_env).list_users() == []


def test_init_db_fresh_drops_existing_data(cli_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main, "getpass", lambda prompt="": "password-123")
    assert main.main(["create-user", "Ada Lovelace", "ada@example.com"]) == 0

    args = _parse_args(["init-db", "--fresh"])
    assert args.fresh is True

    assert main.main(["init-db"]) == 0
    assert len(Database(cli_env).list_users()) == 1

    assert main.main(["init-db", "--fresh"]) == 0
    assert cli_env.exists()
    assert Database(cli_env).list_users() == []
