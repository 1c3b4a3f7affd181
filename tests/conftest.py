from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.application import create_application
from app.config import Settings
from app.database import Database
from app.mail import LogMailer
from app.models import User

SECRET = "tests-secret-key"
EMAIL = "test@example.com"
PASSWORD = "password-123"


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        app_name="Starter Kit",
        session_secret=SECRET,
        database_path=tmp_path / "starter.sqlite3",
        asset_version="test",
    )


@pytest.fixture()
def database(settings: Settings) -> Database:
    db = Database(settings.database_path, encryption_secret=SECRET)
    db.initialize()
    return db


@pytest.fixture()
def mailer(settings: Settings) -> LogMailer:
    return LogMailer(settings.mail)


@pytest.fixture()
def app(settings: Settings, database: Database, mailer: LogMailer):
    return create_application(settings, database=database, mailer=mailer)


@pytest.fixture()
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def user(database: Database) -> User:
    return database.create_user("Test User", EMAIL, PASSWORD, email_verified=True)


@pytest.fixture()
def unverified_user(database: Database) -> User:
    return database.create_user("Pending User", "pending@example.com", PASSWORD)


@pytest.fixture()
def sign_in(client: TestClient) -> Callable[..., object]:
    """Log ``email`` in through the login form and return the response."""

    def _sign_in(email: str = EMAIL, password: str = PASSWORD, **extra: str):
        return client.post(
            "/login",
            data={"email": email, "password": password, **extra},
            follow_redirects=False,
        )

    return _sign_in


@pytest.fixture()
def confirm_password(client: TestClient) -> Callable[..., object]:
    def _confirm(password: str = PASSWORD):
        response = client.post(
            "/user/confirm-password",
            data={"password": password},
            follow_redirects=False,
        )
        assert response.status_code == 303
        return response

    return _confirm


@pytest.fixture()
def inertia_get(client: TestClient) -> Callable[..., dict]:
    """Request a page the way the client-side router does and return the page object."""

    def _get(url: str, **headers: str) -> dict:
        response = client.get(
            url,
            headers={"X-Inertia": "true", "X-Inertia-Version": "test", **headers},
            follow_redirects=False,
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _get
