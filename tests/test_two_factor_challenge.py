from __future__ import annotations

import pyotp
import pytest
from fastapi.testclient import TestClient

from app.database import Database
from app.models import User
from app.two_factor import generate_recovery_codes

SECRET = "JBSWY3DPEHPK3PXP"


@pytest.fixture()
def two_factor_user(database: Database, user: User) -> User:
    database.enable_two_factor(user.id, SECRET, generate_recovery_codes())
    database.confirm_two_factor(user.id)
    return database.get_user(user.id)


def _challenge(client: TestClient, **data: str):
    return client.post("/two-factor-challenge", data=data, follow_redirects=False)


def test_login_redirects_to_challenge(client: TestClient, two_factor_user: User, sign_in) -> None:
    response = sign_in()

    assert response.status_code == 303
    assert response.headers["location"].endswith("/two-factor-challenge")
    assert client.get("/dashboard", follow_redirects=False).headers["location"].endswith("/login")
    assert client.get("/two-factor-challenge", follow_redirects=False).status_code == 200


def test_unconfirmed_two_factor_is_not_enforced(client: TestClient, user: User, database: Database, sign_in) -> None:
    database.enable_two_factor(user.id, SECRET, generate_recovery_codes())

    response = sign_in()
    assert response.headers["location"].endswith("/dashboard")


def test_valid_code_completes_login(client: TestClient, two_factor_user: User, sign_in) -> None:
    sign_in()
    response = _challenge(client, code=pyotp.TOTP(SECRET).now())

    assert response.status_code == 303
    assert response.headers["location"].endswith("/dashboard")
    assert client.get("/dashboard", follow_redirects=False).status_code == 200


def test_invalid_code_is_rejected(client: TestClient, two_factor_user: User, sign_in, inertia_get) -> None:
    sign_in()
    response = _challenge(client, code="000000")

    assert response.headers["location"].endswith("/two-factor-challenge")
    errors = inertia_get("/two-factor-challenge")["props"]["errors"]
    assert errors == {"code": "The provided two factor authentication code was invalid."}


def test_recovery_code_is_single_use(
    client: TestClient, two_factor_user: User, database: Database, sign_in, inertia_get
) -> None:
    code = database.get_recovery_codes(two_factor_user.id)[0]

    sign_in()
    response = _challenge(client, recovery_code=code)
    assert response.headers["location"].endswith("/dashboard")

    remaining = database.get_recovery_codes(two_factor_user.id)
    assert code not in remaining
    assert len(remaining) == 8

    client.post("/logout")
    sign_in()
    _challenge(client, recovery_code=code)
    errors = inertia_get("/two-factor-challenge")["props"]["errors"]
    assert errors == {"recovery_code": "The provided two factor recovery code was invalid."}


def test_challenge_without_pending_login_redirects(client: TestClient) -> None:
    assert client.get("/two-factor-challenge", follow_redirects=False).headers["location"].endswith("/login")
    assert _challenge(client, code="123456").headers["location"].endswith("/login")


def test_remember_me_survives_the_challenge(client: TestClient, two_factor_user: User, sign_in) -> None:
    first = sign_in(remember="on")
    assert "remember_web" not in first.cookies

    response = _challenge(client, code=pyotp.TOTP(SECRET).now())
    assert "remember_web" in response.cookies


def test_challenge_is_throttled(client: TestClient, two_factor_user: User, sign_in) -> None:
    sign_in()
    for _ in range(5):
        _challenge(client, code="000000")

    response = _challenge(client, code=pyotp.TOTP(SECRET).now())
    assert response.status_code == 429
