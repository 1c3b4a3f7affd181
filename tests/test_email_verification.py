from __future__ import annotations

from urllib.parse import urlsplit

from fastapi.testclient import TestClient

from app.database import Database
from app.models import User

from conftest import PASSWORD


def _path(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}"


def _sign_in_unverified(sign_in, unverified_user: User) -> None:
    response = sign_in(email=unverified_user.email, password=PASSWORD)
    assert response.status_code == 303


def test_unverified_users_are_sent_to_notice(client: TestClient, unverified_user: User, sign_in, inertia_get) -> None:
    _sign_in_unverified(sign_in, unverified_user)

    response = client.get("/dashboard", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].endswith("/verify-email")
    assert inertia_get("/verify-email")["component"] == "auth/verify-email"


def test_verified_users_skip_the_notice(client: TestClient, user: User, sign_in) -> None:
    sign_in()
    response = client.get("/verify-email", follow_redirects=False)
    assert response.headers["location"].endswith("/dashboard")


def test_verification_link_marks_email_verified(
    client: TestClient, unverified_user: User, sign_in, mailer, database: Database, inertia_get
) -> None:
    _sign_in_unverified(sign_in, unverified_user)

    response = client.post("/email/verification-notification", follow_redirects=False)
    assert response.status_code == 303
    assert inertia_get("/verify-email")["props"]["status"] == "verification-link-sent"

    (message,) = mailer.outbox
    assert message.subject == "Verify Email Address"
    assert f"/verify-email/{unverified_user.id}/" in message.action_url

    verified = client.get(_path(message.action_url), follow_redirects=False)
    assert verified.status_code == 303
    assert verified.headers["location"].endswith("/dashboard?verified=1")
    assert database.get_user(unverified_user.id).has_verified_email
    assert client.get("/dashboard", follow_redirects=False).status_code == 200


def test_tampered_verification_link_is_forbidden(
    client: TestClient, unverified_user: User, sign_in, mailer, database: Database
) -> None:
    _sign_in_unverified(sign_in, unverified_user)
    client.post("/email/verification-notification")
    link = _path(mailer.outbox[0].action_url)

    response = client.get(link.replace("signature=", "signature=x"), follow_redirects=False)
    assert response.status_code == 403
    assert not database.get_user(unverified_user.id).has_verified_email


def test_verification_link_is_bound_to_the_current_email(
    client: TestClient, unverified_user: User, sign_in, mailer, database: Database
) -> None:
    _sign_in_unverified(sign_in, unverified_user)
    client.post("/email/verification-notification")
    link = _path(mailer.outbox[0].action_url)

    database.update_user_profile(unverified_user.id, name=unverified_user.name, email="changed@example.com")

    response = client.get(link, follow_redirects=False)
    assert response.status_code == 403
    assert not database.get_user(unverified_user.id).has_verified_email


def test_verification_link_requires_login(client: TestClient, unverified_user: User, sign_in, mailer) -> None:
    _sign_in_unverified(sign_in, unverified_user)
    client.post("/email/verification-notification")
    link = _path(mailer.outbox[0].action_url)
    client.post("/logout")

    response = client.get(link, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].endswith("/login")


def test_resending_is_throttled(client: TestClient, unverified_user: User, sign_in, mailer) -> None:
    _sign_in_unverified(sign_in, unverified_user)

    for _ in range(6):
        assert client.post("/email/verification-notification", follow_redirects=False).status_code == 303

    response = client.post("/email/verification-notification", follow_redirects=False)
    assert response.status_code == 429
    assert int(response.headers["retry-after"]) > 0
    assert len(mailer.outbox) == 6
