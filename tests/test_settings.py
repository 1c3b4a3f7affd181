from __future__ import annotations

from fastapi.testclient import TestClient

from app.database import Database
from app.models import User

from conftest import EMAIL, PASSWORD


def test_settings_index_redirects_to_profile(client: TestClient, user: User, sign_in) -> None:
    sign_in()
    response = client.get("/settings", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].endswith("/settings/profile")


def test_settings_require_authentication(client: TestClient) -> None:
    for url in ("/settings/profile", "/settings/password", "/settings/appearance", "/settings/two-factor"):
        response = client.get(url, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"].endswith("/login")


# ----------------------------------------------------------------------
# Profile
# ----------------------------------------------------------------------
def test_profile_page_props(client: TestClient, user: User, sign_in, inertia_get) -> None:
    sign_in()
    page = inertia_get("/settings/profile")

    assert page["component"] == "settings/profile"
    assert page["props"]["mustVerifyEmail"] is True
    assert page["props"]["auth"]["user"]["email"] == EMAIL


def test_profile_update_through_method_override(
    client: TestClient, user: User, sign_in, database: Database, inertia_get
) -> None:
    sign_in()
    response = client.post(
        "/settings/profile",
        data={"_method": "PATCH", "name": "Renamed User", "email": EMAIL},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"].endswith("/settings/profile")
    refreshed = database.get_user(user.id)
    assert refreshed.name == "Renamed User"
    assert refreshed.has_verified_email
    assert inertia_get("/settings/profile")["props"]["status"] == "profile-updated"


def test_profile_page_shows_saved_once_without_status_slug(client: TestClient, user: User, sign_in) -> None:
    sign_in()
    client.patch("/settings/profile", data={"name": "Renamed User", "email": EMAIL}, follow_redirects=False)

    body = client.get("/settings/profile").text
    assert body.count("Saved.") == 1
    assert 'role="status"' not in body


def test_changing_email_resets_verification(client: TestClient, user: User, sign_in, database: Database) -> None:
    sign_in()
    response = client.patch(
        "/settings/profile",
        data={"name": user.name, "email": "moved@example.com"},
        follow_redirects=False,
    )

    assert response.status_code == 303
    refreshed = database.get_user(user.id)
    assert refreshed.email == "moved@example.com"
    assert not refreshed.has_verified_email
    assert client.get("/dashboard", follow_redirects=False).headers["location"].endswith("/verify-email")


def test_profile_update_rejects_taken_email(
    client: TestClient, user: User, sign_in, database: Database, inertia_get
) -> None:
    database.create_user("Someone Else", "taken@example.com", PASSWORD)
    sign_in()
    client.patch(
        "/settings/profile",
        data={"name": user.name, "email": "taken@example.com"},
        follow_redirects=False,
    )

    props = inertia_get("/settings/profile")["props"]
    assert props["errors"] == {"email": "The email has already been taken."}
    assert props["old"]["email"] == "taken@example.com"
    assert database.get_user(user.id).email == EMAIL


def test_profile_update_json_errors(client: TestClient, user: User, sign_in) -> None:
    sign_in()
    response = client.patch(
        "/settings/profile",
        json={"name": "", "email": "bad"},
        headers={"Accept": "application/json"},
    )

    assert response.status_code == 422
    assert response.json()["errors"] == {
        "name": ["The name field is required."],
        "email": ["The email field must be a valid email address."],
    }


def test_account_deletion_requires_correct_password(
    client: TestClient, user: User, sign_in, database: Database, inertia_get
) -> None:
    sign_in()
    response = client.post(
        "/settings/profile",
        data={"_method": "DELETE", "password": "wrong-password"},
        follow_redirects=False,
    )

    assert response.headers["location"].endswith("/settings/profile")
    assert inertia_get("/settings/profile")["props"]["errors"] == {"password": "The password is incorrect."}
    assert database.get_user(user.id) is not None


def test_account_can_be_deleted(client: TestClient, user: User, sign_in, database: Database) -> None:
    sign_in(remember="on")
    response = client.post(
        "/settings/profile",
        data={"_method": "DELETE", "password": PASSWORD},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"] == "http://testserver/"
    assert database.get_user(user.id) is None
    assert client.get("/dashboard", follow_redirects=False).headers["location"].endswith("/login")


# ----------------------------------------------------------------------
# Password
# ----------------------------------------------------------------------
def test_password_update(client: TestClient, user: User, sign_in, database: Database, inertia_get) -> None:
    sign_in()
    response = client.put(
        "/settings/password",
        data={
            "current_password": PASSWORD,
            "password": "another-password",
            "password_confirmation": "another-password",
        },
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"].endswith("/settings/password")
    assert database.verify_user_password(user.id, "another-password")
    assert inertia_get("/settings/password")["props"]["status"] == "password-updated"


def test_password_update_requires_current_password(
    client: TestClient, user: User, sign_in, database: Database, inertia_get
) -> None:
    sign_in()
    client.put(
        "/settings/password",
        data={
            "current_password": "not-my-password",
            "password": "another-password",
            "password_confirmation": "another-password",
        },
        follow_redirects=False,
    )

    assert inertia_get("/settings/password")["props"]["errors"] == {
        "current_password": "The password is incorrect."
    }
    assert database.verify_user_password(user.id, PASSWORD)


def test_password_update_is_throttled(client: TestClient, user: User, sign_in) -> None:
    sign_in()
    data = {"current_password": "wrong", "password": "another-password", "password_confirmation": "another-password"}
    for _ in range(6):
        assert client.put("/settings/password", data=data, follow_redirects=False).status_code == 303

    response = client.put("/settings/password", data=data, follow_redirects=False)
    assert response.status_code == 429


# ----------------------------------------------------------------------
# Appearance
# ----------------------------------------------------------------------
def test_appearance_is_stored_in_a_cookie(client: TestClient, user: User, sign_in, inertia_get) -> None:
    sign_in()
    assert inertia_get("/settings/appearance")["props"]["appearance"] == "system"

    response = client.post("/settings/appearance", data={"appearance": "dark"}, follow_redirects=False)

    assert response.status_code == 303
    assert response.cookies["appearance"] == "dark"
    assert inertia_get("/settings/appearance")["props"]["appearance"] == "dark"


def test_unknown_appearance_is_rejected(client: TestClient, user: User, sign_in, inertia_get) -> None:
    sign_in()
    response = client.post("/settings/appearance", data={"appearance": "neon"}, follow_redirects=False)

    assert "appearance" not in response.cookies
    assert inertia_get("/settings/appearance")["props"]["errors"] == {
        "appearance": "The selected appearance is invalid."
    }
