from cadogy.core.security import verify_password
from cadogy.models.user import User
from tests.conftest import PASSWORD


def test_update_profile_settings(client, db, make_user, auth_headers):
    user = make_user(email="ann@example.com")
    user.image = "https://cdn.example.com/ann.png"
    db.commit()

    response = client.put("/api/settings/profile", json={"name": "Ann B"}, headers=auth_headers(user))
    assert response.json()["user"]["name"] == "Ann B"
    assert response.json()["user"]["image"] == "https://cdn.example.com/ann.png"

    response = client.put("/api/settings/profile", json={"image": None}, headers=auth_headers(user))
    assert response.json()["user"]["image"] is None


def test_profile_email_must_be_free(client, make_user, auth_headers):
    user = make_user(email="ann@example.com")
    make_user(email="bob@example.com")
    response = client.put("/api/settings/profile", json={"email": "bob@example.com"}, headers=auth_headers(user))
    assert response.status_code == 409


def test_user_profile_name_length(client, make_user, auth_headers):
    user = make_user()
    response = client.put("/api/user/profile", json={"name": " A "}, headers=auth_headers(user))
    assert response.status_code == 400
    assert response.json()["message"] == "Name must be at least 2 characters"

    response = client.put("/api/user/profile", json={"name": "Al"}, headers=auth_headers(user))
    assert response.json()["user"]["name"] == "Al"


def test_change_password(client, db, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)

    response = client.put(
        "/api/settings/password",
        json={"currentPassword": "Wrong1234", "newPassword": "Newpass123"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Current password is incorrect"

    response = client.put(
        "/api/settings/password",
        json={"currentPassword": PASSWORD, "newPassword": "short"},
        headers=headers,
    )
    assert response.status_code == 400

    response = client.put(
        "/api/settings/password",
        json={"currentPassword": PASSWORD, "newPassword": "Newpass123"},
        headers=headers,
    )
    assert response.status_code == 200
    db.expire_all()
    assert verify_password("Newpass123", db.get(User, user.id).hashed_password)


def test_notification_preferences(client, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)

    defaults = client.get("/api/settings/notifications", headers=headers).json()["preferences"]
    assert defaults == {"apiUsage": True, "security": True, "marketing": False, "newsletter": False}

    updated = {"apiUsage": False, "security": True, "marketing": True, "newsletter": False}
    response = client.put("/api/settings/notifications", json=updated, headers=headers)
    assert response.json()["preferences"] == updated
    assert client.get("/api/settings/notifications", headers=headers).json()["preferences"] == updated


def test_notification_preferences_must_be_booleans(client, make_user, auth_headers):
    user = make_user()
    response = client.put(
        "/api/settings/notifications",
        json={"apiUsage": "yes", "security": True, "marketing": True, "newsletter": False},
        headers=auth_headers(user),
    )
    assert response.status_code == 400


def test_deleted_user_session_is_rejected(client, db, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    db.delete(user)
    db.commit()
    assert client.get("/api/settings/notifications", headers=headers).status_code == 401
