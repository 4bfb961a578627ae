from datetime import timedelta
import pytest
from fastapi.concurrency import run_in_threadpool
from cadogy.api import guard
from cadogy.api.guard import RouteClass, classify_path, is_trusted_host
from cadogy.models.api_key import ApiKey
from cadogy.models.api_usage import ApiUsage
from cadogy.services.api_key_service import api_key_service
from cadogy.utils.dates import utcnow
from tests.conftest import STATIC_API_KEY


@pytest.mark.parametrize("path, expected", [
    ("/auth/verify-email", RouteClass.LEGACY_REDIRECT),
    ("/auth/reset-password", RouteClass.LEGACY_REDIRECT),
    ("/", RouteClass.PUBLIC),
    ("/login", RouteClass.PUBLIC),
    ("/reset-password", RouteClass.PUBLIC),
    ("/_next/static/chunk.js", RouteClass.PUBLIC),
    ("/favicon.ico", RouteClass.PUBLIC),
    ("/docs", RouteClass.PUBLIC),
    ("/api/auth/login", RouteClass.PUBLIC_API),
    ("/api/public/settings", RouteClass.PUBLIC_API),
    ("/api/webhooks/stripe", RouteClass.PUBLIC_API),
    ("/api/dashboard/api-keys", RouteClass.SESSION_API),
    ("/api/user/tokens", RouteClass.SESSION_API),
    ("/api/admin/users/3", RouteClass.SESSION_API),
    ("/api/payments/verify", RouteClass.SESSION_API),
    ("/api/protected", RouteClass.API_KEY),
    ("/api/data.json", RouteClass.API_KEY),
    ("/api", RouteClass.API_KEY),
    ("/dashboard", RouteClass.SESSION_PAGE),
    ("/dashboard/usage", RouteClass.SESSION_PAGE),
    ("/admin/users", RouteClass.SESSION_PAGE),
    ("/pricing", RouteClass.DEFAULT),
    ("/administrator", RouteClass.DEFAULT),
    ("/apiary", RouteClass.DEFAULT),
])
def test_classify_path(path, expected):
    assert classify_path(path) is expected


def test_trusted_host_is_substring_match():
    assert is_trusted_host("localhost:3000", ["localhost"])
    assert not is_trusted_host("evil.example.com", ["localhost", "cadogy.com"])


def test_legacy_verify_link_redirects_with_token(client):
    response = client.get("/auth/verify-email", params={"token": "abc123"}, follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/verify-email?token=abc123"


def test_legacy_reset_link_redirects_with_token(client):
    response = client.get("/auth/reset-password", params={"token": "def456"}, follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/reset-password?token=def456"

    response = client.get("/auth/reset-password", follow_redirects=False)
    assert response.headers["location"] == "/reset-password"


def test_session_api_requires_session(client):
    response = client.get("/api/dashboard/api-keys")
    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized"


def test_admin_api_requires_admin_role(client, make_user, auth_headers):
    user = make_user()
    response = client.get("/api/admin/users", headers=auth_headers(user))
    assert response.status_code == 403


def test_admin_api_uses_role_from_token(client, make_user, auth_headers):
    # Promoted after sign-in: the old token still carries "user"
    user = make_user(role="admin")
    response = client.get("/api/admin/users", headers=auth_headers(user, role="user"))
    assert response.status_code == 403
    response = client.get("/api/admin/users", headers=auth_headers(user))
    assert response.status_code == 200


def test_protected_page_redirects_to_login(client):
    response = client.get("/dashboard/usage", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/login?callbackUrl=%2Fdashboard%2Fusage"


def test_admin_page_redirects_non_admin(client, make_user, auth_headers):
    user = make_user()
    response = client.get("/admin", headers=auth_headers(user), follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["x-robots-tag"] == "noindex, nofollow, noarchive"


def test_untrusted_host_refused_on_auth_routes(client):
    response = client.post(
        "/api/auth/login",
        json={"email": "a@example.com", "password": "x"},
        headers={"host": "evil.example.com"},
    )
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid host"


def test_api_key_route_without_key(client):
    response = client.get("/api/protected")
    assert response.status_code == 401
    assert response.json()["message"] == "Valid API key required"


def test_api_key_route_with_static_key(client):
    response = client.get("/api/protected", headers={"x-api-key": STATIC_API_KEY})
    assert response.status_code == 200
    assert response.json()["userId"] is None


def test_api_key_route_with_user_key(client, db, make_user):
    user = make_user()
    api_key = api_key_service.create_key(db, user.id, "Default")

    response = client.get("/api/protected", params={"api_key": api_key.key})
    assert response.status_code == 200
    assert response.json()["userId"] == user.id

    db.expire_all()
    assert db.get(ApiKey, api_key.id).last_used_at is not None
    usage = db.query(ApiUsage).filter(ApiUsage.user_id == user.id).one()
    assert usage.endpoint == "/api/protected"
    assert usage.method == "GET"
    assert usage.status_code == 200
    assert usage.api_key_id == api_key.id


def test_user_key_database_work_runs_off_the_event_loop(client, db, make_user, monkeypatch):
    user = make_user()
    api_key = api_key_service.create_key(db, user.id, "Default")
    offloaded = []

    async def recording_run_in_threadpool(func, *args, **kwargs):
        offloaded.append(func.__name__)
        return await run_in_threadpool(func, *args, **kwargs)

    monkeypatch.setattr(guard, "run_in_threadpool", recording_run_in_threadpool)
    response = client.get("/api/protected", headers={"x-api-key": api_key.key})

    assert response.status_code == 200
    assert offloaded == ["_lookup_key", "_log_usage"]


def test_disabled_key_is_refused(client, db, make_user):
    user = make_user()
    api_key = api_key_service.create_key(db, user.id, "Default")
    api_key_service.set_active(db, user.id, api_key.id, "disable")

    response = client.get("/api/protected", headers={"x-api-key": api_key.key})
    assert response.status_code == 401
    assert db.query(ApiUsage).count() == 0


def test_expired_key_is_refused(client, db, make_user):
    user = make_user()
    api_key = api_key_service.create_key(db, user.id, "Default")
    api_key.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    response = client.get("/api/protected", headers={"x-api-key": api_key.key})
    assert response.status_code == 401


def test_public_routes_pass_without_credentials(client):
    assert client.get("/api/public/info").status_code == 200
    assert client.get("/health").json() == {"status": "healthy"}
