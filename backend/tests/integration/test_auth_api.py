import re
from urllib.parse import parse_qs, urlparse

from conftest import PASSWORD, make_user
from miniorg.db import models


def latest_code(mailer):
    return re.search(r"\b(\d{6})\b", mailer.sent[-1]["html"]).group(1)


def test_signup_verify_login_me(client, mailer):
    r = client.post("/auth/signup", json={"email": "new@example.com", "password": PASSWORD})
    assert r.status_code == 201
    assert r.json()["email"] == "new@example.com"

    r = client.post("/auth/login", json={"email": "new@example.com", "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "EMAIL_NOT_VERIFIED"

    r = client.post("/auth/verify-email", json={"email": "new@example.com", "code": latest_code(mailer)})
    assert r.status_code == 200

    r = client.post("/auth/login", json={"email": "new@example.com", "password": PASSWORD})
    assert r.status_code == 200
    assert "session_token" in r.cookies

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "new@example.com"
    assert me.json()["source"] == "web"

    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_signup_weak_password(client):
    r = client.post("/auth/signup", json={"email": "new@example.com", "password": "weak"})
    assert r.status_code == 400
    detail = r.json()["detail"]
    assert detail["code"] == "WEAK_PASSWORD"
    assert isinstance(detail["errors"], list)


def test_signup_existing_email(client, user):
    r = client.post("/auth/signup", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "EMAIL_EXISTS"


def test_me_requires_auth(client):
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "UNAUTHORIZED"


def test_invalid_bearer_is_rejected(client):
    r = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_desktop_credentials_and_refresh(client, user):
    r = client.post("/auth/tauri/credentials", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["id"] == user.id
    assert body["expires_at"] > 0
    headers = {"Authorization": f"Bearer {body['token']}"}

    me = client.get("/auth/me", headers=headers)
    assert me.json()["source"] == "desktop"

    refreshed = client.post("/auth/tauri/refresh", headers=headers)
    assert refreshed.status_code == 200
    assert refreshed.json()["token"]

    assert client.post("/auth/tauri/refresh").status_code == 401


def test_desktop_credentials_wrong_password(client, user):
    r = client.post("/auth/tauri/credentials", json={"email": user.email, "password": "Wrong!pass1"})
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "INVALID_CREDENTIALS"


def test_google_only_account_must_use_google(client, db):
    make_user(db, email="g@example.com", password=None, oauth_provider="google")
    r = client.post("/auth/login", json={"email": "g@example.com", "password": PASSWORD})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "USE_GOOGLE"


def test_password_reset_over_http(client, user, mailer):
    r = client.post("/auth/forgot-password", json={"email": user.email})
    assert r.status_code == 200
    code = latest_code(mailer)

    r = client.post("/auth/verify-reset-code", json={"email": user.email, "code": code})
    assert r.json()["valid"] is True

    r = client.post("/auth/reset-password", json={"email": user.email, "code": code, "password": "An0ther!pass"})
    assert r.status_code == 200

    r = client.post("/auth/login", json={"email": user.email, "password": "An0ther!pass"})
    assert r.status_code == 200


def test_forgot_password_unknown_email_looks_successful(client, mailer):
    r = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
    assert r.status_code == 200
    assert mailer.sent == []


def signin_state(client):
    start = client.get("/auth/google", params={"callbackUrl": "/tasks"}, follow_redirects=False)
    assert start.status_code == 302
    return parse_qs(urlparse(start.headers["location"]).query)["state"][0]


def test_google_sign_in_sets_session_cookie(client, db):
    cb = client.get("/auth/google/callback", params={"code": "ok", "state": signin_state(client)}, follow_redirects=False)
    assert cb.status_code == 302
    assert cb.headers["location"] == "http://app.test/tasks"
    assert "session_token" in cb.cookies

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "gina@example.com"
    assert db.query(models.User).one().oauth_provider == "google"

    r = client.post("/auth/login", json={"email": "gina@example.com", "password": PASSWORD})
    assert r.json()["detail"]["code"] == "USE_GOOGLE"


def test_google_sign_in_failures_go_to_login(client, auth_headers):
    denied = client.get("/auth/google/callback", params={"error": "access_denied"}, follow_redirects=False)
    assert denied.headers["location"] == "http://app.test/login?error=authentication_failed"

    bad = client.get(
        "/auth/google/callback", params={"code": "bad-code", "state": signin_state(client)}, follow_redirects=False
    )
    assert bad.headers["location"] == "http://app.test/login?error=oauth_code_invalid"
    assert "session_token" not in bad.cookies

    calendar_state = client.get("/auth/google-calendar", headers=auth_headers).json()["authUrl"]
    state = parse_qs(urlparse(calendar_state).query)["state"][0]
    swapped = client.get("/auth/google/callback", params={"code": "ok", "state": state}, follow_redirects=False)
    assert swapped.headers["location"] == "http://app.test/login?error=oauth_state_invalid"


def test_desktop_google_token(client, fake_provider):
    r = client.post("/auth/tauri/token", json={"code": "ok", "code_verifier": "v1"})
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["email"] == "gina@example.com"
    assert fake_provider.signin_exchanges[-1]["redirect_uri"] == "tauri://localhost"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.json()["source"] == "desktop"

    assert client.post("/auth/tauri/token", json={}).json()["detail"]["code"] == "MISSING_CODE"
    r = client.post("/auth/tauri/token", json={"code": "bad-code"})
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "GOOGLE_AUTH_FAILED"


def test_desktop_signup(client, mailer):
    r = client.post("/auth/tauri/signup", json={"email": "desk@example.com", "password": PASSWORD})
    assert r.status_code == 201
    assert r.json() == {"success": True, "message": "Verification code sent"}
    assert mailer.sent[-1]["to"] == "desk@example.com"

    r = client.post("/auth/tauri/signup", json={"email": "desk@example.com", "password": PASSWORD})
    assert r.json()["detail"]["code"] == "EMAIL_EXISTS"
