from datetime import datetime, timedelta

from app.portal.auth import _login_attempts
from conftest import login


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_dashboard_access(client):
    # Anonymous is sent to the login page
    r = client.get("/dashboard")
    assert r.status_code == 302
    assert "/login" in r.headers["Location"]

    r = login(client)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard")

    r = client.get("/dashboard")
    assert r.status_code == 200
    assert b"Pending activation" in r.data


def test_login_rejects_bad_password(client):
    r = login(client, password="wrong")
    assert r.status_code == 302
    assert "/login" in r.headers["Location"]
    r = client.get("/dashboard")
    assert r.status_code == 302


def test_login_next_only_allows_local_paths(client):
    r = client.post(
        "/login",
        data={"email": "admin@example.com", "password": "pw", "next": "//evil.example.com/"},
    )
    assert r.headers["Location"].endswith("/dashboard")


def test_logout_clears_session(client):
    login(client)
    r = client.get("/logout")
    assert r.status_code == 302
    r = client.get("/users")
    assert r.status_code == 302
    assert "/login" in r.headers["Location"]


def test_post_without_csrf_token_is_rejected(client, ids):
    login(client)
    with client.session_transaction() as sess:
        sess["csrf_token"] = "other"
    r = client.post(f"/users/delete?id={ids['viewer']}", data={})
    assert r.status_code == 400


def test_login_rate_limit_forgets_idle_addresses(client):
    _login_attempts["203.0.113.9"] = [datetime.utcnow() - timedelta(minutes=10)]
    login(client)
    assert "203.0.113.9" not in _login_attempts
    # Successful login leaves no entry behind for the client either
    assert _login_attempts == {}


def test_login_rate_limit_blocks_after_repeated_failures(client):
    for _ in range(5):
        login(client, password="wrong")
    r = login(client)
    assert r.headers["Location"].endswith("/login")
    with client.session_transaction() as sess:
        messages = [m for _c, m in sess.get("_flashes", [])]
    assert "Too many login attempts. Please wait 5 minutes." in messages
