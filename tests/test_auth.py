from datetime import datetime, timedelta, timezone

from dealdesk.admin import SESSION_COOKIE_NAME
from dealdesk.security.passwords import hash_password, verify_password
from dealdesk.services.users_service import create_user, resolve_session

PASSWORD = "correct horse battery"


def test_password_hashing():
    stored = hash_password("hunter22")
    assert stored.startswith("scrypt$")
    assert stored != hash_password("hunter22")
    assert verify_password("hunter22", stored) is True
    assert verify_password("hunter23", stored) is False
    assert verify_password("hunter22", "plain-text") is False


def test_login_sets_cookie_and_session(client, conn):
    create_user(conn, "Editor@Example.com", PASSWORD, name="Editor", is_admin=True)
    response = client.post(
        "/api/auth/login", json={"email": "editor@example.com", "password": PASSWORD}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["user"]["email"] == "editor@example.com"
    assert body["user"]["isAdmin"] is True
    assert "password_hash" not in body["user"]
    assert client.cookies.get(SESSION_COOKIE_NAME) == body["token"]

    session = client.get("/api/auth/session")
    assert session.status_code == 200
    assert session.json()["user"]["name"] == "Editor"

    logout = client.post("/api/auth/logout")
    assert logout.json() == {"ok": True}
    client.cookies.set(SESSION_COOKIE_NAME, body["token"])
    assert client.get("/api/auth/session").status_code == 401


def test_bad_credentials(client, conn):
    create_user(conn, "reader@example.com", PASSWORD)
    wrong = client.post(
        "/api/auth/login", json={"email": "reader@example.com", "password": "nope"}
    )
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Invalid email or password"}
    unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "x"})
    assert unknown.status_code == 401


def test_session_requires_login(client):
    assert client.get("/api/auth/session").status_code == 401
    bogus = client.get("/api/auth/session", headers={"Authorization": "Bearer not-a-token"})
    assert bogus.status_code == 401


def test_expired_session_is_dropped(conn):
    user = create_user(conn, "old@example.com", PASSWORD)
    past = datetime.now(tz=timezone.utc) - timedelta(hours=1)
    conn.execute(
        "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
        ("stale", user["id"], past.isoformat(), past.isoformat()),
    )
    conn.commit()
    assert resolve_session(conn, "stale") is None
    assert conn.fetch_one("SELECT token FROM sessions WHERE token = ?", ("stale",)) is None


def test_duplicate_email_is_rejected(conn):
    create_user(conn, "dup@example.com", PASSWORD)
    try:
        create_user(conn, "DUP@example.com", PASSWORD)
    except ValueError as exc:
        assert "already exists" in str(exc)
    else:
        raise AssertionError("Expected duplicate email error")
