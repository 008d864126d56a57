from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from dealdesk.admin import app
from dealdesk.services.users_service import create_user
from dealdesk.storage import init_db

PASSWORD = "correct horse battery"


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    path = tmp_path / "data"
    monkeypatch.setenv("DD_DATA_DIR", str(path))
    monkeypatch.delenv("DD_DB_URL", raising=False)
    return path


@pytest.fixture
def conn(data_dir):
    conn = init_db()
    yield conn
    conn.close()


@pytest.fixture
def client(data_dir):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(client, conn):
    return login(client, conn, "admin@example.com", is_admin=True)


@pytest.fixture
def user_headers(client, conn):
    return login(client, conn, "reader@example.com", is_admin=False)


def login(client, conn, email: str, is_admin: bool) -> dict[str, str]:
    create_user(conn, email, PASSWORD, name=email.split("@")[0], is_admin=is_admin)
    response = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['token']}"}
