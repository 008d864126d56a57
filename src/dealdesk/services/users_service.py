from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from ..db import is_integrity_error
from ..errors import InvalidInput, Unauthorized
from ..models import AuthContext
from ..security.passwords import hash_password, verify_password
from ..utils import new_id, parse_datetime, utc_now_iso

USER_COLUMNS = "id, email, name, is_admin, created_at, updated_at"


def create_user(
    conn: Any,
    email: str,
    password: str,
    name: str | None = None,
    is_admin: bool = False,
) -> dict[str, Any]:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise InvalidInput("A valid email is required")
    if not password:
        raise InvalidInput("Password is required")
    user_id = new_id()
    now = utc_now_iso()
    try:
        conn.execute(
            """
            INSERT INTO users (id, email, name, password_hash, is_admin, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                email,
                (name or "").strip() or None,
                hash_password(password),
                1 if is_admin else 0,
                now,
                now,
            ),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc):
            raise InvalidInput("A user with this email already exists") from exc
        raise
    return get_user(conn, user_id) or {}


def get_user(conn: Any, user_id: str) -> dict[str, Any] | None:
    row = conn.fetch_one(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,))
    return _user_row(row) if row else None


def get_user_by_email(conn: Any, email: str) -> dict[str, Any] | None:
    row = conn.fetch_one(
        f"SELECT {USER_COLUMNS} FROM users WHERE email = ?",
        ((email or "").strip().lower(),),
    )
    return _user_row(row) if row else None


def set_admin(conn: Any, user_id: str, is_admin: bool) -> None:
    conn.execute(
        "UPDATE users SET is_admin = ?, updated_at = ? WHERE id = ?",
        (1 if is_admin else 0, utc_now_iso(), user_id),
    )
    conn.commit()


def authenticate(conn: Any, email: str, password: str) -> dict[str, Any] | None:
    row = conn.fetch_one(
        f"SELECT {USER_COLUMNS}, password_hash FROM users WHERE email = ?",
        ((email or "").strip().lower(),),
    )
    if not row or not password:
        return None
    if not verify_password(password, row["password_hash"]):
        return None
    return _user_row(row)


def create_session(conn: Any, user_id: str, ttl_hours: int) -> str:
    token = secrets.token_urlsafe(32)
    now = datetime.now(tz=timezone.utc)
    conn.execute(
        "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
        (token, user_id, now.isoformat(), (now + timedelta(hours=ttl_hours)).isoformat()),
    )
    conn.commit()
    return token


def resolve_session(conn: Any, token: str | None) -> AuthContext | None:
    if not token:
        return None
    row = conn.fetch_one(
        """
        SELECT s.expires_at, u.id, u.email, u.name, u.is_admin
        FROM sessions s
        JOIN users u ON u.id = s.user_id
        WHERE s.token = ?
        """,
        (token,),
    )
    if not row:
        return None
    expires_at = parse_datetime(row["expires_at"])
    if expires_at is None or expires_at <= datetime.now(tz=timezone.utc):
        delete_session(conn, token)
        return None
    return AuthContext(
        user_id=row["id"],
        email=row["email"],
        name=row["name"],
        is_admin=bool(row["is_admin"]),
    )


def delete_session(conn: Any, token: str) -> None:
    conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
    conn.commit()


def _user_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "email": row["email"],
        "name": row["name"],
        "isAdmin": bool(row["is_admin"]),
        "createdAt": row["created_at"],
    }


def ensure_admin(ctx: AuthContext | None) -> AuthContext:
    if ctx is None or not ctx.is_admin:
        raise Unauthorized()
    return ctx


def ensure_user(ctx: AuthContext | None) -> AuthContext:
    if ctx is None:
        raise Unauthorized()
    return ctx
