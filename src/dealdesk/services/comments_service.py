from __future__ import annotations

from typing import Any

from ..errors import InvalidInput, NotFound
from ..models import AuthContext
from ..utils import new_id, utc_now_iso
from .users_service import ensure_user


def create_comment(conn: Any, ctx: AuthContext | None, payload: dict[str, Any]) -> dict[str, Any]:
    ctx = ensure_user(ctx)
    post_id = str(payload.get("postId") or "").strip()
    content = str(payload.get("content") or "").strip()
    if not post_id or not content:
        raise InvalidInput("Missing required fields")
    if not conn.fetch_one("SELECT id FROM posts WHERE id = ?", (post_id,)):
        raise NotFound("Post not found")
    comment_id = new_id()
    conn.execute(
        """
        INSERT INTO comments (id, post_id, user_id, author_name, content, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (comment_id, post_id, ctx.user_id, ctx.name or ctx.email, content, utc_now_iso()),
    )
    conn.commit()
    row = conn.fetch_one(
        "SELECT id, post_id, user_id, author_name, content, created_at FROM comments WHERE id = ?",
        (comment_id,),
    )
    return _comment_row(row)


def list_comments(conn: Any, post_id: str) -> list[dict[str, Any]]:
    if not conn.fetch_one("SELECT id FROM posts WHERE id = ?", (post_id,)):
        raise NotFound("Post not found")
    rows = conn.fetch_all(
        """
        SELECT id, post_id, user_id, author_name, content, created_at
        FROM comments
        WHERE post_id = ?
        ORDER BY created_at ASC, id ASC
        """,
        (post_id,),
    )
    return [_comment_row(row) for row in rows]


def _comment_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "postId": row["post_id"],
        "userId": row["user_id"],
        "authorName": row["author_name"],
        "content": row["content"],
        "createdAt": row["created_at"],
    }
