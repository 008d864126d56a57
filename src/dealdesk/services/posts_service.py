from __future__ import annotations

import math
from typing import Any

from ..db import is_integrity_error
from ..errors import InvalidInput, NotFound, ValidationFailed
from ..models import AuthContext, PostStatus
from ..utils import json_dumps, json_loads_or, new_id, parse_datetime, slugify, utc_now_iso
from ..validators import validate_post
from .card_configs_service import get_card_config
from .users_service import ensure_admin

POST_COLUMNS = (
    "id, title, slug, excerpt, content, category_type, categories, category_data_json, "
    "published, status, author_id, bank_id, program_id, expiry_at, details_content, cta_url, "
    "created_at, updated_at"
)

POST_SELECT = """
    SELECT p.id, p.title, p.slug, p.excerpt, p.content, p.category_type, p.categories,
           p.category_data_json, p.published, p.status, p.author_id, p.bank_id, p.program_id,
           p.expiry_at, p.details_content, p.cta_url, p.created_at, p.updated_at,
           b.name AS bank_name, b.slug AS bank_slug, b.logo AS bank_logo,
           pr.name AS program_name, pr.slug AS program_slug, pr.type AS program_type,
           pr.logo AS program_logo
    FROM posts p
    LEFT JOIN banks b ON b.id = p.bank_id
    LEFT JOIN programs pr ON pr.id = p.program_id
"""

DUPLICATE_SLUG = "A post with this slug already exists"
UNKNOWN_REFERENCE = "Post references an unknown bank, program or author"


def list_posts(
    conn: Any, category_type: str | None = None, status: str | None = None
) -> list[dict[str, Any]]:
    where, params = _filters(category_type, status)
    rows = conn.fetch_all(f"{POST_SELECT} {where} ORDER BY p.created_at DESC, p.id DESC", params)
    return [_post_row(row) for row in rows]


def list_admin_posts(
    conn: Any,
    category_type: str | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
    max_limit: int = 100,
) -> dict[str, Any]:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 1), 1), max_limit)
    where, params = _filters(category_type, status)
    total_row = conn.execute(f"SELECT COUNT(*) FROM posts p {where}", params).fetchone()
    total = int(total_row[0] or 0)
    rows = conn.fetch_all(
        f"{POST_SELECT} {where} ORDER BY p.created_at DESC, p.id DESC LIMIT ? OFFSET ?",
        (*params, limit, (page - 1) * limit),
    )
    return {
        "posts": [_post_row(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


def get_post(conn: Any, id_or_slug: str) -> dict[str, Any] | None:
    row = conn.fetch_one(f"{POST_SELECT} WHERE p.id = ? OR p.slug = ?", (id_or_slug, id_or_slug))
    return _post_row(row) if row else None


def create_post(
    conn: Any, ctx: AuthContext | None, payload: dict[str, Any], default_category: str
) -> dict[str, Any]:
    ensure_admin(ctx)
    title = str(payload.get("title") or "").strip()
    slug = str(payload.get("slug") or "").strip()
    if not title or not slug:
        raise InvalidInput("Title and slug are required")
    categories = payload.get("categories") or [default_category]
    if isinstance(categories, str):
        categories = [categories]
    fields = {
        "title": title,
        "slug": slug,
        "excerpt": payload.get("excerpt") or None,
        "content": payload.get("content") or [],
        "category_type": payload.get("categoryType") or categories[0],
        "categories": list(categories),
        "category_data": payload.get("categoryData") or {},
        "published": bool(payload.get("published", False)),
        "status": payload.get("status") or PostStatus.DRAFT.value,
        "author_id": ctx.user_id,
        "bank_id": payload.get("bankId") or None,
        "program_id": payload.get("programId") or None,
        "expiry_at": _expiry(payload.get("expiryDateTime")),
        "details_content": payload.get("detailsContent") or None,
        "cta_url": payload.get("ctaUrl") or None,
    }
    try:
        post_id = insert_post(conn, fields)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return get_post(conn, post_id) or {}


def create_admin_post(conn: Any, ctx: AuthContext | None, payload: dict[str, Any]) -> dict[str, Any]:
    ensure_admin(ctx)
    title = str(payload.get("title") or "").strip()
    category_type = str(payload.get("categoryType") or "").strip()
    if not title or not category_type:
        raise InvalidInput("Title and categoryType are required")
    if not get_card_config(conn, category_type):
        raise InvalidInput("Invalid category type")
    slug = str(payload.get("slug") or "").strip()
    details = payload.get("detailsContent") or None
    fields = {
        "title": title,
        "slug": slug or slugify(title),
        "excerpt": payload.get("excerpt") or None,
        "content": payload.get("content") or text_content(details or payload.get("excerpt")),
        "category_type": category_type,
        "categories": [category_type],
        "category_data": payload.get("categoryData") or {},
        "published": bool(payload.get("published", False)),
        "status": payload.get("status") or PostStatus.DRAFT.value,
        "author_id": ctx.user_id,
        "bank_id": payload.get("bankId") or None,
        "program_id": payload.get("programId") or None,
        "expiry_at": _expiry(payload.get("expiryDateTime")),
        "details_content": details,
        "cta_url": payload.get("ctaUrl") or None,
    }
    try:
        post_id = insert_post(conn, fields, unique_slug=not slug)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return get_post(conn, post_id) or {}


def update_post(
    conn: Any, ctx: AuthContext | None, post_id: str, payload: dict[str, Any]
) -> dict[str, Any]:
    ensure_admin(ctx)
    title = str(payload.get("title") or "").strip()
    slug = str(payload.get("slug") or "").strip()
    if not title or not slug:
        raise InvalidInput("Title and slug are required")
    current = _require_post(conn, post_id)
    merged = {**current, **payload, "title": title, "slug": slug}
    _write_post(conn, post_id, merged)
    return get_post(conn, post_id) or {}


def update_admin_post(
    conn: Any, ctx: AuthContext | None, post_id: str, payload: dict[str, Any]
) -> dict[str, Any]:
    """Merge ``payload`` into the post and validate it against its CardConfig form."""
    ensure_admin(ctx)
    current = _require_post(conn, post_id)
    merged = {**current, **payload}
    if isinstance(payload.get("categoryData"), dict):
        merged["categoryData"] = {**(current.get("categoryData") or {}), **payload["categoryData"]}
    if not str(merged.get("title") or "").strip():
        raise ValidationFailed([{"field": "title", "message": "Title is required"}])
    config = get_card_config(conn, merged.get("categoryType") or "")
    if config:
        errors = validate_post(merged, config["formSchema"])
        if errors:
            raise ValidationFailed(errors)
    _write_post(conn, post_id, merged)
    return get_post(conn, post_id) or {}


def delete_post(conn: Any, ctx: AuthContext | None, post_id: str) -> None:
    ensure_admin(ctx)
    _require_post(conn, post_id)
    conn.execute(
        "UPDATE pending_posts SET published_post_id = NULL WHERE published_post_id = ?",
        (post_id,),
    )
    conn.execute("DELETE FROM posts WHERE id = ?", (post_id,))
    conn.commit()


def insert_post(conn: Any, fields: dict[str, Any], unique_slug: bool = False) -> str:
    """Insert a post without committing and return its id.

    With ``unique_slug`` a taken slug is retried as ``slug-1``, ``slug-2``, ...;
    otherwise a taken slug raises ``InvalidInput``. Each attempt runs inside a
    savepoint so the surrounding transaction survives a failed insert.
    """
    if (fields.get("status") or PostStatus.DRAFT.value) not in {item.value for item in PostStatus}:
        raise InvalidInput(f"Invalid post status: {fields['status']}")
    post_id = new_id()
    base_slug = fields["slug"]
    attempt = 0
    while True:
        slug = base_slug if attempt == 0 else f"{base_slug}-{attempt}"
        now = utc_now_iso()
        conn.execute("SAVEPOINT post_insert")
        try:
            conn.execute(
                f"""
                INSERT INTO posts ({POST_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    post_id,
                    fields["title"],
                    slug,
                    fields.get("excerpt"),
                    json_dumps(fields.get("content") or []),
                    fields.get("category_type"),
                    json_dumps(fields.get("categories") or []),
                    json_dumps(fields.get("category_data") or {}),
                    1 if fields.get("published") else 0,
                    fields.get("status") or PostStatus.DRAFT.value,
                    fields["author_id"],
                    fields.get("bank_id"),
                    fields.get("program_id"),
                    fields.get("expiry_at"),
                    fields.get("details_content"),
                    fields.get("cta_url"),
                    now,
                    now,
                ),
            )
        except Exception as exc:
            conn.execute("ROLLBACK TO SAVEPOINT post_insert")
            conn.execute("RELEASE SAVEPOINT post_insert")
            if not is_integrity_error(exc):
                raise
            if not _slug_taken(conn, slug):
                raise InvalidInput(UNKNOWN_REFERENCE) from exc
            if not unique_slug:
                raise InvalidInput(DUPLICATE_SLUG) from exc
            attempt += 1
            continue
        conn.execute("RELEASE SAVEPOINT post_insert")
        return post_id


def text_content(text: str | None) -> list[dict[str, str]]:
    return [{"type": "text", "content": text or ""}]


def _write_post(conn: Any, post_id: str, post: dict[str, Any]) -> None:
    status = post.get("status") or PostStatus.DRAFT.value
    if status not in {item.value for item in PostStatus}:
        raise InvalidInput(f"Invalid post status: {status}")
    categories = post.get("categories") or []
    if isinstance(categories, str):
        categories = [categories]
    try:
        conn.execute(
            """
            UPDATE posts
            SET title = ?, slug = ?, excerpt = ?, content = ?, category_type = ?,
                categories = ?, category_data_json = ?, published = ?, status = ?,
                bank_id = ?, program_id = ?, expiry_at = ?, details_content = ?, cta_url = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                str(post["title"]).strip(),
                str(post["slug"]).strip(),
                post.get("excerpt"),
                json_dumps(post.get("content") or []),
                post.get("categoryType"),
                json_dumps(list(categories)),
                json_dumps(post.get("categoryData") or {}),
                1 if post.get("published") else 0,
                status,
                post.get("bankId") or None,
                post.get("programId") or None,
                _expiry(post.get("expiryDateTime")),
                post.get("detailsContent"),
                post.get("ctaUrl"),
                utc_now_iso(),
                post_id,
            ),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc) and _slug_taken(conn, str(post["slug"]).strip(), post_id):
            raise InvalidInput(DUPLICATE_SLUG) from exc
        if is_integrity_error(exc):
            raise InvalidInput(UNKNOWN_REFERENCE) from exc
        raise


def _require_post(conn: Any, post_id: str) -> dict[str, Any]:
    row = conn.fetch_one(f"{POST_SELECT} WHERE p.id = ?", (post_id,))
    if not row:
        raise NotFound("Post not found")
    return _post_row(row)


def _slug_taken(conn: Any, slug: str, exclude_id: str | None = None) -> bool:
    row = conn.execute("SELECT id FROM posts WHERE slug = ?", (slug,)).fetchone()
    return row is not None and row[0] != exclude_id


def _expiry(value: Any) -> str | None:
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise InvalidInput("expiryDateTime must be an ISO date or datetime")
    return parsed.isoformat()


def _filters(category_type: str | None, status: str | None) -> tuple[str, tuple]:
    clauses = []
    params: list[Any] = []
    if category_type:
        clauses.append("p.category_type = ?")
        params.append(category_type)
    if status:
        clauses.append("p.status = ?")
        params.append(status)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, tuple(params)


def _post_row(row: dict[str, Any]) -> dict[str, Any]:
    bank = None
    if row["bank_id"]:
        bank = {
            "id": row["bank_id"],
            "name": row["bank_name"],
            "slug": row["bank_slug"],
            "logo": row["bank_logo"],
        }
    program = None
    if row["program_id"]:
        program = {
            "id": row["program_id"],
            "name": row["program_name"],
            "slug": row["program_slug"],
            "type": row["program_type"],
            "logo": row["program_logo"],
        }
    return {
        "id": row["id"],
        "title": row["title"],
        "slug": row["slug"],
        "excerpt": row["excerpt"],
        "content": json_loads_or(row["content"], []),
        "categoryType": row["category_type"],
        "categories": json_loads_or(row["categories"], []),
        "categoryData": json_loads_or(row["category_data_json"], {}),
        "published": bool(row["published"]),
        "status": row["status"],
        "authorId": row["author_id"],
        "bankId": row["bank_id"],
        "bank": bank,
        "programId": row["program_id"],
        "program": program,
        "expiryDateTime": row["expiry_at"],
        "detailsContent": row["details_content"],
        "ctaUrl": row["cta_url"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
