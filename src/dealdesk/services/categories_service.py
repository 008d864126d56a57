from __future__ import annotations

import re
from typing import Any

from ..db import is_integrity_error
from ..errors import InvalidInput, NotFound
from ..utils import new_id, utc_now_iso

CATEGORY_COLUMNS = (
    "id, name, slug, label, description, color, parent_id, created_at, updated_at"
)


def list_categories(conn: Any) -> list[dict[str, Any]]:
    """Top-level categories, each with its children, both in creation order."""
    rows = conn.fetch_all(
        f"SELECT {CATEGORY_COLUMNS} FROM categories ORDER BY created_at ASC, id ASC"
    )
    by_parent: dict[str | None, list[dict[str, Any]]] = {}
    for row in rows:
        by_parent.setdefault(row["parent_id"], []).append(_category_row(row))
    roots = by_parent.get(None, [])
    for node in roots:
        _attach_children(node, by_parent)
    return roots


def get_category(conn: Any, category_id: str) -> dict[str, Any] | None:
    row = conn.fetch_one(
        f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE id = ?", (category_id,)
    )
    if not row:
        return None
    category = _category_row(row)
    category["children"] = [
        _category_row(child)
        for child in conn.fetch_all(
            f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE parent_id = ? "
            "ORDER BY created_at ASC, id ASC",
            (category_id,),
        )
    ]
    parent = None
    if row["parent_id"]:
        parent_row = conn.fetch_one(
            f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE id = ?", (row["parent_id"],)
        )
        parent = _category_row(parent_row) if parent_row else None
    category["parent"] = parent
    return category


def create_category(
    conn: Any, payload: dict[str, Any], *, max_depth: int, default_color: str
) -> dict[str, Any]:
    fields = _normalized_fields(payload, default_color)
    category_id = new_id()
    _check_parent(conn, category_id, fields["parent_id"], max_depth)
    now = utc_now_iso()
    try:
        conn.execute(
            f"""
            INSERT INTO categories ({CATEGORY_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                category_id,
                fields["name"],
                fields["slug"],
                fields["label"],
                fields["description"],
                fields["color"],
                fields["parent_id"],
                now,
                now,
            ),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc):
            raise InvalidInput("A category with this name or slug already exists") from exc
        raise
    return get_category(conn, category_id) or {}


def update_category(
    conn: Any,
    category_id: str,
    payload: dict[str, Any],
    *,
    max_depth: int,
    default_color: str,
) -> dict[str, Any]:
    fields = _normalized_fields(payload, default_color)
    if not get_category(conn, category_id):
        raise NotFound("Category not found")
    _check_parent(conn, category_id, fields["parent_id"], max_depth)
    try:
        conn.execute(
            """
            UPDATE categories
            SET name = ?, slug = ?, label = ?, description = ?, color = ?, parent_id = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                fields["name"],
                fields["slug"],
                fields["label"],
                fields["description"],
                fields["color"],
                fields["parent_id"],
                utc_now_iso(),
                category_id,
            ),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc):
            raise InvalidInput("A category with this name or slug already exists") from exc
        raise
    return get_category(conn, category_id) or {}


def delete_category(conn: Any, category_id: str) -> None:
    category = get_category(conn, category_id)
    if not category:
        raise NotFound("Category not found")
    if category["children"]:
        raise InvalidInput(
            "Cannot delete category with subcategories. Delete subcategories first."
        )
    conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
    conn.commit()


def _normalized_fields(payload: dict[str, Any], default_color: str) -> dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    slug = str(payload.get("slug") or "").strip()
    label = str(payload.get("label") or "").strip()
    if not name or not slug or not label:
        raise InvalidInput("Name, slug, and label are required")
    description = str(payload.get("description") or "").strip() or None
    return {
        "name": re.sub(r"\s+", "_", name.upper()),
        "slug": slug.lower(),
        "label": label,
        "description": description,
        "color": payload.get("color") or default_color,
        "parent_id": payload.get("parentId") or None,
    }


def _check_parent(conn: Any, category_id: str, parent_id: str | None, max_depth: int) -> None:
    """Reject parents that are missing, form a cycle, or nest deeper than max_depth."""
    if parent_id is None:
        _check_subtree_depth(conn, category_id, 1, max_depth)
        return
    if parent_id == category_id:
        raise InvalidInput("A category cannot be its own parent")

    parents = _parent_map(conn)
    if parent_id not in parents:
        raise InvalidInput("Parent category not found")

    depth = 1
    cursor: str | None = parent_id
    seen = {category_id}
    while cursor is not None:
        if cursor in seen:
            raise InvalidInput("Category hierarchy cannot contain cycles")
        seen.add(cursor)
        depth += 1
        cursor = parents.get(cursor)
    if depth > max_depth:
        raise InvalidInput(f"Categories may be nested at most {max_depth} levels deep")
    _check_subtree_depth(conn, category_id, depth, max_depth, parents)


def _check_subtree_depth(
    conn: Any,
    category_id: str,
    depth: int,
    max_depth: int,
    parents: dict[str, str | None] | None = None,
) -> None:
    parents = parents if parents is not None else _parent_map(conn)
    children: dict[str, list[str]] = {}
    for child, parent in parents.items():
        if parent is not None:
            children.setdefault(parent, []).append(child)
    frontier = [(category_id, depth)]
    while frontier:
        node, level = frontier.pop()
        if level > max_depth:
            raise InvalidInput(f"Categories may be nested at most {max_depth} levels deep")
        for child in children.get(node, []):
            frontier.append((child, level + 1))


def _parent_map(conn: Any) -> dict[str, str | None]:
    return {row[0]: row[1] for row in conn.execute("SELECT id, parent_id FROM categories").fetchall()}


def _attach_children(node: dict[str, Any], by_parent: dict[str | None, list[dict[str, Any]]]) -> None:
    node["children"] = by_parent.get(node["id"], [])
    for child in node["children"]:
        _attach_children(child, by_parent)


def _category_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "slug": row["slug"],
        "label": row["label"],
        "description": row["description"],
        "color": row["color"],
        "parentId": row["parent_id"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
