from __future__ import annotations

from typing import Any

from ..db import is_integrity_error
from ..errors import Conflict, InvalidInput, NotFound
from ..models import ProgramType
from ..utils import new_id, slugify, utc_now_iso

PROGRAM_COLUMNS = (
    "id, name, slug, type, logo, brand_color, description, created_at, updated_at"
)

DUPLICATE_PROGRAM = "A program with this name or slug already exists"
INVALID_TYPE = "Valid program type is required (airline, hotel, or other)"


def list_programs(
    conn: Any, program_type: str | None = None, include_stats: bool = False
) -> list[dict[str, Any]]:
    if program_type:
        rows = conn.fetch_all(
            f"SELECT {PROGRAM_COLUMNS} FROM programs WHERE type = ? ORDER BY name ASC",
            (program_type,),
        )
    else:
        rows = conn.fetch_all(f"SELECT {PROGRAM_COLUMNS} FROM programs ORDER BY name ASC")
    programs = [_program_row(row) for row in rows]
    if include_stats:
        counts = _post_counts(conn)
        for program in programs:
            program["postsCount"] = counts.get(program["id"], 0)
    return programs


def get_program(
    conn: Any, program_id: str, include_stats: bool = False
) -> dict[str, Any] | None:
    row = conn.fetch_one(f"SELECT {PROGRAM_COLUMNS} FROM programs WHERE id = ?", (program_id,))
    if not row:
        return None
    program = _program_row(row)
    if include_stats:
        program["postsCount"] = _post_counts(conn, program_id).get(program_id, 0)
    return program


def create_program(conn: Any, payload: dict[str, Any]) -> dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise InvalidInput("Program name is required")
    program_type = _parse_type(payload.get("type"))
    slug = str(payload.get("slug") or "").strip() or slugify(name, fallback="program")
    program_id = new_id()
    now = utc_now_iso()
    try:
        conn.execute(
            f"""
            INSERT INTO programs ({PROGRAM_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                program_id,
                name,
                slug,
                program_type.value,
                payload.get("logo") or None,
                payload.get("brandColor") or None,
                payload.get("description") or None,
                now,
                now,
            ),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc):
            raise Conflict(DUPLICATE_PROGRAM) from exc
        raise
    return get_program(conn, program_id) or {}


def update_program(conn: Any, program_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Apply a partial update; a new name re-derives the slug unless one is given."""
    current = get_program(conn, program_id)
    if not current:
        raise NotFound("Program not found")

    name = current["name"]
    slug = current["slug"]
    if payload.get("name"):
        name = str(payload["name"]).strip()
        if not payload.get("slug"):
            slug = slugify(name, fallback="program")
    if payload.get("slug"):
        slug = str(payload["slug"]).strip()
    program_type = current["type"]
    if payload.get("type"):
        program_type = _parse_type(payload["type"]).value
    logo = payload["logo"] if "logo" in payload else current["logo"]
    brand_color = payload["brandColor"] if "brandColor" in payload else current["brandColor"]
    description = (
        payload["description"] if "description" in payload else current["description"]
    )

    try:
        conn.execute(
            """
            UPDATE programs
            SET name = ?, slug = ?, type = ?, logo = ?, brand_color = ?, description = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                name,
                slug,
                program_type,
                logo,
                brand_color,
                description,
                utc_now_iso(),
                program_id,
            ),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc):
            raise Conflict(DUPLICATE_PROGRAM) from exc
        raise
    return get_program(conn, program_id) or {}


def delete_program(conn: Any, program_id: str) -> dict[str, Any]:
    program = get_program(conn, program_id, include_stats=True)
    if not program:
        raise NotFound("Program not found")
    if program["postsCount"] > 0:
        raise Conflict(
            f"Cannot delete program. It has {program['postsCount']} associated post(s).",
            postsCount=program["postsCount"],
        )
    conn.execute("DELETE FROM programs WHERE id = ?", (program_id,))
    conn.commit()
    return {"success": True, "message": f'Program "{program["name"]}" deleted successfully'}


def _parse_type(value: Any) -> ProgramType:
    try:
        return ProgramType(str(value or "").strip())
    except ValueError as exc:
        raise InvalidInput(INVALID_TYPE) from exc


def _post_counts(conn: Any, program_id: str | None = None) -> dict[str, int]:
    if program_id:
        rows = conn.execute(
            "SELECT program_id, COUNT(*) FROM posts WHERE program_id = ? GROUP BY program_id",
            (program_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT program_id, COUNT(*) FROM posts WHERE program_id IS NOT NULL "
            "GROUP BY program_id"
        ).fetchall()
    return {row[0]: int(row[1]) for row in rows}


def _program_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "slug": row["slug"],
        "type": row["type"],
        "logo": row["logo"],
        "brandColor": row["brand_color"],
        "description": row["description"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
