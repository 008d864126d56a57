from __future__ import annotations

from typing import Any

import jsonschema

from ..db import is_integrity_error
from ..errors import InvalidInput, NotFound
from ..utils import json_dumps, json_loads_or, new_id, utc_now_iso

CARD_CONFIG_COLUMNS = (
    "id, category_type, display_name, description, form_schema_json, render_config_json, "
    "requires_bank, requires_expiry, supports_verification, supports_active, supports_author, "
    "card_layout, sort_order, is_enabled, created_at, updated_at"
)

FLAG_FIELDS = {
    "requiresBank": "requires_bank",
    "requiresExpiry": "requires_expiry",
    "supportsVerification": "supports_verification",
    "supportsActive": "supports_active",
    "supportsAuthor": "supports_author",
}

FIELD_TYPES = [
    "text",
    "textarea",
    "select",
    "multiselect",
    "date",
    "datetime",
    "color",
    "image",
    "number",
    "boolean",
    "url",
    "array",
]

FORM_SCHEMA_META = {
    "type": "object",
    "properties": {
        "fields": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "label", "type"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "label": {"type": "string"},
                    "type": {"enum": FIELD_TYPES},
                    "required": {"type": "boolean"},
                    "validation": {
                        "type": "object",
                        "properties": {
                            "min": {"type": "number"},
                            "max": {"type": "number"},
                            "pattern": {"type": "string", "format": "regex"},
                        },
                    },
                },
            },
        },
        "validationRules": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["validator", "fields"],
                "properties": {
                    "validator": {"type": "string"},
                    "fields": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
    },
}


def list_card_configs(conn: Any, enabled_only: bool = True) -> list[dict[str, Any]]:
    where = "WHERE is_enabled = 1" if enabled_only else ""
    rows = conn.fetch_all(
        f"SELECT {CARD_CONFIG_COLUMNS} FROM card_configs {where} "
        "ORDER BY sort_order ASC, category_type ASC"
    )
    return [_card_config_row(row) for row in rows]


def get_card_config(conn: Any, category_type: str) -> dict[str, Any] | None:
    row = conn.fetch_one(
        f"SELECT {CARD_CONFIG_COLUMNS} FROM card_configs WHERE category_type = ?",
        (category_type,),
    )
    return _card_config_row(row) if row else None


def create_card_config(conn: Any, payload: dict[str, Any]) -> dict[str, Any]:
    category_type = str(payload.get("categoryType") or "").strip()
    display_name = str(payload.get("displayName") or "").strip()
    if not category_type or not display_name:
        raise InvalidInput("categoryType and displayName are required")
    form_schema = validate_form_schema(payload.get("formSchema") or {})
    render_config = _as_object(payload.get("renderConfig") or {}, "renderConfig")
    now = utc_now_iso()
    try:
        conn.execute(
            f"""
            INSERT INTO card_configs ({CARD_CONFIG_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                new_id(),
                category_type,
                display_name,
                payload.get("description") or "",
                json_dumps(form_schema),
                json_dumps(render_config),
                *[1 if payload.get(key) else 0 for key in FLAG_FIELDS],
                payload.get("cardLayout") or "standard",
                int(payload.get("sortOrder") or 0),
                0 if payload.get("isEnabled") is False else 1,
                now,
                now,
            ),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc):
            raise InvalidInput("A card config for this category type already exists") from exc
        raise
    return get_card_config(conn, category_type) or {}


def update_card_config(conn: Any, category_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    current = get_card_config(conn, category_type)
    if not current:
        raise NotFound("Card config not found")
    merged = {**current, **{key: value for key, value in payload.items() if value is not None}}
    form_schema = validate_form_schema(merged.get("formSchema") or {})
    render_config = _as_object(merged.get("renderConfig") or {}, "renderConfig")
    conn.execute(
        """
        UPDATE card_configs
        SET display_name = ?, description = ?, form_schema_json = ?, render_config_json = ?,
            requires_bank = ?, requires_expiry = ?, supports_verification = ?,
            supports_active = ?, supports_author = ?, card_layout = ?, sort_order = ?,
            is_enabled = ?, updated_at = ?
        WHERE category_type = ?
        """,
        (
            merged["displayName"],
            merged.get("description") or "",
            json_dumps(form_schema),
            json_dumps(render_config),
            *[1 if merged.get(key) else 0 for key in FLAG_FIELDS],
            merged.get("cardLayout") or "standard",
            int(merged.get("sortOrder") or 0),
            1 if merged.get("isEnabled") else 0,
            utc_now_iso(),
            category_type,
        ),
    )
    conn.commit()
    return get_card_config(conn, category_type) or {}


def delete_card_config(conn: Any, category_type: str) -> None:
    if not get_card_config(conn, category_type):
        raise NotFound("Card config not found")
    conn.execute("DELETE FROM card_configs WHERE category_type = ?", (category_type,))
    conn.commit()


def validate_form_schema(value: Any) -> dict[str, Any]:
    schema = _as_object(value, "formSchema")
    try:
        jsonschema.validate(
            schema, FORM_SCHEMA_META, format_checker=jsonschema.FormatChecker()
        )
    except jsonschema.ValidationError as exc:
        raise InvalidInput(f"Invalid formSchema: {exc.message}") from exc
    return schema


def _as_object(value: Any, name: str) -> dict[str, Any]:
    parsed = json_loads_or(value, None)
    if not isinstance(parsed, dict):
        raise InvalidInput(f"{name} must be a JSON object")
    return parsed


def _card_config_row(row: dict[str, Any]) -> dict[str, Any]:
    data = {
        "id": row["id"],
        "categoryType": row["category_type"],
        "displayName": row["display_name"],
        "description": row["description"],
        "formSchema": json_loads_or(row["form_schema_json"], {}),
        "renderConfig": json_loads_or(row["render_config_json"], {}),
        "cardLayout": row["card_layout"],
        "sortOrder": int(row["sort_order"] or 0),
        "isEnabled": bool(row["is_enabled"]),
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
    for key, column in FLAG_FIELDS.items():
        data[key] = bool(row[column])
    return data
