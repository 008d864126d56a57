"""Post validation against CardConfig form schemas.

A form schema lists ``fields`` (checked individually: required, min/max length,
pattern and a per-type check) and ``validationRules`` that name a business
rule from ``VALIDATORS`` together with the dotted field paths it reads.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlsplit

from .utils import parse_datetime

FieldError = dict[str, str]

HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")
VALUE_BACK = re.compile(r"^(\d+\.?\d*)(x)?$")


def field_error(field: str, message: str) -> FieldError:
    return {"field": field, "message": message}


def get_nested_value(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value is False or value == 0


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def check_required(value: Any, field: str) -> FieldError | None:
    if value is None or value == "":
        return field_error(field, f"{field} is required")
    return None


def check_number(value: Any, field: str) -> FieldError | None:
    if _to_number(value) is None:
        return field_error(field, f"{field} must be a valid number")
    return None


def check_url(value: Any, field: str) -> FieldError | None:
    if not value:
        return None
    parts = urlsplit(str(value))
    if not parts.scheme or not parts.netloc:
        return field_error(field, f"{field} must be a valid URL")
    return None


def check_hex_color(value: Any, field: str) -> FieldError | None:
    if not HEX_COLOR.match(str(value or "")):
        return field_error(field, f"{field} must be a valid hex color (e.g., #10b981)")
    return None


def validate_required(values: dict[str, Any], fields: list[str]) -> list[FieldError]:
    errors = []
    for name in fields:
        error = check_required(get_nested_value(values, name), name)
        if error:
            errors.append(error)
    return errors


def validate_single_required(values: dict[str, Any], fields: list[str]) -> list[FieldError]:
    return validate_required(values, fields[:1])


def validate_numeric_values(values: dict[str, Any], fields: list[str]) -> list[FieldError]:
    errors = []
    for name in fields:
        error = check_number(get_nested_value(values, name), name)
        if error:
            errors.append(error)
    return errors


def validate_single_numeric_value(values: dict[str, Any], fields: list[str]) -> list[FieldError]:
    return validate_numeric_values(values, fields[:1])


def validate_expiry_in_future(values: dict[str, Any], fields: list[str]) -> list[FieldError]:
    name = fields[0] if fields else "expiryDateTime"
    raw = get_nested_value(values, name)
    if not raw:
        return []
    expiry = parse_datetime(raw)
    if expiry is None:
        return [field_error(name, "Expiry date is not a valid date")]
    if expiry <= datetime.now(tz=timezone.utc):
        return [field_error(name, "Expiry date must be in the future")]
    return []


def validate_value_back_value(values: dict[str, Any], fields: list[str]) -> list[FieldError]:
    name = fields[0] if fields else "categoryData.valueBackValue"
    value = get_nested_value(values, name)
    if not value:
        return [field_error(name, "Value back amount is required")]
    if not VALUE_BACK.match(str(value)):
        return [
            field_error(name, "Value back must be a number or multiplier (e.g., 10, 5.5, 5x)")
        ]
    return []


def validate_benefit2_dependencies(values: dict[str, Any], fields: list[str]) -> list[FieldError]:
    text = get_nested_value(values, "categoryData.benefit2Text")
    color = get_nested_value(values, "categoryData.benefit2Color")
    if text and not color:
        return [
            field_error(
                "categoryData.benefit2Color",
                "Benefit 2 color is required when benefit 2 text is provided",
            )
        ]
    return []


def validate_transfer_ratio(values: dict[str, Any], fields: list[str]) -> list[FieldError]:
    errors = []
    for name, label in (
        ("categoryData.transferRatioFrom", "from"),
        ("categoryData.transferRatioTo", "to"),
    ):
        number = _to_number(get_nested_value(values, name))
        if number is None or number <= 0:
            errors.append(field_error(name, f'Transfer ratio "{label}" must be a positive number'))
    return errors


VALIDATORS: dict[str, Callable[[dict[str, Any], list[str]], list[FieldError]]] = {
    "validateExpiryInFuture": validate_expiry_in_future,
    "validateValueBackValue": validate_value_back_value,
    "validateBenefit2Dependencies": validate_benefit2_dependencies,
    "validateNumericValue": validate_single_numeric_value,
    "validateNumericValues": validate_numeric_values,
    "validateSingleNumericValue": validate_single_numeric_value,
    "validateRequired": validate_required,
    "validateSingleRequired": validate_single_required,
    "validateTransferRatio": validate_transfer_ratio,
}


def validate_post(post: dict[str, Any], form_schema: dict[str, Any]) -> list[FieldError]:
    errors: list[FieldError] = []

    for field in form_schema.get("fields") or []:
        name = field["name"]
        value = get_nested_value(post, name)
        if _is_empty(value):
            if field.get("required"):
                errors.append(field_error(name, f"{field.get('label') or name} is required"))
            continue
        errors.extend(_check_rules(value, name, field.get("validation") or {}))
        field_type = field.get("type")
        checker = {"url": check_url, "color": check_hex_color, "number": check_number}.get(
            field_type
        )
        if checker:
            error = checker(value, name)
            if error:
                errors.append(error)

    for rule in form_schema.get("validationRules") or []:
        validator = VALIDATORS.get(rule.get("validator"))
        if validator:
            errors.extend(validator(post, list(rule.get("fields") or [])))

    return errors


def _check_rules(value: Any, name: str, rules: dict[str, Any]) -> list[FieldError]:
    errors = []
    length = len(value) if isinstance(value, (str, list)) else None
    if length is not None and rules.get("min") is not None and length < rules["min"]:
        errors.append(field_error(name, f"Minimum length is {rules['min']}"))
    if length is not None and rules.get("max") is not None and length > rules["max"]:
        errors.append(field_error(name, f"Maximum length is {rules['max']}"))
    if rules.get("pattern") and not re.search(rules["pattern"], str(value)):
        errors.append(field_error(name, "Invalid format"))
    return errors
