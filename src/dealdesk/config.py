from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .models import PendingStatus
from .storage import get_setting, set_setting

REVIEW_STATUSES = {status.value for status in PendingStatus}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str
    timezone: str


@dataclass(frozen=True)
class AuthConfig:
    session_ttl_hours: int


@dataclass(frozen=True)
class ReviewConfig:
    default_status: str
    reject_note: str
    approve_note: str
    manual_entry_below: float
    auto_approval_above: float
    bank_match_min_confidence: int


@dataclass(frozen=True)
class PostsConfig:
    default_category: str
    page_size: int
    max_page_size: int


@dataclass(frozen=True)
class CategoriesConfig:
    max_depth: int
    default_color: str


@dataclass(frozen=True)
class Config:
    app: AppConfig
    auth: AuthConfig
    review: ReviewConfig
    posts: PostsConfig
    categories: CategoriesConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "DealDesk",
        "timezone": "Asia/Kolkata",
    },
    "auth": {
        "session_ttl_hours": 24,
    },
    "review": {
        "default_status": "pending_review",
        "reject_note": "Rejected via Review Queue",
        "approve_note": "Approved via Review Queue",
        "manual_entry_below": 60.0,
        "auto_approval_above": 80.0,
        "bank_match_min_confidence": 80,
    },
    "posts": {
        "default_category": "SPEND_OFFERS",
        "page_size": 20,
        "max_page_size": 100,
    },
    "categories": {
        "max_depth": 2,
        "default_color": "bg-gray-100 text-gray-800",
    },
}

CONFIG_KEY = "config.runtime"


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        set_setting(conn, CONFIG_KEY, _deep_copy(DEFAULT_CONFIG))
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    cfg = get_runtime_config(conn)
    return _build_config(cfg)


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    if not errors:
        review = cfg["review"]
        if review["manual_entry_below"] > review["auto_approval_above"]:
            errors.append(
                "config.runtime.review.manual_entry_below must not exceed auto_approval_above"
            )
        if review["default_status"] not in REVIEW_STATUSES:
            allowed = ", ".join(sorted(REVIEW_STATUSES))
            errors.append(f"config.runtime.review.default_status must be one of: {allowed}")
        if cfg["categories"]["max_depth"] < 1:
            errors.append("config.runtime.categories.max_depth must be at least 1")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg.get("app") or {}
    auth_cfg = cfg.get("auth") or {}
    review_cfg = cfg.get("review") or {}
    posts_cfg = cfg.get("posts") or {}
    categories_cfg = cfg.get("categories") or {}

    return Config(
        app=AppConfig(
            name=str(app_cfg.get("name")),
            timezone=str(app_cfg.get("timezone")),
        ),
        auth=AuthConfig(
            session_ttl_hours=int(auth_cfg.get("session_ttl_hours")),
        ),
        review=ReviewConfig(
            default_status=str(review_cfg.get("default_status")),
            reject_note=str(review_cfg.get("reject_note")),
            approve_note=str(review_cfg.get("approve_note")),
            manual_entry_below=float(review_cfg.get("manual_entry_below")),
            auto_approval_above=float(review_cfg.get("auto_approval_above")),
            bank_match_min_confidence=int(review_cfg.get("bank_match_min_confidence")),
        ),
        posts=PostsConfig(
            default_category=str(posts_cfg.get("default_category")),
            page_size=int(posts_cfg.get("page_size")),
            max_page_size=int(posts_cfg.get("max_page_size")),
        ),
        categories=CategoriesConfig(
            max_depth=int(categories_cfg.get("max_depth")),
            default_color=str(categories_cfg.get("default_color")),
        ),
    )


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
