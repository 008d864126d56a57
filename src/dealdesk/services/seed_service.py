from __future__ import annotations

from typing import Any

import yaml

from ..config import Config
from ..errors import InvalidInput
from ..utils import slugify
from .banks_service import create_bank
from .card_configs_service import create_card_config, get_card_config
from .categories_service import create_category
from .programs_service import create_program


def load_seed_file(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise InvalidInput(
            f"{path} must contain a mapping with banks/programs/categories/cardConfigs"
        )
    return data


def seed_content(conn: Any, data: dict[str, Any], config: Config) -> dict[str, int]:
    """Create banks, programs, categories and card configs that do not exist yet.

    Categories may name a ``parent`` by slug; parents must appear earlier in the list.
    """
    created = {"banks": 0, "programs": 0, "categories": 0, "cardConfigs": 0}

    existing_banks = {
        row["name"].lower() for row in conn.fetch_all("SELECT name FROM banks")
    }
    for bank in data.get("banks") or []:
        if str(bank.get("name") or "").strip().lower() in existing_banks:
            continue
        create_bank(conn, bank)
        existing_banks.add(str(bank["name"]).strip().lower())
        created["banks"] += 1

    existing_programs = {row["slug"] for row in conn.fetch_all("SELECT slug FROM programs")}
    for program in data.get("programs") or []:
        slug = str(program.get("slug") or "").strip() or slugify(
            str(program.get("name") or ""), fallback="program"
        )
        if slug in existing_programs:
            continue
        record = create_program(conn, {**program, "slug": slug})
        existing_programs.add(record["slug"])
        created["programs"] += 1

    slugs = {row["slug"]: row["id"] for row in conn.fetch_all("SELECT id, slug FROM categories")}
    for category in data.get("categories") or []:
        slug = str(category.get("slug") or "").strip().lower()
        if slug in slugs:
            continue
        payload = {key: value for key, value in category.items() if key != "parent"}
        parent = category.get("parent")
        if parent:
            if parent not in slugs:
                raise InvalidInput(f"Unknown parent category: {parent}")
            payload["parentId"] = slugs[parent]
        record = create_category(
            conn,
            payload,
            max_depth=config.categories.max_depth,
            default_color=config.categories.default_color,
        )
        slugs[record["slug"]] = record["id"]
        created["categories"] += 1

    for card_config in data.get("cardConfigs") or []:
        if get_card_config(conn, str(card_config.get("categoryType") or "")):
            continue
        create_card_config(conn, card_config)
        created["cardConfigs"] += 1

    return created
