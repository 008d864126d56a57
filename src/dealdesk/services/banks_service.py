from __future__ import annotations

from typing import Any

from ..db import is_integrity_error
from ..errors import Conflict, InvalidInput, NotFound
from ..models import BankMatch
from ..utils import new_id, slugify, utc_now_iso

BANK_COLUMNS = "id, name, slug, logo, brand_color, description, created_at, updated_at"

BANK_ALIASES: dict[str, list[str]] = {
    "HDFC Bank": ["hdfc", "hdfc bank", "hdfcbank"],
    "ICICI Bank": ["icici", "icici bank", "icicibank"],
    "SBI Card": ["sbi", "sbi cards", "state bank", "sbi card"],
    "Axis Bank": ["axis", "axis bank", "axisbank"],
    "American Express": ["amex", "american express", "americanexpress"],
    "IDFC First Bank": ["idfc", "idfc first", "idfc first bank", "idfcfirst"],
    "Kotak Mahindra Bank": ["kotak", "kotak bank", "kotak mahindra", "kotakmahindra"],
    "IndusInd Bank": ["indusind", "indusind bank"],
    "Yes Bank": ["yes", "yes bank"],
    "RBL Bank": ["rbl", "rbl bank"],
    "Standard Chartered": ["sc", "stanchart", "standard chartered"],
    "Citibank": ["citi", "citi bank", "citibank india"],
    "HSBC": ["hsbc", "hsbc india"],
    "AU Small Finance Bank": ["au", "au bank", "au small finance", "aubank"],
}

FUZZY_THRESHOLD = 0.6


def list_banks(conn: Any, include_stats: bool = False) -> list[dict[str, Any]]:
    rows = conn.fetch_all(f"SELECT {BANK_COLUMNS} FROM banks ORDER BY name ASC")
    banks = [_bank_row(row) for row in rows]
    if include_stats:
        counts = _post_counts(conn)
        for bank in banks:
            bank["postsCount"] = counts.get(bank["id"], 0)
    return banks


def get_bank(conn: Any, bank_id: str, include_stats: bool = False) -> dict[str, Any] | None:
    row = conn.fetch_one(f"SELECT {BANK_COLUMNS} FROM banks WHERE id = ?", (bank_id,))
    if not row:
        return None
    bank = _bank_row(row)
    if include_stats:
        bank["postsCount"] = _post_counts(conn, bank_id).get(bank_id, 0)
    return bank


def create_bank(conn: Any, payload: dict[str, Any]) -> dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise InvalidInput("Bank name is required")
    slug = str(payload.get("slug") or "").strip() or slugify(name, fallback="bank")
    bank_id = new_id()
    now = utc_now_iso()
    try:
        conn.execute(
            f"""
            INSERT INTO banks ({BANK_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                bank_id,
                name,
                slug,
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
            raise Conflict("A bank with this name or slug already exists") from exc
        raise
    return get_bank(conn, bank_id) or {}


def update_bank(conn: Any, bank_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    current = get_bank(conn, bank_id)
    if not current:
        raise NotFound("Bank not found")

    name = current["name"]
    slug = current["slug"]
    if payload.get("name"):
        name = str(payload["name"]).strip()
        if not payload.get("slug"):
            slug = slugify(name, fallback="bank")
    if payload.get("slug"):
        slug = str(payload["slug"]).strip()
    logo = payload["logo"] if "logo" in payload else current["logo"]
    brand_color = payload["brandColor"] if "brandColor" in payload else current["brandColor"]
    description = (
        payload["description"] if "description" in payload else current["description"]
    )

    try:
        conn.execute(
            """
            UPDATE banks
            SET name = ?, slug = ?, logo = ?, brand_color = ?, description = ?, updated_at = ?
            WHERE id = ?
            """,
            (name, slug, logo, brand_color, description, utc_now_iso(), bank_id),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc):
            raise Conflict("A bank with this name or slug already exists") from exc
        raise
    return get_bank(conn, bank_id) or {}


def delete_bank(conn: Any, bank_id: str) -> dict[str, Any]:
    bank = get_bank(conn, bank_id, include_stats=True)
    if not bank:
        raise NotFound("Bank not found")
    if bank["postsCount"] > 0:
        raise Conflict(
            f"Cannot delete bank. It has {bank['postsCount']} associated post(s).",
            postsCount=bank["postsCount"],
        )
    conn.execute("DELETE FROM banks WHERE id = ?", (bank_id,))
    conn.commit()
    return {"success": True, "message": f'Bank "{bank["name"]}" deleted successfully'}


def match_bank(conn: Any, extracted_name: str | None) -> BankMatch:
    """Link a free-text bank name to a stored bank.

    Tries, in order: exact name (confidence 100), the alias table (95),
    then fuzzy similarity above 0.6 with up to three alternatives.
    """
    if not extracted_name or not extracted_name.strip():
        return BankMatch(confidence=0, match_type="none")

    needle = extracted_name.strip().lower()
    banks = conn.fetch_all("SELECT id, name FROM banks")

    for bank in banks:
        if bank["name"].lower() == needle:
            return BankMatch(
                confidence=100, match_type="exact", bank_id=bank["id"], bank_name=bank["name"]
            )

    for official, aliases in BANK_ALIASES.items():
        if needle in aliases:
            for bank in banks:
                if bank["name"] == official:
                    return BankMatch(
                        confidence=95,
                        match_type="alias",
                        bank_id=bank["id"],
                        bank_name=bank["name"],
                    )

    scored = [
        (similarity(needle, bank["name"].lower()), bank) for bank in banks
    ]
    scored = [item for item in scored if item[0] > FUZZY_THRESHOLD]
    scored.sort(key=lambda item: item[0], reverse=True)
    if not scored:
        return BankMatch(confidence=0, match_type="none")

    top_score, top = scored[0]
    return BankMatch(
        confidence=round(top_score * 100),
        match_type="fuzzy",
        bank_id=top["id"],
        bank_name=top["name"],
        alternatives=[
            {"id": bank["id"], "name": bank["name"], "similarity": round(score * 100)}
            for score, bank in scored[1:4]
        ],
    )


def similarity(left: str, right: str) -> float:
    if left == right:
        return 1.0
    if left in right or right in left:
        longer = max(len(left), len(right))
        shorter = min(len(left), len(right))
        return 0.7 + (shorter / longer) * 0.3
    distance = _levenshtein(left, right)
    return 1 - distance / max(len(left), len(right))


def _levenshtein(left: str, right: str) -> int:
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            if left_char == right_char:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def _post_counts(conn: Any, bank_id: str | None = None) -> dict[str, int]:
    if bank_id:
        rows = conn.execute(
            "SELECT bank_id, COUNT(*) FROM posts WHERE bank_id = ? GROUP BY bank_id",
            (bank_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT bank_id, COUNT(*) FROM posts WHERE bank_id IS NOT NULL GROUP BY bank_id"
        ).fetchall()
    return {row[0]: int(row[1]) for row in rows}


def _bank_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "slug": row["slug"],
        "logo": row["logo"],
        "brandColor": row["brand_color"],
        "description": row["description"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
