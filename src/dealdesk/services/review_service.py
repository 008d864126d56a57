from __future__ import annotations

import logging
from typing import Any

from ..config import ReviewConfig
from ..db import is_integrity_error
from ..errors import Conflict, InvalidInput, NotFound
from ..models import AuthContext, CategoryType, PendingPost, PendingStatus, PostStatus
from ..utils import (
    json_dumps,
    json_loads_or,
    log_event,
    new_id,
    parse_datetime,
    slugify,
    utc_now_iso,
)
from .banks_service import match_bank
from .card_configs_service import get_card_config
from .posts_service import get_post, insert_post, text_content
from .tweets_service import extract_title_from_tweet, get_raw_tweet
from .users_service import ensure_admin

POST_FIELD_KEYS = {
    "title",
    "excerpt",
    "detailsContent",
    "bankId",
    "programId",
    "expiryDate",
    "ctaUrl",
}
DROPPED_KEYS = {"fieldConfidence"}

PENDING_COLUMNS = (
    "id, raw_tweet_id, category, extracted_data_json, confidence, low_confidence_fields_json, "
    "status, admin_notes, reviewer_notes, published_post_id, version, created_at, updated_at"
)

PENDING_WITH_TWEET = """
    SELECT pp.id, pp.raw_tweet_id, pp.category, pp.extracted_data_json, pp.confidence,
           pp.low_confidence_fields_json, pp.status, pp.admin_notes, pp.reviewer_notes,
           pp.published_post_id, pp.version, pp.created_at, pp.updated_at,
           rt.id AS rt_id, rt.tweet_url, rt.tweet_id, rt.content, rt.author_handle,
           rt.author_name, rt.posted_at, rt.fetched_at, rt.metadata_json
    FROM pending_posts pp
    JOIN raw_tweets rt ON rt.id = pp.raw_tweet_id
"""


def _logger() -> logging.Logger:
    return logging.getLogger("dealdesk.review")


def list_pending(
    conn: Any,
    ctx: AuthContext | None,
    status: str | None = None,
    category: str | None = None,
    default_status: str = PendingStatus.PENDING_REVIEW.value,
) -> list[dict[str, Any]]:
    ensure_admin(ctx)
    status = parse_status(status or default_status)
    clauses = ["pp.status = ?"]
    params: list[Any] = [status.value]
    if category:
        clauses.append("pp.category = ?")
        params.append(category)
    rows = conn.fetch_all(
        f"{PENDING_WITH_TWEET} WHERE {' AND '.join(clauses)} "
        "ORDER BY pp.created_at DESC, pp.id DESC",
        tuple(params),
    )
    return [_pending_with_tweet(row) for row in rows]


def count_by_status(conn: Any, ctx: AuthContext | None) -> dict[str, int]:
    ensure_admin(ctx)
    counts = {status.value: 0 for status in PendingStatus}
    for status, total in conn.execute(
        "SELECT status, COUNT(*) FROM pending_posts GROUP BY status"
    ).fetchall():
        counts[status] = int(total)
    return counts


def get_pending(conn: Any, ctx: AuthContext | None, pending_id: str) -> dict[str, Any]:
    ensure_admin(ctx)
    row = conn.fetch_one(f"{PENDING_WITH_TWEET} WHERE pp.id = ?", (pending_id,))
    if not row:
        raise NotFound("Pending post not found")
    return _pending_with_tweet(row)


def reject_pending(
    conn: Any,
    ctx: AuthContext | None,
    pending_id: str,
    reason: str | None,
    default_note: str,
) -> dict[str, Any]:
    """Mark a pending post rejected; applying it again rewrites the same state."""
    ctx = ensure_admin(ctx)
    notes = (reason or "").strip() or default_note
    cursor = conn.execute(
        """
        UPDATE pending_posts
        SET status = ?, admin_notes = ?, version = version + 1, updated_at = ?
        WHERE id = ?
        """,
        (PendingStatus.REJECTED.value, notes, utc_now_iso(), pending_id),
    )
    if cursor.rowcount == 0:
        conn.rollback()
        raise NotFound("Pending post not found")
    conn.commit()
    log_event(_logger(), logging.INFO, "pending_post_rejected", id=pending_id, by=ctx.user_id)
    return get_pending(conn, ctx, pending_id)


def update_pending(
    conn: Any,
    ctx: AuthContext | None,
    pending_id: str,
    extracted_data: dict[str, Any] | None,
    category: str | None = None,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Overwrite the extracted fields and move the post to ``pending_approval``.

    Low-confidence flags are cleared. With ``expected_version`` the write only
    lands when nobody else has changed the row since it was read.
    """
    ctx = ensure_admin(ctx)
    if extracted_data is None:
        raise InvalidInput("Missing extractedData")
    if not isinstance(extracted_data, dict):
        raise InvalidInput("extractedData must be an object")
    if category:
        check_category(conn, category)

    sql = """
        UPDATE pending_posts
        SET extracted_data_json = ?, low_confidence_fields_json = ?, status = ?,
            category = COALESCE(?, category), version = version + 1, updated_at = ?
        WHERE id = ?
    """
    params: list[Any] = [
        json_dumps(extracted_data),
        json_dumps([]),
        PendingStatus.PENDING_APPROVAL.value,
        category or None,
        utc_now_iso(),
        pending_id,
    ]
    if expected_version is not None:
        sql += " AND version = ?"
        params.append(int(expected_version))
    cursor = conn.execute(sql, tuple(params))
    if cursor.rowcount == 0:
        conn.rollback()
        _raise_missing_or_stale(conn, pending_id)
    conn.commit()
    log_event(
        _logger(),
        logging.INFO,
        "pending_post_updated",
        id=pending_id,
        category=category or "-",
        by=ctx.user_id,
    )
    return get_pending(conn, ctx, pending_id)


def approve_pending(
    conn: Any,
    ctx: AuthContext | None,
    pending_id: str,
    approve_note: str,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Publish a pending post as a draft Post authored by the approver.

    The Post insert and the pending post's move to ``approved`` commit together.
    """
    ctx = ensure_admin(ctx)
    pending = _load_pending(conn, pending_id)
    if pending.status == PendingStatus.APPROVED:
        raise InvalidInput("Pending post is already approved")

    fields = post_fields_from_extracted(pending.extracted_data, pending.category, ctx.user_id)
    if fields["bank_id"] and not conn.fetch_one(
        "SELECT id FROM banks WHERE id = ?", (fields["bank_id"],)
    ):
        raise InvalidInput("Bank not found")

    sql = """
        UPDATE pending_posts
        SET status = ?, admin_notes = ?, version = version + 1, updated_at = ?
        WHERE id = ? AND status != ?
    """
    params: list[Any] = [
        PendingStatus.APPROVED.value,
        approve_note,
        utc_now_iso(),
        pending_id,
        PendingStatus.APPROVED.value,
    ]
    if expected_version is not None:
        sql += " AND version = ?"
        params.append(int(expected_version))

    try:
        cursor = conn.execute(sql, tuple(params))
        if cursor.rowcount == 0:
            raise Conflict(
                "Pending post was changed by another reviewer",
                currentVersion=pending.version,
            )
        post_id = insert_post(conn, fields, unique_slug=True)
        conn.execute(
            "UPDATE pending_posts SET published_post_id = ? WHERE id = ?",
            (post_id, pending_id),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise

    log_event(
        _logger(),
        logging.INFO,
        "pending_post_approved",
        id=pending_id,
        post_id=post_id,
        by=ctx.user_id,
    )
    return get_post(conn, post_id) or {}


def post_fields_from_extracted(
    extracted: dict[str, Any], category: str, author_id: str
) -> dict[str, Any]:
    title = str(extracted.get("title") or "").strip()
    excerpt = extracted.get("excerpt") or None
    details = extracted.get("detailsContent") or None
    expiry = parse_datetime(extracted.get("expiryDate")) if extracted.get("expiryDate") else None
    return {
        "title": title or "Untitled Post",
        "slug": slugify(title),
        "excerpt": excerpt,
        "content": text_content(details or excerpt),
        "category_type": category,
        "categories": [category],
        "category_data": {
            key: value
            for key, value in extracted.items()
            if key not in POST_FIELD_KEYS and key not in DROPPED_KEYS
        },
        "published": False,
        "status": PostStatus.DRAFT.value,
        "author_id": author_id,
        "bank_id": extracted.get("bankId") or None,
        "program_id": extracted.get("programId") or None,
        "expiry_at": expiry.isoformat() if expiry else None,
        "details_content": details,
        "cta_url": extracted.get("ctaUrl") or None,
    }


def create_pending_post(
    conn: Any,
    raw_tweet_id: str,
    category: str,
    extracted_data: dict[str, Any],
    review: ReviewConfig,
    confidence: float | None = None,
    low_confidence_fields: list[str] | None = None,
    reviewer_notes: str | None = None,
    status: PendingStatus | None = None,
) -> dict[str, Any]:
    """Derive the single pending post for a raw tweet from extractor output."""
    if not get_raw_tweet(conn, raw_tweet_id):
        raise NotFound("Raw tweet not found")
    if not isinstance(extracted_data, dict):
        raise InvalidInput("extractedData must be an object")
    check_category(conn, category)

    data = dict(extracted_data)
    if data.get("bankName") and not data.get("bankId"):
        match = match_bank(conn, str(data["bankName"]))
        if match.bank_id and match.confidence > review.bank_match_min_confidence:
            data["bankId"] = match.bank_id

    if status is None:
        status = initial_status(confidence, review)
    pending_id = new_id()
    now = utc_now_iso()
    try:
        conn.execute(
            f"""
            INSERT INTO pending_posts ({PENDING_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                pending_id,
                raw_tweet_id,
                category,
                json_dumps(data),
                confidence,
                json_dumps(list(low_confidence_fields or [])),
                status.value,
                None,
                reviewer_notes,
                None,
                1,
                now,
                now,
            ),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        if is_integrity_error(exc):
            raise InvalidInput("A pending post already exists for this tweet") from exc
        raise
    log_event(
        _logger(),
        logging.INFO,
        "pending_post_created",
        id=pending_id,
        raw_tweet_id=raw_tweet_id,
        status=status.value,
    )
    row = conn.fetch_one(f"{PENDING_WITH_TWEET} WHERE pp.id = ?", (pending_id,))
    return _pending_with_tweet(row)


def create_manual_entry(
    conn: Any, ctx: AuthContext | None, raw_tweet_id: str, review: ReviewConfig
) -> dict[str, Any]:
    ensure_admin(ctx)
    tweet = get_raw_tweet(conn, raw_tweet_id)
    if not tweet:
        raise NotFound("Raw tweet not found")
    return create_pending_post(
        conn,
        raw_tweet_id,
        CategoryType.OTHER.value,
        {
            "title": extract_title_from_tweet(tweet["content"]),
            "detailsContent": tweet["content"],
            "fieldConfidence": {},
        },
        review,
        reviewer_notes="Manual entry requested",
        status=PendingStatus.NEEDS_MANUAL_ENTRY,
    )


def initial_status(confidence: float | None, review: ReviewConfig) -> PendingStatus:
    if confidence is None:
        return PendingStatus.PENDING_REVIEW
    if confidence < review.manual_entry_below:
        return PendingStatus.NEEDS_MANUAL_ENTRY
    if confidence > review.auto_approval_above:
        return PendingStatus.PENDING_APPROVAL
    return PendingStatus.PENDING_REVIEW


def parse_status(value: str) -> PendingStatus:
    try:
        return PendingStatus(value)
    except ValueError as exc:
        raise InvalidInput(f"Invalid status: {value}") from exc


def check_category(conn: Any, category: str) -> None:
    if category in {item.value for item in CategoryType}:
        return
    if get_card_config(conn, category):
        return
    raise InvalidInput(f"Invalid category: {category}")


def _load_pending(conn: Any, pending_id: str) -> PendingPost:
    row = conn.fetch_one(f"SELECT {PENDING_COLUMNS} FROM pending_posts WHERE id = ?", (pending_id,))
    if not row:
        raise NotFound("Pending post not found")
    return _pending_from_row(row)


def _raise_missing_or_stale(conn: Any, pending_id: str) -> None:
    row = conn.fetch_one("SELECT version FROM pending_posts WHERE id = ?", (pending_id,))
    if not row:
        raise NotFound("Pending post not found")
    raise Conflict(
        "Pending post was changed by another reviewer",
        currentVersion=int(row["version"]),
    )


def _pending_from_row(row: dict[str, Any]) -> PendingPost:
    return PendingPost(
        id=row["id"],
        raw_tweet_id=row["raw_tweet_id"],
        category=row["category"],
        extracted_data=json_loads_or(row["extracted_data_json"], {}),
        confidence=row["confidence"],
        low_confidence_fields=json_loads_or(row["low_confidence_fields_json"], []) or [],
        status=PendingStatus(row["status"]),
        admin_notes=row["admin_notes"],
        reviewer_notes=row["reviewer_notes"],
        published_post_id=row["published_post_id"],
        version=int(row["version"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _pending_with_tweet(row: dict[str, Any]) -> dict[str, Any]:
    pending = _pending_from_row(row)
    return {
        "id": pending.id,
        "rawTweetId": pending.raw_tweet_id,
        "category": pending.category,
        "extractedData": pending.extracted_data,
        "confidence": pending.confidence,
        "lowConfidenceFields": pending.low_confidence_fields,
        "status": pending.status.value,
        "adminNotes": pending.admin_notes,
        "reviewerNotes": pending.reviewer_notes,
        "publishedPostId": pending.published_post_id,
        "version": pending.version,
        "createdAt": pending.created_at,
        "updatedAt": pending.updated_at,
        "rawTweet": {
            "id": row["rt_id"],
            "tweetUrl": row["tweet_url"],
            "tweetId": row["tweet_id"],
            "content": row["content"],
            "authorHandle": row["author_handle"],
            "authorName": row["author_name"],
            "postedAt": row["posted_at"],
            "fetchedAt": row["fetched_at"],
            "metadata": json_loads_or(row["metadata_json"], None),
        },
    }
