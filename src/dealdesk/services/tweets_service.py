from __future__ import annotations

import csv
import io
import re
from datetime import datetime, timezone
from typing import Any

from ..db import is_integrity_error
from ..errors import InvalidInput
from ..models import ParsedTweet
from ..utils import json_dumps, json_loads_or, new_id, parse_datetime, utc_now_iso

REQUIRED_COLUMNS = ["tweet_url", "tweet_text", "author_handle"]

TWEET_ID_PATTERNS = [
    re.compile(r"(?:twitter\.com|x\.com)/[^/]+/status/(\d+)", re.IGNORECASE),
    re.compile(r"status/(\d+)", re.IGNORECASE),
]

DATE_FORMATS = ["%Y-%m-%d %H:%M:%S", "%Y/%m/%d", "%d/%m/%Y", "%m/%d/%Y", "%b %d, %Y", "%d %b %Y"]

BANK_PATTERNS = [
    (re.compile(r"\bHDFC\b", re.I), "HDFC"),
    (re.compile(r"\bICICI\b", re.I), "ICICI"),
    (re.compile(r"\bSBI\b", re.I), "SBI"),
    (re.compile(r"\bAxis\b", re.I), "Axis"),
    (re.compile(r"\bAmex\b|\bAmerican Express\b", re.I), "Amex"),
    (re.compile(r"\bIDFC\b", re.I), "IDFC"),
    (re.compile(r"\bKotak\b", re.I), "Kotak"),
    (re.compile(r"\bIndusInd\b", re.I), "IndusInd"),
    (re.compile(r"\bYes Bank\b", re.I), "Yes Bank"),
    (re.compile(r"\bRBL\b", re.I), "RBL"),
    (re.compile(r"\bAU\b", re.I), "AU"),
    (re.compile(r"\bStandard Chartered\b|\bSCB\b", re.I), "Standard Chartered"),
    (re.compile(r"\bCiti\b|\bCitibank\b", re.I), "Citi"),
    (re.compile(r"\bHSBC\b", re.I), "HSBC"),
]

OFFER_TYPE_PATTERNS = [
    (re.compile(r"\bspend\s+\d+[kK]?\b.*?\bget\b", re.I), "Spend Offer"),
    (re.compile(r"\blifetime\s+free\b|\bLTF\b", re.I), "Lifetime Free"),
    (re.compile(r"\bjoining\s+bonus\b|\bwelcome\s+bonus\b", re.I), "Joining Bonus"),
    (re.compile(r"\btransfer\s+bonus\b", re.I), "Transfer Bonus"),
    (re.compile(r"\bstack\b|\bcombine\b", re.I), "Stacking Hack"),
    (re.compile(r"\bdevaluation\b", re.I), "Devaluation"),
]

CARD_NAME_PATTERN = re.compile(
    r"\b(Magnus|Regalia|Diners|Platinum|Signature|Reserve|Sapphire|Privilege|Odyssey|"
    r"Coral|Rubyx|Infinia|Vistara|Ace|Apay|Amazon Pay)\b",
    re.I,
)

TITLE_FALLBACK_LENGTH = 60

RAW_TWEET_COLUMNS = (
    "id, tweet_url, tweet_id, content, author_handle, author_name, posted_at, fetched_at, "
    "metadata_json"
)


def extract_tweet_id(url: str | None) -> str | None:
    for pattern in TWEET_ID_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    return None


def parse_csv(text: str) -> tuple[list[ParsedTweet], list[str], list[str]]:
    """Parse an exported tweet CSV into ``(tweets, errors, warnings)``.

    Row numbers in warnings count the header as row 1.
    """
    tweets: list[ParsedTweet] = []
    errors: list[str] = []
    warnings: list[str] = []

    reader = csv.DictReader(io.StringIO(text or ""))
    if reader.fieldnames:
        reader.fieldnames = [_normalize_header(name) for name in reader.fieldnames]
    headers = reader.fieldnames or []
    missing = [column for column in REQUIRED_COLUMNS if column not in headers]
    if missing:
        errors.append(f"Missing required columns: {', '.join(missing)}")
        return [], errors, warnings

    for index, row in enumerate(reader):
        row_num = index + 2
        values = {key: (value or "").strip() for key, value in row.items() if key}
        if not any(values.values()):
            continue
        if not values.get("tweet_url") or not values.get("tweet_text") or not values.get(
            "author_handle"
        ):
            warnings.append(f"Row {row_num}: Missing required fields, skipped")
            continue
        tweet_id = extract_tweet_id(values["tweet_url"])
        if not tweet_id:
            warnings.append(f"Row {row_num}: Invalid tweet URL format: {values['tweet_url']}")
            continue

        posted_at = datetime.now(tz=timezone.utc)
        if values.get("posted_date"):
            parsed = parse_loose_date(values["posted_date"])
            if parsed is None:
                warnings.append(
                    f'Row {row_num}: Invalid date "{values["posted_date"]}", using current date'
                )
            else:
                posted_at = parsed

        handle = values["author_handle"].lstrip("@")
        metadata = None
        if values.get("likes") or values.get("retweets"):
            metadata = {
                key: _to_int(values.get(key))
                for key in ("likes", "retweets")
                if _to_int(values.get(key)) is not None
            }
        tweets.append(
            ParsedTweet(
                tweet_url=values["tweet_url"],
                tweet_id=tweet_id,
                content=values["tweet_text"],
                author_handle=handle,
                author_name=values.get("author_name") or handle,
                posted_at=posted_at.isoformat(),
                metadata=metadata,
            )
        )

    if not tweets and not errors:
        errors.append("No valid tweets found in CSV")
    return tweets, errors, warnings


def parse_loose_date(value: str) -> datetime | None:
    parsed = parse_datetime(value)
    if parsed is not None:
        return parsed
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def tweet_from_payload(item: dict[str, Any]) -> ParsedTweet:
    tweet_url = str(item.get("tweetUrl") or "").strip()
    content = str(item.get("content") or "").strip()
    handle = str(item.get("authorHandle") or "").strip().lstrip("@")
    if not tweet_url or not content or not handle:
        raise InvalidInput("tweetUrl, content and authorHandle are required")
    tweet_id = str(item.get("tweetId") or "").strip() or extract_tweet_id(tweet_url)
    if not tweet_id:
        raise InvalidInput(f"Invalid tweet URL format: {tweet_url}")
    posted_at = parse_datetime(item.get("postedAt")) or datetime.now(tz=timezone.utc)
    return ParsedTweet(
        tweet_url=tweet_url,
        tweet_id=tweet_id,
        content=content,
        author_handle=handle,
        author_name=str(item.get("authorName") or "").strip() or handle,
        posted_at=posted_at.isoformat(),
        metadata=item.get("metadata") or None,
    )


def import_tweets(conn: Any, tweets: list[ParsedTweet]) -> dict[str, Any]:
    """Store parsed tweets, skipping URLs that are already stored."""
    imported = 0
    skipped = 0
    for tweet in tweets:
        try:
            conn.execute(
                f"""
                INSERT INTO raw_tweets ({RAW_TWEET_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    new_id(),
                    tweet.tweet_url,
                    tweet.tweet_id,
                    tweet.content,
                    tweet.author_handle,
                    tweet.author_name,
                    tweet.posted_at,
                    utc_now_iso(),
                    json_dumps(tweet.metadata) if tweet.metadata else None,
                ),
            )
            conn.commit()
            imported += 1
        except Exception as exc:
            conn.rollback()
            if not is_integrity_error(exc):
                raise
            skipped += 1
    return {"count": imported, "skipped": skipped}


def get_raw_tweet(conn: Any, raw_tweet_id: str) -> dict[str, Any] | None:
    row = conn.fetch_one(
        f"SELECT {RAW_TWEET_COLUMNS} FROM raw_tweets WHERE id = ?", (raw_tweet_id,)
    )
    return raw_tweet_row(row) if row else None


def list_raw_tweets(conn: Any, processed: bool | None = None) -> list[dict[str, Any]]:
    where = ""
    if processed is True:
        where = "WHERE pp.id IS NOT NULL"
    elif processed is False:
        where = "WHERE pp.id IS NULL"
    rows = conn.fetch_all(
        f"""
        SELECT rt.id, rt.tweet_url, rt.tweet_id, rt.content, rt.author_handle, rt.author_name,
               rt.posted_at, rt.fetched_at, rt.metadata_json, pp.id AS pending_post_id
        FROM raw_tweets rt
        LEFT JOIN pending_posts pp ON pp.raw_tweet_id = rt.id
        {where}
        ORDER BY rt.posted_at DESC, rt.id DESC
        """
    )
    tweets = []
    for row in rows:
        tweet = raw_tweet_row(row)
        tweet["processed"] = row["pending_post_id"] is not None
        tweet["pendingPostId"] = row["pending_post_id"]
        tweets.append(tweet)
    return tweets


def extract_title_from_tweet(content: str) -> str:
    """Best-effort title: bank, card name and offer type, else the opening text."""
    bank = next((name for pattern, name in BANK_PATTERNS if pattern.search(content)), "")
    card_match = CARD_NAME_PATTERN.search(content)
    card_name = card_match.group(1) if card_match else ""
    offer_type = next(
        (kind for pattern, kind in OFFER_TYPE_PATTERNS if pattern.search(content)), ""
    )

    if bank and card_name and offer_type:
        return f"{bank} {card_name} - {offer_type}"
    if bank and offer_type:
        return f"{bank} {offer_type}"
    if bank and card_name:
        return f"{bank} {card_name} Offer"
    if bank:
        return f"{bank} Credit Card Offer"
    if offer_type:
        return f"{offer_type} Alert"

    clean = re.sub(r"https?://\S+", "", content)
    clean = re.sub(r"\s+", " ", clean).strip()
    if len(clean) <= TITLE_FALLBACK_LENGTH:
        return clean
    return clean[:TITLE_FALLBACK_LENGTH] + "..."


def raw_tweet_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "tweetUrl": row["tweet_url"],
        "tweetId": row["tweet_id"],
        "content": row["content"],
        "authorHandle": row["author_handle"],
        "authorName": row["author_name"],
        "postedAt": row["posted_at"],
        "fetchedAt": row["fetched_at"],
        "metadata": json_loads_or(row["metadata_json"], None),
    }


def _normalize_header(name: str) -> str:
    return re.sub(r"\s+", "_", (name or "").strip().lower())


def _to_int(value: str | None) -> int | None:
    try:
        return int(value) if value else None
    except ValueError:
        return None
