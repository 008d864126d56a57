from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PendingStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    PENDING_APPROVAL = "pending_approval"
    NEEDS_MANUAL_ENTRY = "needs_manual_entry"
    APPROVED = "approved"
    REJECTED = "rejected"


class CategoryType(str, Enum):
    SPEND_OFFERS = "SPEND_OFFERS"
    LIFETIME_FREE = "LIFETIME_FREE"
    STACKING_HACKS = "STACKING_HACKS"
    JOINING_BONUS = "JOINING_BONUS"
    TRANSFER_BONUS = "TRANSFER_BONUS"
    OTHER = "OTHER"


class ProgramType(str, Enum):
    AIRLINE = "airline"
    HOTEL = "hotel"
    OTHER = "other"


class PostStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    email: str
    name: str | None
    is_admin: bool


@dataclass(frozen=True)
class PendingPost:
    id: str
    raw_tweet_id: str
    category: str
    extracted_data: dict[str, object]
    confidence: float | None
    low_confidence_fields: list[str]
    status: PendingStatus
    admin_notes: str | None
    reviewer_notes: str | None
    published_post_id: str | None
    version: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ParsedTweet:
    tweet_url: str
    tweet_id: str
    content: str
    author_handle: str
    author_name: str
    posted_at: str
    metadata: dict[str, int] | None = None


@dataclass(frozen=True)
class BankMatch:
    confidence: int
    match_type: str
    bank_id: str | None = None
    bank_name: str | None = None
    alternatives: list[dict[str, object]] | None = None
