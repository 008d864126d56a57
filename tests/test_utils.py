from datetime import datetime, timezone

from dealdesk.utils import json_loads_or, parse_datetime, slugify


def test_slugify_strips_accents_and_symbols():
    assert slugify("Café Rewards: 10X on Dining!") == "cafe-rewards-10x-on-dining"


def test_slugify_falls_back_when_empty():
    assert slugify("") == "untitled"
    assert slugify("!!!") == "untitled"
    assert slugify("%%", fallback="bank") == "bank"


def test_slugify_truncates_without_trailing_dash():
    slug = slugify("word " * 40, max_length=12)
    assert slug == "word-word-wo"
    assert not slug.endswith("-")


def test_parse_datetime_normalizes_to_utc():
    assert parse_datetime("2025-03-01") == datetime(2025, 3, 1, tzinfo=timezone.utc)
    parsed = parse_datetime("2025-03-01T10:00:00+05:30")
    assert parsed == datetime(2025, 3, 1, 4, 30, tzinfo=timezone.utc)
    assert parse_datetime("2025-03-01T00:00:00Z").tzinfo == timezone.utc
    assert parse_datetime("next tuesday") is None
    assert parse_datetime(None) is None


def test_json_loads_or_returns_default():
    assert json_loads_or(None, {}) == {}
    assert json_loads_or("", []) == []
    assert json_loads_or("{broken", {"a": 1}) == {"a": 1}
    assert json_loads_or('["x"]', []) == ["x"]
