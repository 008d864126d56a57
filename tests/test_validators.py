from datetime import datetime, timedelta, timezone

import pytest

from dealdesk.validators import (
    get_nested_value,
    validate_benefit2_dependencies,
    validate_expiry_in_future,
    validate_post,
    validate_transfer_ratio,
    validate_value_back_value,
)


def test_nested_values():
    data = {"categoryData": {"ratio": {"from": 1}}}
    assert get_nested_value(data, "categoryData.ratio.from") == 1
    assert get_nested_value(data, "categoryData.missing.deeper") is None


@pytest.mark.parametrize("value", ["10", "5.5", "5x", "10x"])
def test_value_back_accepts_numbers_and_multipliers(value):
    post = {"categoryData": {"valueBackValue": value}}
    assert validate_value_back_value(post, ["categoryData.valueBackValue"]) == []


@pytest.mark.parametrize("value,message", [("", "required"), ("ten", "multiplier"), ("5X", "multiplier")])
def test_value_back_rejects_other_values(value, message):
    errors = validate_value_back_value({"categoryData": {"valueBackValue": value}}, [])
    assert len(errors) == 1
    assert errors[0]["field"] == "categoryData.valueBackValue"
    assert message in errors[0]["message"]


def test_expiry_must_be_in_future():
    future = (datetime.now(tz=timezone.utc) + timedelta(days=3)).isoformat()
    past = (datetime.now(tz=timezone.utc) - timedelta(days=3)).isoformat()
    assert validate_expiry_in_future({"expiryDateTime": future}, []) == []
    assert validate_expiry_in_future({}, []) == []
    assert validate_expiry_in_future({"expiryDateTime": past}, [])[0]["message"] == (
        "Expiry date must be in the future"
    )
    assert validate_expiry_in_future({"expiryDateTime": "soon"}, [])[0]["field"] == "expiryDateTime"


def test_benefit2_color_required_with_text():
    assert validate_benefit2_dependencies({"categoryData": {"benefit2Text": "Lounge"}}, []) == [
        {
            "field": "categoryData.benefit2Color",
            "message": "Benefit 2 color is required when benefit 2 text is provided",
        }
    ]
    assert validate_benefit2_dependencies({"categoryData": {}}, []) == []


def test_transfer_ratio_must_be_positive():
    good = {"categoryData": {"transferRatioFrom": "1", "transferRatioTo": 2}}
    assert validate_transfer_ratio(good, []) == []
    bad = {"categoryData": {"transferRatioFrom": 0, "transferRatioTo": "x"}}
    assert [error["field"] for error in validate_transfer_ratio(bad, [])] == [
        "categoryData.transferRatioFrom",
        "categoryData.transferRatioTo",
    ]


def test_validate_post_field_rules():
    schema = {
        "fields": [
            {"name": "title", "label": "Title", "type": "text", "required": True,
             "validation": {"min": 5, "max": 20}},
            {"name": "categoryData.code", "label": "Code", "type": "text",
             "validation": {"pattern": "^[A-Z]+$"}},
            {"name": "categoryData.badgeColor", "label": "Badge", "type": "color"},
            {"name": "categoryData.cap", "label": "Cap", "type": "number"},
            {"name": "ctaUrl", "label": "Link", "type": "url", "required": True},
        ],
        "validationRules": [
            {"validator": "validateNumericValues", "fields": ["categoryData.cap"]},
            {"validator": "unknownValidator", "fields": ["title"]},
        ],
    }
    post = {
        "title": "Hey",
        "categoryData": {"code": "abc", "badgeColor": "green", "cap": "lots"},
    }
    errors = validate_post(post, schema)
    assert {"field": "title", "message": "Minimum length is 5"} in errors
    assert {"field": "categoryData.code", "message": "Invalid format"} in errors
    assert {"field": "ctaUrl", "message": "Link is required"} in errors
    assert any(error["field"] == "categoryData.badgeColor" for error in errors)
    assert [error["field"] for error in errors].count("categoryData.cap") == 2

    fixed = {
        "title": "Hello there",
        "ctaUrl": "https://example.com",
        "categoryData": {"code": "ABC", "badgeColor": "#10b981", "cap": "1500"},
    }
    assert validate_post(fixed, schema) == []


def test_zero_does_not_satisfy_required():
    schema = {
        "fields": [
            {"name": "categoryData.points", "label": "Points", "type": "number", "required": True},
            {"name": "categoryData.cap", "label": "Cap", "type": "number"},
        ]
    }
    errors = validate_post({"categoryData": {"points": 0, "cap": 0}}, schema)
    assert errors == [{"field": "categoryData.points", "message": "Points is required"}]
    assert validate_post({"categoryData": {"points": 500}}, schema) == []
