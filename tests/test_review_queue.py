import pytest

from dealdesk.config import bootstrap_runtime_config, load_runtime_config
from dealdesk.errors import InvalidInput
from dealdesk.models import ParsedTweet
from dealdesk.services.banks_service import create_bank
from dealdesk.services.review_service import create_pending_post
from dealdesk.services.tweets_service import import_tweets


def _review_config(conn):
    bootstrap_runtime_config(conn)
    return load_runtime_config(conn).review


def _seed_tweet(conn, tweet_id="1001", content="HDFC Infinia: spend 50k and get 5000 points"):
    url = f"https://x.com/carddeals/status/{tweet_id}"
    import_tweets(
        conn,
        [
            ParsedTweet(
                tweet_url=url,
                tweet_id=tweet_id,
                content=content,
                author_handle="carddeals",
                author_name="Card Deals",
                posted_at="2025-01-15T10:00:00+00:00",
            )
        ],
    )
    return conn.fetch_one("SELECT id FROM raw_tweets WHERE tweet_url = ?", (url,))["id"]


def _seed_pending(conn, tweet_id="1001", category="SPEND_OFFERS", extracted=None, confidence=None):
    raw_tweet_id = _seed_tweet(conn, tweet_id)
    return create_pending_post(
        conn,
        raw_tweet_id,
        category,
        extracted if extracted is not None else {"title": "HDFC Infinia offer", "amount": 100},
        _review_config(conn),
        confidence=confidence,
        low_confidence_fields=["expiryDate"],
    )


def _pending_row(conn, pending_id):
    return conn.fetch_one(
        "SELECT status, category, admin_notes, version, published_post_id "
        "FROM pending_posts WHERE id = ?",
        (pending_id,),
    )


def test_update_moves_to_pending_approval_and_clears_flags(client, conn, admin_headers):
    pending = _seed_pending(conn, category="OTHER")
    assert pending["status"] == "pending_review"
    assert pending["lowConfidenceFields"] == ["expiryDate"]

    response = client.put(
        f"/api/admin/review-queue/{pending['id']}/update",
        json={"extractedData": {"amount": 500}, "category": "SPEND_OFFERS"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    post = response.json()["post"]
    assert response.json()["success"] is True
    assert post["status"] == "pending_approval"
    assert post["category"] == "SPEND_OFFERS"
    assert post["lowConfidenceFields"] == []
    assert post["extractedData"] == {"amount": 500}
    assert post["version"] == pending["version"] + 1


def test_update_keeps_category_when_omitted(client, conn, admin_headers):
    pending = _seed_pending(conn, category="LIFETIME_FREE")
    response = client.put(
        f"/api/admin/review-queue/{pending['id']}/update",
        json={"extractedData": {"title": "LTF card"}},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["post"]["category"] == "LIFETIME_FREE"


def test_update_without_extracted_data_leaves_row_unchanged(client, conn, admin_headers):
    pending = _seed_pending(conn)
    response = client.put(
        f"/api/admin/review-queue/{pending['id']}/update",
        json={"category": "OTHER"},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Missing extractedData"}
    row = _pending_row(conn, pending["id"])
    assert row["status"] == "pending_review"
    assert row["category"] == "SPEND_OFFERS"
    assert row["version"] == 1


def test_update_rejects_unknown_category(client, conn, admin_headers):
    pending = _seed_pending(conn)
    response = client.put(
        f"/api/admin/review-queue/{pending['id']}/update",
        json={"extractedData": {}, "category": "NOT_A_CATEGORY"},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert _pending_row(conn, pending["id"])["status"] == "pending_review"


def test_update_missing_pending_post_is_404(client, admin_headers):
    response = client.put(
        "/api/admin/review-queue/missing/update",
        json={"extractedData": {"amount": 1}},
        headers=admin_headers,
    )
    assert response.status_code == 404


def test_update_with_stale_version_conflicts(client, conn, admin_headers):
    pending = _seed_pending(conn)
    first = client.put(
        f"/api/admin/review-queue/{pending['id']}/update",
        json={"extractedData": {"amount": 1}, "expectedVersion": 1},
        headers=admin_headers,
    )
    assert first.status_code == 200

    stale = client.put(
        f"/api/admin/review-queue/{pending['id']}/update",
        json={"extractedData": {"amount": 2}, "expectedVersion": 1},
        headers=admin_headers,
    )
    assert stale.status_code == 409
    assert stale.json()["currentVersion"] == 2
    row = conn.fetch_one(
        "SELECT extracted_data_json FROM pending_posts WHERE id = ?", (pending["id"],)
    )
    assert '"amount": 1' in row["extracted_data_json"]


def test_reject_sets_status_and_notes(client, conn, admin_headers):
    pending = _seed_pending(conn)
    response = client.post(
        f"/api/admin/review-queue/{pending['id']}/reject",
        json={"reason": "duplicate"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
    row = _pending_row(conn, pending["id"])
    assert row["status"] == "rejected"
    assert row["admin_notes"] == "duplicate"


def test_reject_is_idempotent_and_uses_default_note(client, conn, admin_headers):
    pending = _seed_pending(conn)
    for _ in range(2):
        response = client.post(
            f"/api/admin/review-queue/{pending['id']}/reject", headers=admin_headers
        )
        assert response.status_code == 200
    row = _pending_row(conn, pending["id"])
    assert row["status"] == "rejected"
    assert row["admin_notes"] == "Rejected via Review Queue"


def test_reject_after_update_still_rejects(client, conn, admin_headers):
    pending = _seed_pending(conn)
    client.put(
        f"/api/admin/review-queue/{pending['id']}/update",
        json={"extractedData": {"amount": 500}},
        headers=admin_headers,
    )
    response = client.post(
        f"/api/admin/review-queue/{pending['id']}/reject",
        json={"reason": "expired"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert _pending_row(conn, pending["id"])["status"] == "rejected"


def test_reject_missing_pending_post_is_404(client, admin_headers):
    response = client.post("/api/admin/review-queue/missing/reject", headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.parametrize("auth", ["anonymous", "reader"])
def test_non_admin_mutations_are_unauthorized_without_side_effects(
    client, conn, user_headers, auth
):
    headers = user_headers if auth == "reader" else {}
    pending = _seed_pending(conn)
    base = f"/api/admin/review-queue/{pending['id']}"

    responses = [
        client.get("/api/admin/review-queue", headers=headers),
        client.post(f"{base}/reject", json={"reason": "nope"}, headers=headers),
        client.put(f"{base}/update", json={"extractedData": {"amount": 1}}, headers=headers),
        client.put(f"{base}/update", json={}, headers=headers),
        client.post(f"{base}/approve", headers=headers),
    ]
    for response in responses:
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    row = _pending_row(conn, pending["id"])
    assert row["status"] == "pending_review"
    assert row["admin_notes"] is None
    assert row["version"] == 1
    assert conn.execute("SELECT COUNT(*) FROM posts").fetchone()[0] == 0


def test_list_filters_by_status_and_includes_raw_tweet(client, conn, admin_headers):
    rejected = _seed_pending(conn, tweet_id="2001")
    _seed_pending(conn, tweet_id="2002")
    client.post(
        f"/api/admin/review-queue/{rejected['id']}/reject",
        json={"reason": "spam"},
        headers=admin_headers,
    )

    response = client.get("/api/admin/review-queue?status=rejected", headers=admin_headers)
    assert response.status_code == 200
    posts = response.json()["posts"]
    assert [post["id"] for post in posts] == [rejected["id"]]
    assert all(post["status"] == "rejected" for post in posts)
    assert posts[0]["rawTweet"]["tweetUrl"] == "https://x.com/carddeals/status/2001"
    assert posts[0]["rawTweet"]["authorHandle"] == "carddeals"

    default = client.get("/api/admin/review-queue", headers=admin_headers).json()["posts"]
    assert [post["status"] for post in default] == ["pending_review"]


def test_list_filters_by_category(client, conn, admin_headers):
    _seed_pending(conn, tweet_id="3001", category="SPEND_OFFERS")
    other = _seed_pending(conn, tweet_id="3002", category="JOINING_BONUS")
    response = client.get(
        "/api/admin/review-queue?category=JOINING_BONUS", headers=admin_headers
    )
    assert [post["id"] for post in response.json()["posts"]] == [other["id"]]


def test_list_rejects_unknown_status(client, admin_headers):
    response = client.get("/api/admin/review-queue?status=bogus", headers=admin_headers)
    assert response.status_code == 400


def test_counts_cover_every_status(client, conn, admin_headers):
    _seed_pending(conn, tweet_id="4001")
    _seed_pending(conn, tweet_id="4002", confidence=95)
    response = client.get("/api/admin/review-queue?counts=true", headers=admin_headers)
    counts = response.json()["counts"]
    assert counts == {
        "pending_review": 1,
        "pending_approval": 1,
        "needs_manual_entry": 0,
        "approved": 0,
        "rejected": 0,
    }


def test_approve_publishes_draft_post(client, conn, admin_headers):
    pending = _seed_pending(
        conn,
        extracted={
            "title": "HDFC Infinia 10X on SmartBuy",
            "excerpt": "Short summary",
            "detailsContent": "Full details",
            "ctaUrl": "https://example.com/apply",
            "expiryDate": "2030-03-31",
            "valueBackValue": "10x",
            "fieldConfidence": {"title": 95},
        },
    )
    me = client.get("/api/auth/session", headers=admin_headers).json()["user"]

    response = client.post(
        f"/api/admin/review-queue/{pending['id']}/approve", headers=admin_headers
    )
    assert response.status_code == 200
    post = response.json()["post"]
    assert post["slug"] == "hdfc-infinia-10x-on-smartbuy"
    assert post["title"] == "HDFC Infinia 10X on SmartBuy"
    assert post["status"] == "draft"
    assert post["published"] is False
    assert post["categoryType"] == "SPEND_OFFERS"
    assert post["categoryData"] == {"valueBackValue": "10x"}
    assert post["content"] == [{"type": "text", "content": "Full details"}]
    assert post["ctaUrl"] == "https://example.com/apply"
    assert post["expiryDateTime"].startswith("2030-03-31")
    assert post["authorId"] == me["id"]

    row = _pending_row(conn, pending["id"])
    assert row["status"] == "approved"
    assert row["published_post_id"] == post["id"]
    assert row["admin_notes"] == "Approved via Review Queue"


def test_approve_twice_is_rejected(client, conn, admin_headers):
    pending = _seed_pending(conn)
    url = f"/api/admin/review-queue/{pending['id']}/approve"
    assert client.post(url, headers=admin_headers).status_code == 200
    second = client.post(url, headers=admin_headers)
    assert second.status_code == 400
    assert conn.execute("SELECT COUNT(*) FROM posts").fetchone()[0] == 1


def test_approve_suffixes_taken_slugs(client, conn, admin_headers):
    first = _seed_pending(conn, tweet_id="5001", extracted={"title": "Amex Offer"})
    second = _seed_pending(conn, tweet_id="5002", extracted={"title": "Amex Offer"})
    third = _seed_pending(conn, tweet_id="5003", extracted={})

    posts = [
        client.post(f"/api/admin/review-queue/{item['id']}/approve", headers=admin_headers)
        .json()["post"]
        for item in (first, second, third)
    ]
    assert [post["slug"] for post in posts] == ["amex-offer", "amex-offer-1", "untitled"]
    assert posts[2]["title"] == "Untitled Post"


def test_approve_missing_pending_post_is_404(client, admin_headers):
    response = client.post("/api/admin/review-queue/missing/approve", headers=admin_headers)
    assert response.status_code == 404


def test_approve_with_unknown_bank_writes_nothing(client, conn, admin_headers):
    pending = _seed_pending(conn, extracted={"title": "Offer", "bankId": "no-such-bank"})
    response = client.post(
        f"/api/admin/review-queue/{pending['id']}/approve", headers=admin_headers
    )
    assert response.status_code == 400
    assert _pending_row(conn, pending["id"])["status"] == "pending_review"
    assert conn.execute("SELECT COUNT(*) FROM posts").fetchone()[0] == 0


@pytest.mark.parametrize(
    "confidence,expected",
    [
        (None, "pending_review"),
        (45, "needs_manual_entry"),
        (60, "pending_review"),
        (80, "pending_review"),
        (92.5, "pending_approval"),
    ],
)
def test_initial_status_follows_confidence(conn, confidence, expected):
    pending = _seed_pending(conn, confidence=confidence)
    assert pending["status"] == expected


def test_bank_name_is_matched_to_stored_bank(conn):
    bank = create_bank(conn, {"name": "HDFC Bank"})
    pending = _seed_pending(conn, extracted={"title": "Offer", "bankName": "hdfc"})
    assert pending["extractedData"]["bankId"] == bank["id"]


def test_weak_bank_match_is_not_applied(conn):
    create_bank(conn, {"name": "HDFC Bank"})
    pending = _seed_pending(conn, extracted={"title": "Offer", "bankName": "Unknown Credit Union"})
    assert "bankId" not in pending["extractedData"]


def test_one_pending_post_per_raw_tweet(conn):
    pending = _seed_pending(conn)
    with pytest.raises(InvalidInput):
        create_pending_post(
            conn, pending["rawTweetId"], "OTHER", {"title": "again"}, _review_config(conn)
        )


def test_manual_entry_creates_needs_manual_entry_post(client, conn, admin_headers):
    raw_tweet_id = _seed_tweet(conn)
    response = client.post(
        f"/api/admin/sources/tweets/{raw_tweet_id}/manual-entry", headers=admin_headers
    )
    assert response.status_code == 200
    post = response.json()["post"]
    assert post["status"] == "needs_manual_entry"
    assert post["category"] == "OTHER"
    assert post["extractedData"] == {
        "title": "HDFC Infinia - Spend Offer",
        "detailsContent": "HDFC Infinia: spend 50k and get 5000 points",
        "fieldConfidence": {},
    }

    again = client.post(
        f"/api/admin/sources/tweets/{raw_tweet_id}/manual-entry", headers=admin_headers
    )
    assert again.status_code == 400
